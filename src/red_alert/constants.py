"""Constants for Red Alert."""

from pathlib import Path

# --- Config paths ---
CONFIG_DIR = Path.home() / ".red-alert"
CREDENTIALS_PATH = CONFIG_DIR / "credentials.json"
TOKEN_PATH = CONFIG_DIR / "token.json"
DB_PATH = CONFIG_DIR / "red_alert.db"

# --- Google APIs ---
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/calendar",
]
USER_ID = "me"
LABEL_UNREAD = "UNREAD"
DEFAULT_CALENDAR_ID = "primary"
RETRYABLE_STATUS_CODES = (429, 500, 503)

# --- Query building ---
UNREAD_FILTER = "is:unread"

# --- Polling pipeline ---
POLL_INTERVAL_SECONDS = 60
SEARCH_MAX_RESULTS = 10  # messages listed per category query
MAX_MESSAGES_PER_CYCLE = 5  # messages analyzed per cycle
AI_DELAY_SECONDS = 2.0  # pause before each AI call
SEEN_SET_CAPACITY = 1000
SNIPPET_LENGTH = 200
EMAIL_DATE_FORMAT = "%a, %d %b %Y %H:%M:%S %z"
HEADER_NOT_FOUND = "(Not Found)"
NO_SUBJECT = "(no subject)"

# --- Calendar ---
EVENT_DURATION_HOURS = 1
DEFAULT_EVENT_LOCATION = "Online"

# --- AI extraction ---
MAX_PROMPT_BODY_CHARS = 5000
AI_PROVIDERS = ("openai", "ollama")
DEFAULT_AI_PROVIDER = "ollama"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_OLLAMA_URL = "http://localhost:11434/api/chat"
DEFAULT_OLLAMA_MODEL = "llama3"
AI_REQUEST_TIMEOUT_SECONDS = 60
AI_TIMEZONE_HINT = "America/Sao_Paulo (UTC-3)"

# --- Circuit breakers ---
BREAKER_FAILURE_THRESHOLD = 5
BREAKER_RESET_TIMEOUT_SECONDS = 60.0

# --- Notifications ---
ALERTS_TOPIC = "/topic/alerts"

# --- Display ---
DEFAULT_HISTORY_LIMIT = 20

# --- Simulated alerts ---
TEST_ALERT_TITLE = "LIVE NOW: Test class"
TEST_ALERT_DESCRIPTION = "This is a simulated alert to test the overlay."
