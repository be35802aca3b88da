"""AI extraction of scheduled events from email text.

The extractor builds a prompt asking the model for a single JSON object (or
the literal ``null``) and parses the reply into an ExtractedAlert. Anything
that is not a usable alert, including transport failures, comes back as None.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime

import requests
from openai import OpenAI

from .breaker import CircuitBreaker
from .config import Settings
from .constants import AI_TIMEZONE_HINT, MAX_PROMPT_BODY_CHARS
from .models import ExtractedAlert

logger = logging.getLogger(__name__)

_PROMPT_TEMPLATE = """\
You are a smart assistant for a student. Your job is to analyze notification emails \
from school/courses and identify if there is a scheduled class, meeting, or live event.

Current Context:
- Today's Date (Email Received): {reference_time}
- Timezone: {timezone}

Instructions:
1. Analyze the email text below.
2. If it mentions a class, meeting, live session, or webinar, extract the details.
3. Resolve relative dates (e.g., "tomorrow", "next monday") based on TODAY'S DATE.
4. Extract the LINK/URL if available.
5. Create a RICH DESCRIPTION that summarizes the email content, key topics, and \
instructions. This description will be used as the calendar event body.
6. Return ONLY a valid JSON object. Do not include markdown formatting like ```json.

JSON Structure:
{{
    "title": "Short title of the event",
    "date": "ISO 8601 format (YYYY-MM-DDTHH:mm:ss)",
    "url": "https://...",
    "description": "Detailed summary of agenda/topics/instructions from email body",
    "isUrgent": true
}}

If NO relevant event is found, return null.

EMAIL CONTENT:
{body}
"""


def build_prompt(text: str, reference_time: datetime, timezone: str = AI_TIMEZONE_HINT) -> str:
    """Render the extraction prompt for a message body.

    The body is cut to MAX_PROMPT_BODY_CHARS to bound cost and flattened to a
    single line with double quotes swapped for single quotes.
    """
    body = text[:MAX_PROMPT_BODY_CHARS].replace('"', "'").replace("\n", " ")
    return _PROMPT_TEMPLATE.format(
        reference_time=reference_time.isoformat(timespec="seconds"),
        timezone=timezone,
        body=body,
    )


def _strip_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def _parse_event_date(value) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    # Keep the wall-clock time the model produced, as a naive local datetime.
    return parsed.replace(tzinfo=None)


def _parse_urgent(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def parse_alert(text: str | None) -> ExtractedAlert | None:
    """Parse a model reply into an alert. Never raises; bad replies give None."""
    if text is None:
        return None
    cleaned = _strip_fences(text)
    if not cleaned or cleaned.lower() == "null":
        return None

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.warning("AI reply is not JSON: %s", e)
        return None
    if not isinstance(data, dict):
        logger.warning("AI reply is not a JSON object: %r", cleaned[:200])
        return None

    event_date = _parse_event_date(data.get("date"))
    url = data.get("url") or None
    try:
        return ExtractedAlert(
            title=str(data.get("title") or "").strip(),
            date=event_date,
            url=url.strip() if isinstance(url, str) else None,
            description=data.get("description"),
            is_urgent=_parse_urgent(data.get("isUrgent", data.get("is_urgent"))),
        )
    except ValueError as e:
        logger.warning("AI reply rejected: %s", e)
        return None


class EventExtractor(ABC):
    """Maps raw email text to an ExtractedAlert, or None when there is no event."""

    def __init__(self, breaker: CircuitBreaker | None = None, timezone: str = AI_TIMEZONE_HINT) -> None:
        self.breaker = breaker or CircuitBreaker(type(self).__name__)
        self.timezone = timezone

    @abstractmethod
    def _complete(self, prompt: str) -> str | None:
        """Send a prompt to the backend and return the raw reply text."""

    def _fallback(self, exc: BaseException) -> None:
        logger.warning("%s unavailable, treating message as no event: %s", type(self).__name__, exc)
        return None

    def analyze(self, text: str, reference_time: datetime) -> ExtractedAlert | None:
        prompt = build_prompt(text, reference_time, self.timezone)
        reply = self.breaker.call(self._complete, prompt, fallback=self._fallback)
        return parse_alert(reply)


class OpenAIExtractor(EventExtractor):
    """Extractor for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        timeout: float | None = None,
        breaker: CircuitBreaker | None = None,
        timezone: str = AI_TIMEZONE_HINT,
        client=None,
    ) -> None:
        super().__init__(breaker, timezone)
        self.model = model
        self.client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    def _complete(self, prompt: str) -> str | None:
        logger.info("Sending email content to %s for analysis", self.model)
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0,
        )
        if not response.choices:
            return None
        return response.choices[0].message.content


class OllamaExtractor(EventExtractor):
    """Extractor for a local Ollama chat endpoint."""

    def __init__(
        self,
        url: str,
        model: str,
        timeout: float,
        breaker: CircuitBreaker | None = None,
        timezone: str = AI_TIMEZONE_HINT,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(breaker, timezone)
        self.url = url
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def _complete(self, prompt: str) -> str | None:
        logger.info("Sending email content to Ollama (%s) for analysis", self.model)
        payload = {
            "model": self.model,
            "stream": False,
            "messages": [{"role": "user", "content": prompt}],
        }
        response = self.session.post(self.url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError:
            logger.warning("Ollama returned a non-JSON envelope")
            return None
        return (data.get("message") or {}).get("content")


def create_extractor(settings: Settings) -> EventExtractor:
    """Build the extractor selected by ``settings.ai_provider``."""
    breaker = CircuitBreaker(
        f"ai:{settings.ai_provider}",
        failure_threshold=settings.breaker_failure_threshold,
        reset_timeout=settings.breaker_reset_timeout,
    )
    if settings.ai_provider == "openai":
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY must be set to use the openai provider")
        return OpenAIExtractor(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout=settings.ai_timeout,
            breaker=breaker,
            timezone=settings.ai_timezone_hint,
        )
    if settings.ai_provider == "ollama":
        return OllamaExtractor(
            url=settings.ollama_url,
            model=settings.ollama_model,
            timeout=settings.ai_timeout,
            breaker=breaker,
            timezone=settings.ai_timezone_hint,
        )
    raise ValueError(f"Unknown AI provider: {settings.ai_provider}")
