"""Runtime settings loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv

from . import constants


@dataclass(frozen=True)
class Settings:
    """Tunable knobs for the polling pipeline and its backends."""

    db_path: Path = constants.DB_PATH
    poll_interval: float = constants.POLL_INTERVAL_SECONDS
    search_max_results: int = constants.SEARCH_MAX_RESULTS
    max_messages_per_cycle: int = constants.MAX_MESSAGES_PER_CYCLE
    ai_delay_seconds: float = constants.AI_DELAY_SECONDS
    seen_set_capacity: int = constants.SEEN_SET_CAPACITY
    force_urgent: bool = True
    calendar_id: str = constants.DEFAULT_CALENDAR_ID

    ai_provider: str = constants.DEFAULT_AI_PROVIDER
    ai_timezone_hint: str = constants.AI_TIMEZONE_HINT
    openai_api_key: str | None = None
    openai_model: str = constants.DEFAULT_OPENAI_MODEL
    openai_base_url: str | None = None
    ollama_url: str = constants.DEFAULT_OLLAMA_URL
    ollama_model: str = constants.DEFAULT_OLLAMA_MODEL
    ai_timeout: float = constants.AI_REQUEST_TIMEOUT_SECONDS

    breaker_failure_threshold: int = constants.BREAKER_FAILURE_THRESHOLD
    breaker_reset_timeout: float = constants.BREAKER_RESET_TIMEOUT_SECONDS

    def override(self, **changes) -> Settings:
        """Return a copy with the non-None values in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {value!r}") from e


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {value!r}") from e


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key, "").strip().lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Build Settings from RED_ALERT_* environment variables (and a .env file).

    Raises:
        ValueError: If a numeric variable cannot be parsed or the AI provider
            is unknown.
    """
    load_dotenv()

    provider = os.getenv("RED_ALERT_AI_PROVIDER", constants.DEFAULT_AI_PROVIDER).strip().lower()
    if provider not in constants.AI_PROVIDERS:
        raise ValueError(
            f"RED_ALERT_AI_PROVIDER must be one of {', '.join(constants.AI_PROVIDERS)}, got {provider!r}"
        )

    db_path = os.getenv("RED_ALERT_DB_PATH")

    return Settings(
        db_path=Path(db_path) if db_path else constants.DB_PATH,
        poll_interval=_env_float("RED_ALERT_POLL_INTERVAL", constants.POLL_INTERVAL_SECONDS),
        search_max_results=_env_int("RED_ALERT_SEARCH_MAX_RESULTS", constants.SEARCH_MAX_RESULTS),
        max_messages_per_cycle=_env_int("RED_ALERT_MAX_MESSAGES_PER_CYCLE", constants.MAX_MESSAGES_PER_CYCLE),
        ai_delay_seconds=_env_float("RED_ALERT_AI_DELAY", constants.AI_DELAY_SECONDS),
        seen_set_capacity=_env_int("RED_ALERT_SEEN_SET_CAPACITY", constants.SEEN_SET_CAPACITY),
        force_urgent=_env_bool("RED_ALERT_FORCE_URGENT", True),
        calendar_id=os.getenv("RED_ALERT_CALENDAR_ID", constants.DEFAULT_CALENDAR_ID),
        ai_provider=provider,
        ai_timezone_hint=os.getenv("RED_ALERT_AI_TIMEZONE", constants.AI_TIMEZONE_HINT),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        openai_model=os.getenv("RED_ALERT_OPENAI_MODEL", constants.DEFAULT_OPENAI_MODEL),
        openai_base_url=os.getenv("RED_ALERT_OPENAI_BASE_URL") or None,
        ollama_url=os.getenv("RED_ALERT_OLLAMA_URL", constants.DEFAULT_OLLAMA_URL),
        ollama_model=os.getenv("RED_ALERT_OLLAMA_MODEL", constants.DEFAULT_OLLAMA_MODEL),
        ai_timeout=_env_float("RED_ALERT_AI_TIMEOUT", constants.AI_REQUEST_TIMEOUT_SECONDS),
        breaker_failure_threshold=_env_int("RED_ALERT_BREAKER_THRESHOLD", constants.BREAKER_FAILURE_THRESHOLD),
        breaker_reset_timeout=_env_float("RED_ALERT_BREAKER_RESET", constants.BREAKER_RESET_TIMEOUT_SECONDS),
    )
