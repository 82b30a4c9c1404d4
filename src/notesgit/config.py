"""Runtime configuration and logging setup for notesgit.

Settings come from environment variables, with defaults suitable for a
local backend and a SQLite ledger.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional


DEFAULT_BACKEND_URL = "http://localhost:5000"
DEFAULT_MODEL = "gpt-4o-mini"
ACTION_TTL_SECONDS = 30 * 60
MAX_ITERATIONS = 10

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _sanitize_base_url(raw_url: Optional[str]) -> Optional[str]:
    if not raw_url:
        return None
    url = raw_url.strip().rstrip("/")
    if not url:
        return None
    return url


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be an integer, got {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}")


@dataclass
class Settings:
    """Configuration for the agent service.

    Attributes:
        backend_url: Base URL of the notes backend (scheme, host and port).
        backend_timeout: HTTP timeout for backend calls, in seconds.
        model: Chat model id used for completions.
        temperature: Sampling temperature for the chat model.
        api_key: API key for the completion service.
        base_url: Optional base URL of an OpenAI-compatible endpoint.
        database: Ledger backend, ``sqlite`` or ``postgres``.
        database_url: SQLAlchemy URL or SQLite path for the ledger.
        action_ttl_seconds: How long action records are kept.
        max_iterations: Cap on completion round-trips per request.
        system_prompt_path: Optional file overriding the packaged prompt.
        log_level: Root logging level name.
    """
    backend_url: str = DEFAULT_BACKEND_URL
    backend_timeout: float = 30.0
    model: str = DEFAULT_MODEL
    temperature: float = 0.2
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    database: str = "sqlite"
    database_url: Optional[str] = None
    action_ttl_seconds: int = ACTION_TTL_SECONDS
    max_iterations: int = MAX_ITERATIONS
    system_prompt_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables with defaults."""
        settings = cls(
            backend_url=_sanitize_base_url(os.getenv("BACKEND_URL")) or DEFAULT_BACKEND_URL,
            backend_timeout=_float_env("BACKEND_TIMEOUT", 30.0),
            model=os.getenv("MODEL") or DEFAULT_MODEL,
            temperature=_float_env("TEMPERATURE", 0.2),
            api_key=os.getenv("OPENAI_API_KEY"),
            base_url=_sanitize_base_url(os.getenv("BASE_URL")),
            database=os.getenv("DATABASE", "sqlite").strip().lower(),
            database_url=(os.getenv("DATABASE_URL") or "").strip() or None,
            action_ttl_seconds=_int_env("ACTION_TTL_SECONDS", ACTION_TTL_SECONDS),
            max_iterations=_int_env("MAX_ITERATIONS", MAX_ITERATIONS),
            system_prompt_path=os.getenv("SYSTEM_PROMPT_PATH") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self):
        """Reject settings the service cannot run with."""
        if self.database not in ("sqlite", "postgres"):
            raise ValueError(f"DATABASE must be 'sqlite' or 'postgres', got {self.database!r}")
        if self.database == "postgres" and not self.database_url:
            raise ValueError("DATABASE_URL is required when DATABASE=postgres")
        if self.max_iterations < 1:
            raise ValueError("MAX_ITERATIONS must be at least 1")
        if self.action_ttl_seconds < 1:
            raise ValueError("ACTION_TTL_SECONDS must be at least 1")


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(getattr(h, "_notesgit", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._notesgit = True
        root.addHandler(handler)
