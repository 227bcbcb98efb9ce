from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_CASEMARK_API_URL = "https://api-staging.casemarkai.com"
DEFAULT_CASE_API_URL = "https://api.case.dev"
DEFAULT_VISION_MODEL = "google/gemini-2.5-flash"
DEFAULT_CORS_ORIGINS = ("http://localhost:3000", "http://127.0.0.1:3000")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(slots=True, frozen=True)
class Settings:
    """Runtime configuration read from the process environment."""

    casemark_api_url: str = DEFAULT_CASEMARK_API_URL
    casemark_api_key: str = ""
    case_api_url: str = DEFAULT_CASE_API_URL
    case_api_key: str = ""
    vision_model: str = DEFAULT_VISION_MODEL

    poll_interval_seconds: float = 2.0
    poll_budget_seconds: float = 20 * 60
    poll_max_consecutive_errors: int = 5
    poll_backoff_cap_seconds: float = 30.0

    http_timeout_seconds: float = 60.0
    vision_timeout_seconds: float = 10 * 60
    max_concurrent_jobs: int = 4

    log_level: str = "INFO"
    log_file: Path | None = None
    cors_origins: tuple[str, ...] = field(default=DEFAULT_CORS_ORIGINS)

    @property
    def workflow_configured(self) -> bool:
        return bool(self.casemark_api_key)

    @property
    def storage_configured(self) -> bool:
        return bool(self.case_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        origins_env = os.getenv("API_CORS_ORIGINS", "")
        origins = tuple(origin.strip() for origin in origins_env.split(",") if origin.strip())
        log_file = os.getenv("LOG_FILE")

        return cls(
            casemark_api_url=os.getenv("CASEMARK_API_URL") or DEFAULT_CASEMARK_API_URL,
            casemark_api_key=os.getenv("CASEMARK_API_KEY", ""),
            case_api_url=os.getenv("CASE_API_URL") or DEFAULT_CASE_API_URL,
            case_api_key=os.getenv("CASE_API_KEY", ""),
            vision_model=os.getenv("VISION_MODEL") or DEFAULT_VISION_MODEL,
            poll_interval_seconds=_env_float("POLL_INTERVAL_SECONDS", 2.0),
            poll_budget_seconds=_env_float("POLL_BUDGET_SECONDS", 20 * 60),
            poll_max_consecutive_errors=_env_int("POLL_MAX_CONSECUTIVE_ERRORS", 5),
            poll_backoff_cap_seconds=_env_float("POLL_BACKOFF_CAP_SECONDS", 30.0),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 60.0),
            vision_timeout_seconds=_env_float("VISION_TIMEOUT_SECONDS", 10 * 60),
            max_concurrent_jobs=max(1, _env_int("MAX_CONCURRENT_JOBS", 4)),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=Path(log_file) if log_file else None,
            cors_origins=origins or DEFAULT_CORS_ORIGINS,
        )
