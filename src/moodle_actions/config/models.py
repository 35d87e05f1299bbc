"""Configuration data models."""

from dataclasses import dataclass, field
from typing import Any

DEFAULT_TIMEOUT = 30.0
DEFAULT_CONCURRENCY_LIMIT = 5
DEFAULT_USER_BATCH_SIZE = 50


@dataclass(frozen=True)
class MoodleSettings:
    """Moodle web services connection settings.

    Either value may be missing; the gateway reports that on each call
    instead of refusing to start.
    """

    base_url: str | None = None
    token: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    verify_ssl: bool = True

    @property
    def is_complete(self) -> bool:
        """Check that both the endpoint and the token are set."""
        return bool(self.base_url) and bool(self.token)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MoodleSettings":
        return cls(
            base_url=data.get("base_url") or data.get("url"),
            token=data.get("token"),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
            verify_ssl=bool(data.get("verify_ssl", True)),
        )


@dataclass(frozen=True)
class AppSettings:
    """Complete application configuration."""

    moodle: MoodleSettings = field(default_factory=MoodleSettings)
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT
    user_batch_size: int = DEFAULT_USER_BATCH_SIZE
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppSettings":
        return cls(
            moodle=MoodleSettings.from_dict(data.get("moodle") or {}),
            concurrency_limit=int(data.get("concurrency_limit", DEFAULT_CONCURRENCY_LIMIT)),
            user_batch_size=int(data.get("user_batch_size", DEFAULT_USER_BATCH_SIZE)),
            log_level=str(data.get("log_level", "INFO")),
        )
