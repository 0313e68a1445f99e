"""
Engine Configuration
====================

Runtime settings read from the environment once at startup.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class EngineConfig:
    """Immutable settings shared by every pipeline component."""

    max_attempts: int = 3
    timeout_ms: int = 10_000
    default_page_size: int = 50
    max_page_size: int = 500
    max_payload_bytes: int = 100 * 1024 * 1024
    max_subquery_depth: int = 3
    deep_validation: str = "always"  # "always" or "selective"
    strict_mode: bool = False
    consensus_tolerance: float = 0.01
    consensus_candidates: int = 3
    clarification_threshold: float = 0.7
    audit_log_path: str = "logs/security-audit.log"
    audit_retention_days: int = 30
    audit_key: Optional[str] = None
    language: str = "en"
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if self.deep_validation not in ("always", "selective"):
            raise ValueError(
                f"deep_validation must be 'always' or 'selective', got {self.deep_validation!r}"
            )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.language not in ("en", "es"):
            raise ValueError(f"Unsupported language: {self.language!r}")

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build configuration from QUERY_GUARD_* environment variables."""
        return cls(
            max_attempts=_env_int("QUERY_GUARD_MAX_ATTEMPTS", 3),
            timeout_ms=_env_int("QUERY_GUARD_TIMEOUT_MS", 10_000),
            default_page_size=_env_int("QUERY_GUARD_DEFAULT_PAGE_SIZE", 50),
            max_page_size=_env_int("QUERY_GUARD_MAX_PAGE_SIZE", 500),
            max_payload_bytes=_env_int("QUERY_GUARD_MAX_PAYLOAD_BYTES", 100 * 1024 * 1024),
            max_subquery_depth=_env_int("QUERY_GUARD_MAX_SUBQUERY_DEPTH", 3),
            deep_validation=os.getenv("QUERY_GUARD_DEEP_VALIDATION", "always").lower(),
            strict_mode=_env_bool("QUERY_GUARD_STRICT_MODE", False),
            consensus_tolerance=_env_float("QUERY_GUARD_CONSENSUS_TOLERANCE", 0.01),
            clarification_threshold=_env_float("QUERY_GUARD_CLARIFICATION_THRESHOLD", 0.7),
            audit_log_path=os.getenv("QUERY_GUARD_AUDIT_LOG_PATH", "logs/security-audit.log"),
            audit_retention_days=_env_int("QUERY_GUARD_AUDIT_RETENTION_DAYS", 30),
            audit_key=os.getenv("QUERY_GUARD_AUDIT_KEY") or None,
            language=os.getenv("QUERY_GUARD_LANGUAGE", "en").lower(),
            timezone=os.getenv("QUERY_GUARD_TIMEZONE", "UTC"),
        )
