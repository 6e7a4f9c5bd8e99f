"""Configuration helpers for the kbchat clients."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import TYPE_CHECKING, Final

import httpx
from dotenv import load_dotenv

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

load_dotenv()

_DEFAULT_ADK_BASE_URL: Final[str] = "http://localhost:8000"
_DEFAULT_ADK_TIMEOUT: Final[float] = 120.0
_DEFAULT_ADK_CONNECT_TIMEOUT: Final[float] = 10.0
_DEFAULT_INGESTION_BASE_URL: Final[str] = "https://localhost:5001/api"
_DEFAULT_INGESTION_TIMEOUT: Final[float] = 30.0
_DEFAULT_INGESTION_RETRY_ATTEMPTS: Final[int] = 2
_DEFAULT_INGESTION_RETRY_DELAY: Final[float] = 1.0
_DEFAULT_HISTORY_TIMEOUT: Final[float] = 15.0
_DEFAULT_OBSERVABILITY_NAMESPACE: Final[str] = "kbchat"


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    """Read an optional integer environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_optional_float(name: str) -> float | None:
    """Read an optional float environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable with a fallback."""

    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


def _env_optional_str(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    adk_base_url: str = _DEFAULT_ADK_BASE_URL
    adk_timeout: float = _DEFAULT_ADK_TIMEOUT
    adk_connect_timeout: float = _DEFAULT_ADK_CONNECT_TIMEOUT
    adk_use_mock: bool = False
    adk_access_token: str | None = None
    ingestion_base_url: str = _DEFAULT_INGESTION_BASE_URL
    ingestion_timeout: float = _DEFAULT_INGESTION_TIMEOUT
    ingestion_retry_attempts: int = _DEFAULT_INGESTION_RETRY_ATTEMPTS
    ingestion_retry_delay: float = _DEFAULT_INGESTION_RETRY_DELAY
    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    history_timeout: float = _DEFAULT_HISTORY_TIMEOUT
    observability_metrics_enabled: bool = True
    observability_namespace: str = _DEFAULT_OBSERVABILITY_NAMESPACE
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        return cls(
            adk_base_url=os.getenv("ADK_BASE_URL", _DEFAULT_ADK_BASE_URL),
            adk_timeout=_env_float("ADK_TIMEOUT", _DEFAULT_ADK_TIMEOUT),
            adk_connect_timeout=_env_float("ADK_CONNECT_TIMEOUT", _DEFAULT_ADK_CONNECT_TIMEOUT),
            adk_use_mock=_env_bool("ADK_USE_MOCK", False),
            adk_access_token=_env_optional_str("ADK_ACCESS_TOKEN"),
            ingestion_base_url=os.getenv("INGESTION_BASE_URL", _DEFAULT_INGESTION_BASE_URL),
            ingestion_timeout=_env_float("INGESTION_TIMEOUT", _DEFAULT_INGESTION_TIMEOUT),
            ingestion_retry_attempts=max(
                0,
                _env_int("INGESTION_RETRY_ATTEMPTS", _DEFAULT_INGESTION_RETRY_ATTEMPTS),
            ),
            ingestion_retry_delay=max(
                0.0,
                _env_float("INGESTION_RETRY_DELAY", _DEFAULT_INGESTION_RETRY_DELAY),
            ),
            supabase_url=_env_optional_str("SUPABASE_URL"),
            supabase_anon_key=_env_optional_str("SUPABASE_ANON_KEY"),
            history_timeout=_env_float("HISTORY_TIMEOUT", _DEFAULT_HISTORY_TIMEOUT),
            observability_metrics_enabled=_env_bool("OBSERVABILITY_METRICS_ENABLED", True),
            observability_namespace=os.getenv(
                "OBSERVABILITY_NAMESPACE", _DEFAULT_OBSERVABILITY_NAMESPACE
            ),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    @property
    def adk_chat_url(self) -> str:
        return f"{self.adk_base_url.rstrip('/')}/api/chat"

    @property
    def adk_health_url(self) -> str:
        return f"{self.adk_base_url.rstrip('/')}/health"

    @property
    def supabase_rest_url(self) -> str:
        if not self.supabase_url:
            raise ValueError("SUPABASE_URL must be set to use the chat history service")
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    def adk_timeout_config(self) -> httpx.Timeout:
        """Return the timeout applied to chat requests.

        The read timeout bounds the gap between two stream reads, so a stalled
        stream aborts after ``adk_timeout`` seconds without data.
        """

        return httpx.Timeout(self.adk_timeout, connect=self.adk_connect_timeout)

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )
