"""
Runtime configuration for the DalandanCare guidance service.

Environment variables are read once (after loading a local .env file) into
frozen dataclasses that are handed to each component explicitly, so tests can
build their own settings with fake endpoints.
"""
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.1-8b-instant"
DEFAULT_TIMEOUT_SECONDS = 30.0


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class GatewayConfig:
    """Connection settings for the external chat-completion API."""
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    health_timeout: float = 10.0

    @property
    def key_prefix(self) -> str:
        """Short, log-safe prefix of the API key."""
        if not self.api_key:
            return "NOT_SET"
        return self.api_key[:6] + "..."


@dataclass(frozen=True)
class Settings:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    max_retries: int = 0
    context_window: int = 8
    retention_days: int = 30
    environment: str = "development"
    enable_seed_endpoint: bool = False
    cors_origins: tuple[str, ...] = ("http://localhost:5173", "http://localhost:3000")
    log_level: str = "INFO"
    log_json: bool = True
    # Only behind a reverse proxy that overwrites X-Forwarded-For
    trust_proxy: bool = False

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings() -> Settings:
    """Build Settings from the process environment (and .env, if present)."""
    load_dotenv()

    # REQUEST_TIMEOUT has historically been given in milliseconds
    timeout = _env_float("REQUEST_TIMEOUT", DEFAULT_TIMEOUT_SECONDS)
    if timeout > 1000:
        timeout = timeout / 1000.0

    gateway = GatewayConfig(
        api_key=(os.getenv("GROQ_API_KEY") or "").strip() or None,
        base_url=os.getenv("GROQ_BASE_URL", DEFAULT_BASE_URL).rstrip("/"),
        model=os.getenv("GROQ_MODEL", DEFAULT_MODEL),
        timeout=timeout,
    )

    origins = os.getenv("CORS_ORIGINS")
    cors_origins = (
        tuple(o.strip() for o in origins.split(",") if o.strip())
        if origins
        else Settings.cors_origins
    )

    return Settings(
        gateway=gateway,
        max_retries=max(0, _env_int("LLM_MAX_RETRIES", 0)),
        context_window=max(1, _env_int("CHAT_CONTEXT_WINDOW", 8)),
        retention_days=max(1, _env_int("CHAT_RETENTION_DAYS", 30)),
        environment=os.getenv("ENVIRONMENT", "development"),
        enable_seed_endpoint=_env_bool("ENABLE_SEED_ENDPOINT", False),
        cors_origins=cors_origins,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_json=_env_bool("LOG_JSON", True),
        trust_proxy=_env_bool("TRUST_PROXY", False),
    )
