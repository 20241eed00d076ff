"""
Configuration management for the voice shopping assistant.

Loads environment variables and provides a strongly-typed configuration object.
Validates required keys at startup.
"""

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv
import structlog

load_dotenv()

logger = structlog.get_logger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid or missing."""
    pass


@dataclass(frozen=True)
class Config:
    """Strongly-typed configuration object."""

    # Server
    port: int = 7860
    log_level: str = "INFO"

    # Speech session
    # - assistant_id is handed to the speech session provider on every (re)connect
    assistant_id: str = ""
    default_locale: str = "en"

    # Oracle (Groq/OpenAI)
    # - Default is Groq; set LLM_PROVIDER=openai + OPENAI_API_KEY/OPENAI_MODEL to use ChatGPT.
    # - oracle_fallback_model is tried once when the primary model call fails.
    llm_provider: str = "groq"  # "groq" | "openai"
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    oracle_fallback_model: str = ""
    oracle_timeout_seconds: float = 8.0
    oracle_max_tokens: int = 512
    prompt_dir: str = ""

    # Echo suppression / dialogue timing
    echo_checkout_window_ms: int = 1500
    echo_command_window_ms: int = 4000
    checkout_grace_ms: int = 1500

    # Session resilience
    reconnect_max_attempts: int = 3
    reconnect_end_backoff_seconds: float = 1.0
    reconnect_error_backoff_seconds: float = 3.0

    # Command handling
    action_log_size: int = 20
    navigation_cooldown_seconds: float = 3.0
    product_match_confidence: float = 0.7

    @property
    def oracle_model(self) -> str:
        """Model name for the configured provider."""
        return self.openai_model if self.llm_provider == "openai" else self.groq_model

    @property
    def oracle_api_key(self) -> str:
        return self.openai_api_key if self.llm_provider == "openai" else self.groq_api_key

    def validate(self) -> None:
        """Validate that all required configuration is present."""
        missing = []

        if not self.assistant_id:
            missing.append("ASSISTANT_ID")

        provider = (self.llm_provider or "groq").strip().lower()
        if provider not in ("groq", "openai"):
            raise ConfigError(
                f"Invalid LLM_PROVIDER '{self.llm_provider}'. Expected 'groq' or 'openai'."
            )

        if provider == "groq":
            if not self.groq_api_key:
                missing.append("GROQ_API_KEY")
            if not self.groq_model:
                missing.append("GROQ_MODEL")

        if provider == "openai":
            if not self.openai_api_key:
                missing.append("OPENAI_API_KEY")
            if not self.openai_model:
                missing.append("OPENAI_MODEL")

        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}\n"
                "Please check your .env file."
            )

        if self.oracle_timeout_seconds <= 0:
            raise ConfigError("ORACLE_TIMEOUT_SECONDS must be positive.")
        if min(self.echo_checkout_window_ms, self.echo_command_window_ms, self.checkout_grace_ms) < 0:
            raise ConfigError("Echo windows and CHECKOUT_GRACE_MS must not be negative.")
        if self.reconnect_max_attempts < 0:
            raise ConfigError("RECONNECT_MAX_ATTEMPTS must not be negative.")
        if self.action_log_size < 1:
            raise ConfigError("ACTION_LOG_SIZE must be at least 1.")

    def log_config(self) -> None:
        """Log configuration (without secrets)."""
        logger.info(
            "Configuration loaded",
            port=self.port,
            log_level=self.log_level,
            default_locale=self.default_locale,
            assistant_id_set=bool(self.assistant_id),
            llm_provider=self.llm_provider,
            llm_model=self.oracle_model,
            oracle_fallback_model=self.oracle_fallback_model or None,
            oracle_timeout_seconds=self.oracle_timeout_seconds,
            echo_checkout_window_ms=self.echo_checkout_window_ms,
            echo_command_window_ms=self.echo_command_window_ms,
            checkout_grace_ms=self.checkout_grace_ms,
            reconnect_max_attempts=self.reconnect_max_attempts,
            reconnect_end_backoff_seconds=self.reconnect_end_backoff_seconds,
            reconnect_error_backoff_seconds=self.reconnect_error_backoff_seconds,
            action_log_size=self.action_log_size,
            groq_key_set=bool(self.groq_api_key),
            openai_key_set=bool(self.openai_api_key),
        )


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the application configuration.

    Uses lru_cache to ensure we only load config once.
    """
    default_locale_raw = os.getenv("DEFAULT_LOCALE", "en").strip().lower()
    default_locale = "ar" if default_locale_raw.startswith("ar") else "en"

    config = Config(
        # Server
        port=_get_int("PORT", 7860),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),

        # Speech session
        assistant_id=os.getenv("ASSISTANT_ID", ""),
        default_locale=default_locale,

        # Oracle
        llm_provider=os.getenv("LLM_PROVIDER", "groq").strip().lower(),
        groq_api_key=os.getenv("GROQ_API_KEY", ""),
        groq_model=os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        oracle_fallback_model=os.getenv("ORACLE_FALLBACK_MODEL", ""),
        oracle_timeout_seconds=_get_float("ORACLE_TIMEOUT_SECONDS", 8.0),
        oracle_max_tokens=_get_int("ORACLE_MAX_TOKENS", 512),
        prompt_dir=os.getenv("PROMPT_DIR", ""),

        # Echo suppression / dialogue timing
        echo_checkout_window_ms=_get_int("ECHO_CHECKOUT_WINDOW_MS", 1500),
        echo_command_window_ms=_get_int("ECHO_COMMAND_WINDOW_MS", 4000),
        checkout_grace_ms=_get_int("CHECKOUT_GRACE_MS", 1500),

        # Session resilience
        reconnect_max_attempts=_get_int("RECONNECT_MAX_ATTEMPTS", 3),
        reconnect_end_backoff_seconds=_get_float("RECONNECT_END_BACKOFF_SECONDS", 1.0),
        reconnect_error_backoff_seconds=_get_float("RECONNECT_ERROR_BACKOFF_SECONDS", 3.0),

        # Command handling
        action_log_size=_get_int("ACTION_LOG_SIZE", 20),
        navigation_cooldown_seconds=_get_float("NAVIGATION_COOLDOWN_SECONDS", 3.0),
        product_match_confidence=_get_float("PRODUCT_MATCH_CONFIDENCE", 0.7),
    )

    return config


def init_config() -> Config:
    """
    Initialize and validate configuration.

    Call this at application startup to fail fast if config is invalid.
    """
    config = get_config()
    config.validate()
    config.log_config()
    return config
