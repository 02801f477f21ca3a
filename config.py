from enum import Enum
from functools import lru_cache
import logging
import sys

from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog


class ErrorPolicy(str, Enum):
    """What a driver does with a record or action it cannot apply."""

    ignore = "ignore"  # drop silently
    log = "log"  # drop, log a warning and keep the error
    raise_ = "raise"  # abort the run


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Transaction Ledger"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Security settings
    rate_limit_per_minute: int = 120

    # Replay settings
    decode_error_policy: ErrorPolicy = ErrorPolicy.ignore
    update_error_policy: ErrorPolicy = ErrorPolicy.ignore
    amount_precision: int = 4

    # Feature flags
    enable_detailed_logging: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LEDGER_",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def rate_limit(self) -> str:
        return f"{self.rate_limit_per_minute}/minute"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Environment-specific configurations
class DevelopmentSettings(Settings):
    debug: bool = True
    log_level: str = "DEBUG"
    log_format: str = "text"
    enable_detailed_logging: bool = True
    update_error_policy: ErrorPolicy = ErrorPolicy.log


class ProductionSettings(Settings):
    debug: bool = False
    log_level: str = "INFO"
    enable_detailed_logging: bool = False


class TestingSettings(Settings):
    debug: bool = True
    log_level: str = "WARNING"  # Reduce noise in tests
    rate_limit_per_minute: int = 10000  # No rate limiting in tests


def get_settings_for_environment(env: str = "development") -> Settings:
    """Get settings for specific environment."""
    settings_map = {
        "development": DevelopmentSettings,
        "production": ProductionSettings,
        "testing": TestingSettings,
    }

    settings_class = settings_map.get(env.lower(), Settings)
    return settings_class()


def configure_logging(settings: Settings) -> None:
    """Route structlog through the stdlib logging module, on stderr."""
    level = logging.DEBUG if settings.enable_detailed_logging else getattr(
        logging, settings.log_level.upper(), logging.INFO
    )
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
