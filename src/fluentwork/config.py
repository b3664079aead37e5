"""Configuration settings for the progress engine."""
import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Learning settings
REPETITION_INTERVALS = [0, 1, 3, 7, 14, 30]  # days until next review, indexed by mastery level
MAX_MASTERY_LEVEL = 5

STORE_MODES = ("local", "remote")


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///fluentwork.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class LearningSettings:
    """Spaced repetition and statistics settings."""
    repetition_intervals: list[int] = field(default_factory=lambda: list(REPETITION_INTERVALS))
    max_mastery_level: int = MAX_MASTERY_LEVEL
    minutes_per_entry: int = int(os.getenv("MINUTES_PER_ENTRY", "10"))
    recent_mistakes_limit: int = int(os.getenv("RECENT_MISTAKES_LIMIT", "5"))


@dataclass
class StoreSettings:
    """Persistence backend settings."""
    mode: str = os.getenv("STORE_MODE", "local")
    local_key_prefix: str = os.getenv("LOCAL_KEY_PREFIX", "fluentwork")


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_learning_settings() -> LearningSettings:
    """Get learning settings."""
    return LearningSettings()


def get_store_settings() -> StoreSettings:
    """Get store settings."""
    return StoreSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    learning: LearningSettings = field(default_factory=get_learning_settings)
    store: StoreSettings = field(default_factory=get_store_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if len(self.learning.repetition_intervals) != self.learning.max_mastery_level + 1:
            raise ValueError("REPETITION_INTERVALS must have one entry per mastery level")

        if any(days < 0 for days in self.learning.repetition_intervals):
            raise ValueError("REPETITION_INTERVALS cannot contain negative values")

        if self.learning.minutes_per_entry < 0:
            raise ValueError("MINUTES_PER_ENTRY cannot be negative")

        if self.learning.recent_mistakes_limit < 1:
            raise ValueError("RECENT_MISTAKES_LIMIT must be positive")

        if self.store.mode not in STORE_MODES:
            raise ValueError(f"STORE_MODE must be one of {', '.join(STORE_MODES)}")


# Create global settings instance
settings = Settings()
settings.validate()
