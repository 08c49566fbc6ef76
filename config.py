"""Configuration module for the reminder delivery pipeline.

This module provides configuration settings using Pydantic Settings.
Environment variables can be used to override default values.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings for the reminder delivery pipeline.

    All settings can be overridden via environment variables.
    Example: export API_BASE_URL="http://10.0.0.5:8001"
    """

    # Storage Configuration
    DATABASE_URL: str = "sqlite:///./assistant_storage.db"
    """Key-value storage location. Default: SQLite file in current directory"""

    # Backend Configuration
    API_BASE_URL: str = "http://localhost:8000"
    """Base URL of the chat / intent / push backend"""

    REQUEST_TIMEOUT: float = 30.0
    """Timeout in seconds for every backend request"""

    PUSH_SCHEDULE_TIMEOUT: float = 30.0
    """How long the scheduler waits for the push backend before going local-only"""

    # Intent Routing
    INTENT_CONFIDENCE_THRESHOLD: float = 0.8
    """Minimum classifier confidence for the reminder path (inclusive)"""

    REMINDER_INTENT_LABEL: str = "REMINDER"
    """Intent label returned by the classifier for reminder requests"""

    # Device Configuration
    DEVICE_PLATFORM: str = "android"
    """Platform reported to the push backend: android, ios or other"""

    DEVICE_PLATFORM_VERSION: int = 34
    """Platform version (Android API level >= 33 requires the OS permission step)"""

    DEFAULT_USER_ID: str = "anonymous"
    """Sentinel user id when none can be resolved"""

    # General Configuration
    TIMEZONE: str = "UTC"
    """Timezone used for "now" and for clock-time reminders"""

    CONVERSATION_HISTORY_LIMIT: int = 100
    """Maximum number of chat turns kept in local history"""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # Local API Facade
    API_HOST: str = "127.0.0.1"
    """Host the UI-facing facade binds to"""

    API_PORT: int = 8005
    """Port the UI-facing facade binds to"""

    class Config:
        """Pydantic config"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
