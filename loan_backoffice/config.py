"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BackOfficeConfig(BaseSettings):
    """Loan back office configuration"""

    # Database configuration
    database_url: str = "sqlite:///loan_backoffice.db"  # memory:// for a throwaway store

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Business rules configuration
    default_currency: str = "TZS"
    schedule_strategy: str = "flat_rate"  # flat_rate or amortizing
    due_soon_days: int = 30
    weeks_per_month: str = "4.33"  # Amortizing weekly period conversion
    recent_items_limit: int = 5

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "LOANS_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BackOfficeConfig()


def get_config() -> BackOfficeConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BackOfficeConfig:
    """Reload configuration from environment"""
    global config
    config = BackOfficeConfig()
    return config
