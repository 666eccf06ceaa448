"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class LendingCircleConfig(BaseSettings):
    """Lending circle engine configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LENDING_CIRCLE_",
        env_file=".env",
        case_sensitive=False,
    )

    # Storage configuration
    database_url: str = "sqlite:///lending_circle.db"  # or memory://

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    enforce_payment_upper_bound: bool = False  # Reject payments above the remaining amount
    default_currency: str = "PEN"


# Global configuration instance
config = LendingCircleConfig()


def get_config() -> LendingCircleConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingCircleConfig:
    """Reload configuration from environment"""
    global config
    config = LendingCircleConfig()
    return config
