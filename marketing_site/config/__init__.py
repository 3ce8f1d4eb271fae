"""Application configuration."""

from .production_settings import (
    ProductionSettings, EmailConfig, DatabaseConfig, LoggingConfig,
    SecurityConfig, SystemConfig, settings
)

__all__ = [
    "ProductionSettings", "EmailConfig", "DatabaseConfig", "LoggingConfig",
    "SecurityConfig", "SystemConfig", "settings"
]
