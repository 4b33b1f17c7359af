"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    ExportConfig,
    GlobalConfig,
    IngestionConfig,
    LoginCredentials,
    SourceClientConfig,
    StorageConfig,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "ExportConfig",
    "GlobalConfig",
    "IngestionConfig",
    "LoginCredentials",
    "SourceClientConfig",
    "StorageConfig",
]
