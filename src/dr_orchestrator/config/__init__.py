"""Configuration: TOML loading and settings models.

Usage:
    >>> from dr_orchestrator.config import load_config, OrchestratorConfig
"""

from dr_orchestrator.config.loader import load_config
from dr_orchestrator.config.models import (
    BackupSettings,
    DatabaseSettings,
    MetricsSettings,
    OrchestratorConfig,
    StorageSettings,
)

__all__ = [
    "load_config",
    "OrchestratorConfig",
    "DatabaseSettings",
    "StorageSettings",
    "BackupSettings",
    "MetricsSettings",
]
