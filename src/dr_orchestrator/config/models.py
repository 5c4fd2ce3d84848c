"""Pydantic models for orchestrator configuration."""

from pydantic import BaseModel, Field

from dr_orchestrator.backup.models import ConnectionParams


# ============================================================================
# Section Models
# ============================================================================


class DatabaseSettings(BaseModel):
    """``[database]`` section of dr.toml."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str | None = Field(default=None, repr=False)
    name: str = ""

    def connection_params(self, database: str | None = None) -> ConnectionParams:
        """Connection parameters for the dump/restore tools."""
        return ConnectionParams(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            database=database or self.name,
        )


class StorageSettings(BaseModel):
    """``[storage]`` section of dr.toml."""

    bucket: str = ""
    namespace: str = ""  # Auto-detected when empty
    compartment: str = ""
    oci_config: str = "~/.oci/config"
    oci_profile: str = "DEFAULT"
    connect_timeout: float = 10.0
    read_timeout: float = 600.0  # Bounds each upload/download


class BackupSettings(BaseModel):
    """``[backup]`` section of dr.toml."""

    output_dir: str = "./backups"
    exclude: list[str] = Field(default_factory=list)
    encryption_key: str | None = Field(default=None, repr=False)


class MetricsSettings(BaseModel):
    """``[metrics]`` section of dr.toml."""

    host: str = "0.0.0.0"
    port: int = 9090


# ============================================================================
# Complete Configuration
# ============================================================================


class OrchestratorConfig(BaseModel):
    """Complete orchestrator configuration from dr.toml."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
