"""Backup data models.

Usage:
    from dr_orchestrator.backup.models import BackupArtifact, ConnectionParams

    params = ConnectionParams(host="db.internal", user="backup", database="app")
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class BackupType(str, Enum):
    """Kind of backup an artifact holds."""

    DATABASE = "postgres"
    FILE_SET = "files"


class ConnectionParams(BaseModel):
    """PostgreSQL connection parameters for the dump/restore tools."""

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str | None = Field(default=None, repr=False)  # passed via PGPASSWORD only
    database: str


class BackupArtifact(BaseModel):
    """Result of a successful backup run.  Immutable once created."""

    model_config = ConfigDict(frozen=True)

    type: BackupType
    name: str
    created_at: datetime
    local_path: str
    original_size_bytes: int
    compressed_size_bytes: int              # .tar.gz size, before any encryption
    size_bytes: int                         # size of the file at local_path
    compression_ratio: float                # 1 - compressed/original, 0.0 for empty input
    duration_ms: int
    encrypted: bool = False
    file_count: int = 1

    @property
    def compression_pct(self) -> float:
        """Compression ratio as a percentage, for display."""
        return self.compression_ratio * 100
