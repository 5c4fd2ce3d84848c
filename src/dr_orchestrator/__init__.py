"""dr-orchestrator: Disaster recovery backups for PostgreSQL and files.

Dumps databases with ``pg_dump`` (or archives file sets), compresses and
optionally encrypts the result, stores it in OCI Object Storage, and
restores from it with ``psql``.

Usage:
    from dr_orchestrator import ArtifactPipeline, ConnectionParams
    from dr_orchestrator import ObjectStoreGateway, MetricsSink
    from dr_orchestrator import encrypt_file, decrypt_file, generate_key
"""

__version__ = "0.1.0"

# Backup
from dr_orchestrator.backup.models import BackupArtifact, BackupType, ConnectionParams
from dr_orchestrator.backup.pipeline import ArtifactPipeline

# Codecs
from dr_orchestrator.archive.codec import compression_ratio
from dr_orchestrator.encryption.codec import (
    decrypt_file,
    encrypt_file,
    generate_key,
    key_to_password,
)

# Config
from dr_orchestrator.config.loader import load_config
from dr_orchestrator.config.models import OrchestratorConfig

# Storage and metrics
from dr_orchestrator.metrics.sink import HealthSummary, MetricsSink
from dr_orchestrator.storage.gateway import ObjectStoreGateway, object_key_for

# Errors
from dr_orchestrator.errors import OrchestratorError

__all__ = [
    # Backup
    "ArtifactPipeline",
    "BackupArtifact",
    "BackupType",
    "ConnectionParams",
    # Codecs
    "compression_ratio",
    "encrypt_file",
    "decrypt_file",
    "generate_key",
    "key_to_password",
    # Config
    "load_config",
    "OrchestratorConfig",
    # Storage and metrics
    "ObjectStoreGateway",
    "object_key_for",
    "MetricsSink",
    "HealthSummary",
    # Errors
    "OrchestratorError",
]
