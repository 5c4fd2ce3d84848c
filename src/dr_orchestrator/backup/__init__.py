"""Database and file-set backups, and database restore.

Provides the ``ArtifactPipeline`` that turns a database or a set of files
into a compressed (optionally encrypted) artifact, and restores a database
from one.

Usage:
    from dr_orchestrator.backup import ArtifactPipeline, ConnectionParams
    from dr_orchestrator.backup import PgDumpTool, PsqlRestoreTool
"""

from dr_orchestrator.backup.models import BackupArtifact, BackupType, ConnectionParams
from dr_orchestrator.backup.pipeline import ArtifactPipeline
from dr_orchestrator.backup.tools import Dumper, PgDumpTool, PsqlRestoreTool, Restorer

__all__ = [
    "ArtifactPipeline",
    "BackupArtifact",
    "BackupType",
    "ConnectionParams",
    "Dumper",
    "Restorer",
    "PgDumpTool",
    "PsqlRestoreTool",
]
