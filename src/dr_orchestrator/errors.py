"""Error taxonomy for backup, restore, and transfer operations.

Every error raised by the library derives from ``OrchestratorError`` and
carries a short ``reason`` string.  The reason is used as the ``reason``
label on the metrics failure counters and is stable across releases.

Usage:
    from dr_orchestrator.errors import DumpError, OrchestratorError

    try:
        pipeline.run_database_backup(params, "prod-db", "./backups")
    except OrchestratorError as e:
        print(f"{e.reason}: {e}")
"""


class OrchestratorError(Exception):
    """Base class for all dr-orchestrator errors."""

    reason = "unknown"


class ValidationError(OrchestratorError):
    """Raised for bad or missing input, before any side effect."""

    reason = "validation_failed"


class DumpError(OrchestratorError):
    """Raised when the external dump tool exits with a nonzero status."""

    reason = "dump_failed"


class RestoreToolError(OrchestratorError):
    """Raised when the external restore tool exits with a nonzero status."""

    reason = "restore_failed"


class ArtifactIOError(OrchestratorError, OSError):
    """Raised when a local file read or write fails."""

    reason = "io_error"


class FormatError(OrchestratorError):
    """Raised for a malformed archive or encryption envelope."""

    reason = "invalid_format"


class ArchiveError(OrchestratorError):
    """Raised when an archive holds no regular file to extract."""

    reason = "archive_empty"


class AuthenticationError(OrchestratorError):
    """Raised when authenticated decryption fails.

    A wrong password and a corrupted file produce the same error.
    """

    reason = "decryption_failed"


class MissingKeyError(OrchestratorError):
    """Raised when an encryption key is required but none was supplied."""

    reason = "missing_encryption_key"


class TransferError(OrchestratorError):
    """Raised when an object storage upload, download, or listing fails."""

    reason = "transfer_failed"


class NotFoundError(OrchestratorError):
    """Raised when a remote object key does not exist."""

    reason = "not_found"


class ScheduleError(OrchestratorError):
    """Raised when the external schedule tool fails."""

    reason = "schedule_failed"
