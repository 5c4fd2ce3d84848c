"""Backup and restore pipeline.

A backup run is strictly sequential::

    Start -> Producing (dump or collect) -> Archiving -> [Encrypting] -> Done

with ``Failed`` reachable from every non-terminal stage.  On failure the
partial output of the failing stage and every earlier intermediate file
(e.g. the raw SQL dump) are removed, so the output directory never holds
a half-written artifact that looks valid.  Cleanup is best effort: a file
that cannot be removed is logged, and the original error is raised.

Restore is the inverse: decrypt (when the file name carries the
``.encrypted`` marker), extract the single embedded dump, and apply it
with the restore tool.  All intermediate files live in a temporary
directory that is removed on exit, success or failure.

Usage:
    from dr_orchestrator.backup.pipeline import ArtifactPipeline
    from dr_orchestrator.backup.models import ConnectionParams

    pipeline = ArtifactPipeline(metrics=sink)
    artifact = pipeline.run_database_backup(
        ConnectionParams(database="app"), "prod-db", "./backups",
        encryption_key=key,
    )

    pipeline.run_restore(
        ConnectionParams(database="app"), artifact.local_path,
        target_database="app_restored", encryption_key=key,
    )
"""

import logging
import os
import tempfile
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Iterable

from dr_orchestrator.archive.codec import (
    ArchiveStats,
    archive_single_file,
    build_archive,
    compression_ratio,
    extract_single_file,
)
from dr_orchestrator.backup.models import BackupArtifact, BackupType, ConnectionParams
from dr_orchestrator.backup.tools import Dumper, PgDumpTool, PsqlRestoreTool, Restorer
from dr_orchestrator.encryption.codec import (
    ENCRYPTED_SUFFIX,
    decrypt_file,
    encrypt_file,
    is_encrypted,
)
from dr_orchestrator.errors import ArtifactIOError, MissingKeyError, ValidationError
from dr_orchestrator.metrics.sink import MetricsSink

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
ARCHIVE_SUFFIX = ".tar.gz"
DUMP_SUFFIX = ".sql"


class Stage(str, Enum):
    """Stages of a pipeline run, used in logs."""

    PRODUCING = "producing"
    ARCHIVING = "archiving"
    ENCRYPTING = "encrypting"
    DECRYPTING = "decrypting"
    EXTRACTING = "extracting"
    RESTORING = "restoring"


def _remove(path: Path) -> None:
    """Best-effort removal of an intermediate or partial file."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")


def _size(path: Path) -> int:
    try:
        return path.stat().st_size
    except OSError as e:
        raise ArtifactIOError(f"Failed to stat {path}: {e}") from e


def _validate_name(name: str) -> None:
    if not name or not name.strip():
        raise ValidationError("Backup name is required")
    if "/" in name or os.sep in name:
        raise ValidationError(f"Backup name must not contain path separators: {name}")


def _failure_reason(error: BaseException) -> str:
    return getattr(error, "reason", "unknown")


class ArtifactPipeline:
    """Produces backup artifacts and restores them.

    Args:
        dumper: Dump tool.  Defaults to ``pg_dump``.
        restorer: Restore tool.  Defaults to ``psql``.
        metrics: Optional sink that receives success/failure records.
        clock: Returns the current local time; used for file names and
            ``created_at``.
    """

    def __init__(
        self,
        dumper: Dumper | None = None,
        restorer: Restorer | None = None,
        metrics: MetricsSink | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.dumper = dumper or PgDumpTool()
        self.restorer = restorer or PsqlRestoreTool()
        self.metrics = metrics
        self._clock = clock

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def run_database_backup(
        self,
        params: ConnectionParams,
        name: str,
        output_dir: str | os.PathLike,
        encryption_key: str | None = None,
    ) -> BackupArtifact:
        """Dump a database, archive the dump, and optionally encrypt it.

        Output files are named ``<name>-<YYYYmmdd-HHMMSS>.tar.gz`` (plus
        ``.encrypted`` when a key is given).  The raw ``.sql`` dump is
        deleted once the archive is written, and also when archiving
        fails.

        Args:
            params: Connection parameters; ``params.database`` is dumped.
            name: Backup name used as the file name prefix.
            output_dir: Directory for the artifact (created if missing).
            encryption_key: Password or generated key.  ``None`` skips
                encryption.

        Returns:
            The ``BackupArtifact`` describing the final file.

        Raises:
            ValidationError: For an empty name or database.
            DumpError: If the dump tool fails.  No archive is created.
            ArtifactIOError: If writing the artifact fails.
        """
        started = self._clock()
        start = time.monotonic()
        stamp = started.strftime(TIMESTAMP_FORMAT)

        stage = Stage.PRODUCING
        try:
            _validate_name(name)
            if not params.database:
                raise ValidationError("Database name is required")
            out_dir = self._prepare_output_dir(output_dir)
            dump_path = out_dir / f"{name}-{stamp}{DUMP_SUFFIX}"
            archive_path = out_dir / f"{name}-{stamp}{ARCHIVE_SUFFIX}"

            logger.info(f"Dumping database '{params.database}' to {dump_path}")
            try:
                self.dumper.dump(params, dump_path)
            except Exception:
                _remove(dump_path)
                raise
            original_size = _size(dump_path)

            stage = Stage.ARCHIVING
            logger.info(f"Compressing to {archive_path.name}")
            try:
                self._write_archive(
                    archive_path, lambda f: archive_single_file(dump_path, f)
                )
                compressed_size = _size(archive_path)
            except Exception:
                _remove(archive_path)
                raise
            finally:
                _remove(dump_path)

            final_path = archive_path
            if encryption_key:
                stage = Stage.ENCRYPTING
                final_path = self._encrypt(archive_path, encryption_key)
        except Exception as e:
            logger.error(f"Backup '{name}' failed while {stage.value}: {e}")
            self._record_backup_failure(e)
            raise

        return self._finish_backup(
            BackupType.DATABASE,
            name,
            started,
            start,
            final_path,
            original_size,
            compressed_size,
            file_count=1,
            encrypted=bool(encryption_key),
        )

    def run_file_set_backup(
        self,
        sources: Iterable[str | os.PathLike],
        exclude_rules: Iterable[str],
        name: str,
        output_dir: str | os.PathLike,
        encryption_key: str | None = None,
    ) -> BackupArtifact:
        """Archive files and directories, and optionally encrypt the archive.

        Args:
            sources: Files and directories to back up.
            exclude_rules: Glob patterns matched against full path and
                base name; a matching directory is pruned entirely.
            name: Backup name used as the file name prefix.
            output_dir: Directory for the artifact (created if missing).
            encryption_key: Password or generated key.  ``None`` skips
                encryption.

        Returns:
            The ``BackupArtifact`` describing the final file.

        Raises:
            ValidationError: If no sources are given or one does not exist
                (checked before anything is written).
            ArtifactIOError: If reading a source or writing the artifact fails.
        """
        started = self._clock()
        start = time.monotonic()
        source_list = [os.fspath(s) for s in sources]
        rules = list(exclude_rules)

        stage = Stage.ARCHIVING
        try:
            _validate_name(name)
            if not source_list:
                raise ValidationError("No sources specified for backup")
            for source in source_list:
                if not os.path.lexists(source):
                    raise ValidationError(f"Source does not exist: {source}")
            out_dir = self._prepare_output_dir(output_dir)
            archive_path = out_dir / f"{name}-{started.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"

            logger.info(f"Archiving {len(source_list)} source(s) to {archive_path.name}")
            try:
                stats = self._write_archive(
                    archive_path, lambda f: build_archive(source_list, rules, f)
                )
                compressed_size = _size(archive_path)
            except Exception:
                _remove(archive_path)
                raise

            final_path = archive_path
            if encryption_key:
                stage = Stage.ENCRYPTING
                final_path = self._encrypt(archive_path, encryption_key)
        except Exception as e:
            logger.error(f"Backup '{name}' failed while {stage.value}: {e}")
            self._record_backup_failure(e)
            raise

        return self._finish_backup(
            BackupType.FILE_SET,
            name,
            started,
            start,
            final_path,
            stats.total_uncompressed_bytes,
            compressed_size,
            file_count=stats.file_count,
            encrypted=bool(encryption_key),
        )

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def run_restore(
        self,
        params: ConnectionParams,
        artifact_path: str | os.PathLike,
        target_database: str | None = None,
        encryption_key: str | None = None,
    ) -> None:
        """Restore a database from a local artifact.

        Args:
            params: Connection parameters for the restore tool.
            artifact_path: ``.tar.gz`` or ``.tar.gz.encrypted`` artifact.
            target_database: Database to restore into.  Defaults to
                ``params.database``.
            encryption_key: Required when the artifact is encrypted.

        Raises:
            ValidationError: If the artifact does not exist.
            MissingKeyError: If the artifact is encrypted and no key is given.
            AuthenticationError: If decryption fails.
            FormatError: If the archive is malformed.
            ArchiveError: If the archive holds no regular file.
            RestoreToolError: If the restore tool fails.
        """
        start = time.monotonic()
        artifact = Path(artifact_path)
        database = target_database or params.database

        stage = Stage.DECRYPTING
        try:
            if not artifact.is_file():
                raise ValidationError(f"Backup file not found: {artifact}")
            if not database:
                raise ValidationError("Target database name is required")
            encrypted = is_encrypted(artifact)
            if encrypted and not encryption_key:
                raise MissingKeyError(
                    f"Backup is encrypted, an encryption key is required: {artifact}"
                )

            with tempfile.TemporaryDirectory(
                prefix="dr-restore-", ignore_cleanup_errors=True
            ) as tmp:
                work_dir = Path(tmp)
                archive_path = artifact
                if encrypted:
                    logger.info(f"Decrypting {artifact.name}")
                    archive_path = decrypt_file(
                        artifact,
                        encryption_key,
                        work_dir / artifact.name[: -len(ENCRYPTED_SUFFIX)],
                    )

                stage = Stage.EXTRACTING
                try:
                    with open(archive_path, "rb") as f:
                        sql_path = extract_single_file(f, work_dir / "extract")
                except OSError as e:
                    raise ArtifactIOError(f"Failed to read {archive_path}: {e}") from e

                stage = Stage.RESTORING
                logger.info(f"Restoring {sql_path.name} into database '{database}'")
                self.restorer.restore(params, sql_path, database)
        except Exception as e:
            logger.error(f"Restore from {artifact} failed while {stage.value}: {e}")
            if self.metrics:
                self.metrics.record_restore_failure(_failure_reason(e))
            raise

        if self.metrics:
            self.metrics.record_restore_success(time.monotonic() - start)
        logger.info(f"Restore into '{database}' completed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _prepare_output_dir(self, output_dir: str | os.PathLike) -> Path:
        path = Path(output_dir)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArtifactIOError(f"Failed to create output directory {path}: {e}") from e
        return path

    def _write_archive(
        self, path: Path, writer: Callable[[BinaryIO], ArchiveStats]
    ) -> ArchiveStats:
        try:
            with open(path, "wb") as f:
                return writer(f)
        except ArtifactIOError:
            raise
        except OSError as e:
            raise ArtifactIOError(f"Failed to write {path}: {e}") from e

    def _encrypt(self, archive_path: Path, encryption_key: str) -> Path:
        """Encrypt ``archive_path`` and remove the plaintext archive.

        The plaintext archive is removed whether encryption succeeds or
        fails; if it cannot be removed after a successful encryption the
        encrypted file is discarded too and the run fails.
        """
        logger.info(f"Encrypting {archive_path.name}")
        try:
            encrypted_path = encrypt_file(archive_path, encryption_key)
        except Exception:
            _remove(archive_path)
            raise

        try:
            archive_path.unlink()
        except OSError as e:
            _remove(encrypted_path)
            raise ArtifactIOError(
                f"Failed to remove unencrypted archive {archive_path}: {e}"
            ) from e
        return encrypted_path

    def _finish_backup(
        self,
        backup_type: BackupType,
        name: str,
        started: datetime,
        start: float,
        final_path: Path,
        original_size: int,
        compressed_size: int,
        file_count: int,
        encrypted: bool,
    ) -> BackupArtifact:
        duration = time.monotonic() - start
        size = _size(final_path)
        artifact = BackupArtifact(
            type=backup_type,
            name=name,
            created_at=started,
            local_path=str(final_path),
            original_size_bytes=original_size,
            compressed_size_bytes=compressed_size,
            size_bytes=size,
            compression_ratio=compression_ratio(original_size, compressed_size),
            duration_ms=int(duration * 1000),
            encrypted=encrypted,
            file_count=file_count,
        )
        if self.metrics:
            self.metrics.record_backup_success(duration, size)
        logger.info(
            f"Backup '{name}' completed: {final_path} "
            f"({original_size} -> {compressed_size} bytes, "
            f"{artifact.compression_pct:.1f}% saved)"
        )
        return artifact

    def _record_backup_failure(self, error: BaseException) -> None:
        if self.metrics:
            self.metrics.record_backup_failure(error, _failure_reason(error))
