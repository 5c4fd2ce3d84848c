"""OCI Object Storage gateway for backup artifacts.

Artifacts are stored under ``backups/<YYYY>/<MM>/<file>``, so a lexical
listing of a prefix is also a chronological one.  Every call goes out
exactly once: the SDK's retry strategy is replaced with
``NoneRetryStrategy`` and the ``(connect, read)`` timeout bounds each
transfer.  The gateway never deletes local files it did not create; a
failed download removes only its own ``.part`` file.

Usage:
    from dr_orchestrator.storage import ObjectStoreGateway

    gateway = ObjectStoreGateway.from_settings(config.storage, metrics=sink)
    result = gateway.upload("./backups/prod-db-20251209-020000.tar.gz")
    print(result.object_key)   # backups/2025/12/prod-db-20251209-020000.tar.gz

    for obj in gateway.list_by_year_month(2025, 12):
        print(obj.key, obj.size)
"""

import logging
import os
import time
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path, PurePosixPath

import oci
import urllib3
from oci.exceptions import ClientError, RequestException, ServiceError

from dr_orchestrator.config.models import StorageSettings
from dr_orchestrator.errors import (
    ArtifactIOError,
    NotFoundError,
    TransferError,
    ValidationError,
)
from dr_orchestrator.metrics.sink import MetricsSink
from dr_orchestrator.storage.models import DownloadResult, ObjectInfo, UploadResult

logger = logging.getLogger(__name__)

KEY_PREFIX = "backups/"
CHUNK_SIZE = 1024 * 1024
PART_SUFFIX = ".part"
LIST_FIELDS = "name,size,timeModified,etag"


def object_key_for(filename: str | os.PathLike, now: datetime | None = None) -> str:
    """Remote key for ``filename``: ``backups/<YYYY>/<MM>/<basename>``.

    Args:
        filename: Local path; only its base name is used.
        now: Time that selects the year/month folder.  Defaults to now.

    Example:
        >>> object_key_for("/tmp/backup-20251209.tar.gz", datetime(2025, 12, 9))
        'backups/2025/12/backup-20251209.tar.gz'
    """
    now = now or datetime.now()
    basename = PurePosixPath(os.fspath(filename).replace(os.sep, "/")).name
    return f"{KEY_PREFIX}{now.year:04d}/{now.month:02d}/{basename}"


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


class ObjectStoreGateway:
    """Upload, download, and list backup artifacts in one bucket.

    Args:
        client: An ``oci.object_storage.ObjectStorageClient`` (or a stand-in
            with the same methods).
        namespace: Object Storage namespace.
        bucket: Bucket name.
        compartment: Compartment OCID the bucket belongs to.
        metrics: Optional sink for upload/download outcomes.
    """

    def __init__(
        self,
        client,
        namespace: str,
        bucket: str,
        compartment: str = "",
        metrics: MetricsSink | None = None,
    ) -> None:
        if not bucket:
            raise ValidationError("Bucket name is required")
        self.client = client
        self.namespace = namespace
        self.bucket = bucket
        self.compartment = compartment
        self.metrics = metrics

    @classmethod
    def from_settings(
        cls, settings: StorageSettings, metrics: MetricsSink | None = None
    ) -> "ObjectStoreGateway":
        """Build a gateway from ``[storage]`` settings and the OCI config file.

        Raises:
            ValidationError: If bucket or compartment is missing, or the OCI
                config file cannot be loaded.
            TransferError: If the namespace lookup fails.
        """
        if not settings.bucket:
            raise ValidationError("Bucket name is required (--bucket)")
        if not settings.compartment:
            raise ValidationError("Compartment OCID is required (--compartment)")

        try:
            oci_config = oci.config.from_file(
                file_location=os.path.expanduser(settings.oci_config),
                profile_name=settings.oci_profile,
            )
        except ClientError as e:
            raise ValidationError(f"Failed to load OCI config: {e}") from e

        client = oci.object_storage.ObjectStorageClient(
            oci_config,
            retry_strategy=oci.retry.NoneRetryStrategy(),
            timeout=(settings.connect_timeout, settings.read_timeout),
        )

        namespace = settings.namespace
        if not namespace:
            try:
                namespace = client.get_namespace().data
            except (ServiceError, RequestException) as e:
                raise TransferError(f"Failed to get namespace: {e}") from e
            logger.debug(f"Detected Object Storage namespace: {namespace}")

        return cls(
            client,
            namespace=namespace,
            bucket=settings.bucket,
            compartment=settings.compartment,
            metrics=metrics,
        )

    # ------------------------------------------------------------------
    # Upload / download
    # ------------------------------------------------------------------

    def upload(
        self, local_path: str | os.PathLike, object_key: str | None = None
    ) -> UploadResult:
        """Upload a local file.

        Args:
            local_path: File to upload.
            object_key: Remote key.  Defaults to ``object_key_for(local_path)``.

        Raises:
            ValidationError: If the local file does not exist.
            TransferError: If the service call fails.
        """
        path = Path(local_path)
        if not path.is_file():
            raise ValidationError(f"File not found: {path}")
        key = object_key or object_key_for(path)

        start = time.monotonic()
        logger.info(f"Uploading {path.name} to {self.bucket}/{key}")
        try:
            size = path.stat().st_size
            with open(path, "rb") as f:
                response = self.client.put_object(
                    self.namespace,
                    self.bucket,
                    key,
                    f,
                    content_length=size,
                )
        except (ServiceError, RequestException) as e:
            self._record_upload_failure("transfer_failed")
            raise TransferError(f"Failed to upload {path} to {key}: {e}") from e
        except OSError as e:
            self._record_upload_failure("io_error")
            raise ArtifactIOError(f"Failed to read {path}: {e}") from e

        duration = time.monotonic() - start
        if self.metrics:
            self.metrics.record_upload_success(duration)

        return UploadResult(
            object_key=key,
            bucket=self.bucket,
            namespace=self.namespace,
            size=size,
            duration_seconds=duration,
            etag=response.headers.get("etag", "") or "",
        )

    def download(self, object_key: str, local_path: str | os.PathLike) -> DownloadResult:
        """Download ``object_key`` to ``local_path``.

        The body is streamed into ``<local_path>.part`` and renamed over
        ``local_path`` only after the transfer completes.

        Raises:
            NotFoundError: If the key does not exist.
            TransferError: If the service call or the stream fails.
            ArtifactIOError: If the local file cannot be written.
        """
        target = Path(local_path)
        part = target.with_name(target.name + PART_SUFFIX)

        start = time.monotonic()
        logger.info(f"Downloading {self.bucket}/{object_key} to {target}")
        try:
            response = self.client.get_object(self.namespace, self.bucket, object_key)
            size = 0
            with open(part, "wb") as f:
                for chunk in response.data.raw.stream(CHUNK_SIZE, decode_content=False):
                    f.write(chunk)
                    size += len(chunk)
            os.replace(part, target)
        except ServiceError as e:
            self._discard_part(part)
            if e.status == 404:
                self._record_download_failure("not_found")
                raise NotFoundError(f"Object not found: {object_key}") from e
            self._record_download_failure("transfer_failed")
            raise TransferError(f"Failed to download {object_key}: {e}") from e
        except (RequestException, urllib3.exceptions.HTTPError) as e:
            self._discard_part(part)
            self._record_download_failure("transfer_failed")
            raise TransferError(f"Failed to download {object_key}: {e}") from e
        except OSError as e:
            self._discard_part(part)
            self._record_download_failure("io_error")
            raise ArtifactIOError(f"Failed to write {target}: {e}") from e

        duration = time.monotonic() - start
        if self.metrics:
            self.metrics.record_download_success(duration)

        return DownloadResult(
            object_key=object_key,
            local_path=str(target),
            size=size,
            duration_seconds=duration,
            last_modified=_parse_http_date(response.headers.get("last-modified")),
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_by_prefix(self, prefix: str) -> list[ObjectInfo]:
        """List every object under ``prefix``, following pagination.

        Returns:
            ObjectInfo entries sorted by key.

        Raises:
            TransferError: If the service call fails.
        """
        try:
            response = oci.pagination.list_call_get_all_results(
                self.client.list_objects,
                self.namespace,
                self.bucket,
                prefix=prefix,
                fields=LIST_FIELDS,
            )
        except (ServiceError, RequestException) as e:
            raise TransferError(f"Failed to list objects under '{prefix}': {e}") from e

        objects = [
            ObjectInfo(
                key=obj.name,
                size=obj.size or 0,
                last_modified=obj.time_modified,
                etag=obj.etag or "",
            )
            for obj in response.data.objects
            if obj.name
        ]
        return sorted(objects, key=lambda o: o.key)

    def list_all(self) -> list[ObjectInfo]:
        return self.list_by_prefix(KEY_PREFIX)

    def list_by_year(self, year: int) -> list[ObjectInfo]:
        return self.list_by_prefix(f"{KEY_PREFIX}{year:04d}/")

    def list_by_year_month(self, year: int, month: int) -> list[ObjectInfo]:
        if not 1 <= month <= 12:
            raise ValidationError(f"Month must be between 1 and 12: {month}")
        return self.list_by_prefix(f"{KEY_PREFIX}{year:04d}/{month:02d}/")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _discard_part(self, part: Path) -> None:
        try:
            part.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove partial download {part}: {e}")

    def _record_upload_failure(self, reason: str) -> None:
        if self.metrics:
            self.metrics.record_upload_failure(reason)

    def _record_download_failure(self, reason: str) -> None:
        if self.metrics:
            self.metrics.record_download_failure(reason)
