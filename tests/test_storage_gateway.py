"""Tests for the OCI Object Storage gateway.

The ``ObjectStorageClient`` is replaced with a ``MagicMock``; responses
mimic the SDK's ``Response`` objects (``.data`` / ``.headers``).
"""

from datetime import datetime, timezone
from io import BytesIO
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from oci.exceptions import RequestException, ServiceError
from urllib3.response import HTTPResponse

from dr_orchestrator.config.models import StorageSettings
from dr_orchestrator.errors import NotFoundError, TransferError, ValidationError
from dr_orchestrator.metrics.sink import MetricsSink
from dr_orchestrator.storage.gateway import ObjectStoreGateway, object_key_for


def _service_error(status: int, code: str = "Error") -> ServiceError:
    return ServiceError(status, code, {}, f"{code} ({status})")


def _get_response(chunks: list[bytes], last_modified: str = "Tue, 09 Dec 2025 02:00:00 GMT"):
    raw = MagicMock()
    raw.stream.return_value = iter(chunks)
    return SimpleNamespace(
        data=SimpleNamespace(raw=raw), headers={"last-modified": last_modified}
    )


def _summary(name: str, size: int = 10) -> SimpleNamespace:
    return SimpleNamespace(
        name=name,
        size=size,
        time_modified=datetime(2025, 12, 9, tzinfo=timezone.utc),
        etag=f"etag-{name}",
    )


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def sink():
    return MetricsSink()


@pytest.fixture
def gateway(client, sink):
    return ObjectStoreGateway(
        client, namespace="ns", bucket="dr-backups", compartment="ocid1.compartment..x", metrics=sink
    )


# ------------------------------------------------------------------
# Key scheme
# ------------------------------------------------------------------


class TestObjectKeyFor:
    def test_year_month_prefix(self):
        key = object_key_for("/tmp/backup-20251209.tar.gz", datetime(2025, 12, 9))

        assert key == "backups/2025/12/backup-20251209.tar.gz"

    def test_month_is_zero_padded(self):
        assert object_key_for("a.tar.gz", datetime(2026, 3, 1)) == "backups/2026/03/a.tar.gz"

    def test_keys_sort_chronologically(self):
        keys = [
            object_key_for("x", datetime(2025, 12, 1)),
            object_key_for("x", datetime(2025, 2, 1)),
            object_key_for("x", datetime(2026, 1, 1)),
        ]

        assert sorted(keys) == [keys[1], keys[0], keys[2]]


# ------------------------------------------------------------------
# Upload
# ------------------------------------------------------------------


class TestUpload:
    def test_upload_with_explicit_content_length(self, gateway, client, tmp_path):
        path = tmp_path / "prod-db-20251209-020000.tar.gz"
        path.write_bytes(b"x" * 1234)
        client.put_object.return_value = SimpleNamespace(headers={"etag": "abc123"})

        result = gateway.upload(path, "backups/2025/12/prod-db-20251209-020000.tar.gz")

        args, kwargs = client.put_object.call_args
        assert args[:3] == ("ns", "dr-backups", "backups/2025/12/prod-db-20251209-020000.tar.gz")
        assert kwargs["content_length"] == 1234
        assert result.size == 1234
        assert result.etag == "abc123"
        assert result.bucket == "dr-backups"
        assert result.namespace == "ns"

    def test_default_key_uses_date_scheme(self, gateway, client, tmp_path):
        path = tmp_path / "a.tar.gz"
        path.write_bytes(b"data")
        client.put_object.return_value = SimpleNamespace(headers={})

        with patch(
            "dr_orchestrator.storage.gateway.object_key_for",
            return_value="backups/2025/12/a.tar.gz",
        ):
            result = gateway.upload(path)

        assert result.object_key == "backups/2025/12/a.tar.gz"
        assert result.etag == ""

    def test_missing_local_file(self, gateway, client, tmp_path):
        with pytest.raises(ValidationError):
            gateway.upload(tmp_path / "missing.tar.gz")

        client.put_object.assert_not_called()

    def test_service_error_is_transfer_error(self, gateway, client, sink, tmp_path):
        path = tmp_path / "a.tar.gz"
        path.write_bytes(b"data")
        client.put_object.side_effect = _service_error(500, "InternalServerError")

        with pytest.raises(TransferError):
            gateway.upload(path, "k")

        assert sink.registry.get_sample_value(
            "orchestrator_upload_failure_total", {"reason": "transfer_failed"}
        ) == 1.0
        assert path.exists()

    def test_network_error_is_not_retried(self, gateway, client, tmp_path):
        path = tmp_path / "a.tar.gz"
        path.write_bytes(b"data")
        client.put_object.side_effect = RequestException("connection reset")

        with pytest.raises(TransferError):
            gateway.upload(path, "k")

        assert client.put_object.call_count == 1

    def test_success_recorded(self, gateway, client, sink, tmp_path):
        path = tmp_path / "a.tar.gz"
        path.write_bytes(b"data")
        client.put_object.return_value = SimpleNamespace(headers={"etag": "e"})

        gateway.upload(path, "k")

        assert sink.registry.get_sample_value("orchestrator_upload_success_total") == 1.0


# ------------------------------------------------------------------
# Download
# ------------------------------------------------------------------


class TestDownload:
    def test_streams_to_file(self, gateway, client, tmp_path):
        client.get_object.return_value = _get_response([b"abc", b"def"])
        target = tmp_path / "restore.tar.gz"

        result = gateway.download("backups/2025/12/a.tar.gz", target)

        assert target.read_bytes() == b"abcdef"
        assert not (tmp_path / "restore.tar.gz.part").exists()
        assert result.size == 6
        assert result.local_path == str(target)
        assert result.last_modified == datetime(2025, 12, 9, 2, 0, tzinfo=timezone.utc)

    def test_not_found(self, gateway, client, sink, tmp_path):
        client.get_object.side_effect = _service_error(404, "ObjectNotFound")

        with pytest.raises(NotFoundError):
            gateway.download("backups/2025/12/missing.tar.gz", tmp_path / "out")

        assert sink.registry.get_sample_value(
            "orchestrator_download_failure_total", {"reason": "not_found"}
        ) == 1.0

    def test_truncated_body_removes_only_part_file(self, gateway, client, sink, tmp_path):
        target = tmp_path / "restore.tar.gz"
        target.write_bytes(b"previous download")
        raw = HTTPResponse(
            body=BytesIO(b"partial"),
            headers={"content-length": "1000"},
            preload_content=False,
            enforce_content_length=True,
        )
        client.get_object.return_value = SimpleNamespace(
            data=SimpleNamespace(raw=raw), headers={}
        )

        with pytest.raises(TransferError):
            gateway.download("k", target)

        assert target.read_bytes() == b"previous download"
        assert not (tmp_path / "restore.tar.gz.part").exists()
        assert sink.registry.get_sample_value(
            "orchestrator_download_failure_total", {"reason": "transfer_failed"}
        ) == 1.0

    def test_connection_error_during_get(self, gateway, client, tmp_path):
        client.get_object.side_effect = RequestException("connection reset")

        with pytest.raises(TransferError):
            gateway.download("k", tmp_path / "out")

        assert not (tmp_path / "out.part").exists()

    def test_unparseable_last_modified(self, gateway, client, tmp_path):
        client.get_object.return_value = _get_response([b"x"], last_modified="garbage")

        result = gateway.download("k", tmp_path / "out")

        assert result.last_modified is None


# ------------------------------------------------------------------
# Listing
# ------------------------------------------------------------------


class TestListing:
    def _patch_listing(self, objects):
        response = SimpleNamespace(data=SimpleNamespace(objects=objects))
        return patch(
            "dr_orchestrator.storage.gateway.oci.pagination.list_call_get_all_results",
            return_value=response,
        )

    def test_results_sorted_by_key(self, gateway):
        objects = [
            _summary("backups/2025/12/b.tar.gz"),
            _summary("backups/2025/11/z.tar.gz"),
            _summary("backups/2025/12/a.tar.gz"),
        ]
        with self._patch_listing(objects):
            result = gateway.list_all()

        assert [o.key for o in result] == [
            "backups/2025/11/z.tar.gz",
            "backups/2025/12/a.tar.gz",
            "backups/2025/12/b.tar.gz",
        ]
        assert result[0].etag == "etag-backups/2025/11/z.tar.gz"

    @pytest.mark.parametrize(
        "call, expected_prefix",
        [
            (lambda g: g.list_all(), "backups/"),
            (lambda g: g.list_by_year(2025), "backups/2025/"),
            (lambda g: g.list_by_year_month(2025, 3), "backups/2025/03/"),
        ],
    )
    def test_prefixes(self, gateway, client, call, expected_prefix):
        with self._patch_listing([]) as list_all:
            call(gateway)

        args, kwargs = list_all.call_args
        assert args == (client.list_objects, "ns", "dr-backups")
        assert kwargs["prefix"] == expected_prefix

    def test_invalid_month(self, gateway):
        with pytest.raises(ValidationError):
            gateway.list_by_year_month(2025, 13)

    def test_service_error(self, gateway):
        with patch(
            "dr_orchestrator.storage.gateway.oci.pagination.list_call_get_all_results",
            side_effect=_service_error(403, "NotAuthorized"),
        ):
            with pytest.raises(TransferError):
                gateway.list_all()


# ------------------------------------------------------------------
# Construction
# ------------------------------------------------------------------


class TestFromSettings:
    def test_requires_bucket(self):
        with pytest.raises(ValidationError, match="Bucket"):
            ObjectStoreGateway.from_settings(StorageSettings(compartment="c"))

    def test_requires_compartment(self):
        with pytest.raises(ValidationError, match="Compartment"):
            ObjectStoreGateway.from_settings(StorageSettings(bucket="b"))

    def test_missing_oci_config(self, tmp_path):
        settings = StorageSettings(
            bucket="b", compartment="c", oci_config=str(tmp_path / "missing")
        )

        with pytest.raises(ValidationError, match="OCI config"):
            ObjectStoreGateway.from_settings(settings)

    def test_client_built_without_retries_and_namespace_detected(self):
        settings = StorageSettings(bucket="b", compartment="c", read_timeout=300)
        client = MagicMock()
        client.get_namespace.return_value = SimpleNamespace(data="detected-ns")

        with patch("dr_orchestrator.storage.gateway.oci.config.from_file", return_value={}), patch(
            "dr_orchestrator.storage.gateway.oci.object_storage.ObjectStorageClient",
            return_value=client,
        ) as client_cls:
            gateway = ObjectStoreGateway.from_settings(settings)

        kwargs = client_cls.call_args.kwargs
        assert type(kwargs["retry_strategy"]).__name__ == "NoneRetryStrategy"
        assert kwargs["timeout"] == (10.0, 300)
        assert gateway.namespace == "detected-ns"
        assert gateway.bucket == "b"

    def test_explicit_namespace_skips_lookup(self):
        settings = StorageSettings(bucket="b", compartment="c", namespace="given")
        client = MagicMock()

        with patch("dr_orchestrator.storage.gateway.oci.config.from_file", return_value={}), patch(
            "dr_orchestrator.storage.gateway.oci.object_storage.ObjectStorageClient",
            return_value=client,
        ):
            gateway = ObjectStoreGateway.from_settings(settings)

        client.get_namespace.assert_not_called()
        assert gateway.namespace == "given"
