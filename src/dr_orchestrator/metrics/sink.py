"""Operation metrics and backup health state.

``MetricsSink`` owns a private Prometheus ``CollectorRegistry`` plus the
health record that backs ``/health``.  It is constructed explicitly and
passed to whoever records into it; there is no module-level instance.
Health updates take a single lock, so one sink can be shared by threads
of a long-lived serving process.

Usage:
    from dr_orchestrator.metrics.sink import MetricsSink

    sink = MetricsSink()
    sink.record_backup_success(duration_seconds=12.5, size_bytes=4096)
    sink.record_backup_failure(DumpError("pg_dump exited 1"), reason="dump_failed")
    print(sink.health().status)   # "unhealthy"
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from pydantic import BaseModel

# A healthy sink whose last backup is older than this reports "degraded"
STALE_AFTER = timedelta(hours=25)

_TRANSFER_BUCKETS = (0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthSummary(BaseModel):
    """Snapshot of backup health, as served by ``/health``."""

    status: Literal["healthy", "degraded", "unhealthy"]
    last_backup_time: datetime | None = None
    last_backup_error: str = ""
    backup_count: int = 0


class MetricsSink:
    """Counters, histograms, and last-run health for one process.

    Args:
        registry: Registry to register collectors in.  A fresh one is
            created when omitted, keeping sinks independent of each other.
        clock: Returns the current time.  Injected by tests.
    """

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.registry = registry or CollectorRegistry()
        self._clock = clock
        self._lock = threading.Lock()

        self._last_backup_time: datetime | None = None
        self._last_backup_error = ""
        self._backup_count = 0
        self._is_healthy = True

        self.backup_duration = Histogram(
            "orchestrator_backup_duration_seconds",
            "Duration of backup operations in seconds",
            buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800),
            registry=self.registry,
        )
        self.backup_size = Histogram(
            "orchestrator_backup_size_bytes",
            "Size of backup files in bytes",
            buckets=tuple(1024 * 2**i for i in range(20)),
            registry=self.registry,
        )
        self.backup_success = Counter(
            "orchestrator_backup_success_total",
            "Total number of successful backup operations",
            registry=self.registry,
        )
        self.backup_failure = Counter(
            "orchestrator_backup_failure_total",
            "Total number of failed backup operations",
            ["reason"],
            registry=self.registry,
        )

        self.upload_duration = Histogram(
            "orchestrator_upload_duration_seconds",
            "Duration of upload operations in seconds",
            buckets=_TRANSFER_BUCKETS,
            registry=self.registry,
        )
        self.upload_success = Counter(
            "orchestrator_upload_success_total",
            "Total number of successful upload operations",
            registry=self.registry,
        )
        self.upload_failure = Counter(
            "orchestrator_upload_failure_total",
            "Total number of failed upload operations",
            ["reason"],
            registry=self.registry,
        )

        self.download_duration = Histogram(
            "orchestrator_download_duration_seconds",
            "Duration of download operations in seconds",
            buckets=_TRANSFER_BUCKETS,
            registry=self.registry,
        )
        self.download_success = Counter(
            "orchestrator_download_success_total",
            "Total number of successful download operations",
            registry=self.registry,
        )
        self.download_failure = Counter(
            "orchestrator_download_failure_total",
            "Total number of failed download operations",
            ["reason"],
            registry=self.registry,
        )

        self.restore_duration = Histogram(
            "orchestrator_restore_duration_seconds",
            "Duration of restore operations in seconds",
            buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
            registry=self.registry,
        )
        self.restore_success = Counter(
            "orchestrator_restore_success_total",
            "Total number of successful restore operations",
            registry=self.registry,
        )
        self.restore_failure = Counter(
            "orchestrator_restore_failure_total",
            "Total number of failed restore operations",
            ["reason"],
            registry=self.registry,
        )

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def record_backup_success(self, duration_seconds: float, size_bytes: int) -> None:
        """Record a successful backup and mark the sink healthy."""
        self.backup_duration.observe(duration_seconds)
        self.backup_size.observe(size_bytes)
        self.backup_success.inc()
        with self._lock:
            self._last_backup_time = self._clock()
            self._last_backup_error = ""
            self._backup_count += 1
            self._is_healthy = True

    def record_backup_failure(self, error: BaseException, reason: str) -> None:
        """Record a failed backup and mark the sink unhealthy."""
        self.backup_failure.labels(reason=reason).inc()
        with self._lock:
            self._last_backup_time = self._clock()
            self._last_backup_error = str(error)
            self._is_healthy = False

    # ------------------------------------------------------------------
    # Transfers and restore
    # ------------------------------------------------------------------

    def record_upload_success(self, duration_seconds: float) -> None:
        self.upload_duration.observe(duration_seconds)
        self.upload_success.inc()

    def record_upload_failure(self, reason: str) -> None:
        self.upload_failure.labels(reason=reason).inc()

    def record_download_success(self, duration_seconds: float) -> None:
        self.download_duration.observe(duration_seconds)
        self.download_success.inc()

    def record_download_failure(self, reason: str) -> None:
        self.download_failure.labels(reason=reason).inc()

    def record_restore_success(self, duration_seconds: float) -> None:
        self.restore_duration.observe(duration_seconds)
        self.restore_success.inc()

    def record_restore_failure(self, reason: str) -> None:
        self.restore_failure.labels(reason=reason).inc()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> HealthSummary:
        """Return the current health summary.

        ``unhealthy`` after a recorded failure, ``degraded`` when healthy
        but the last backup is older than 25 hours, ``healthy`` otherwise
        (including when no backup has run yet).
        """
        with self._lock:
            last_time = self._last_backup_time
            last_error = self._last_backup_error
            count = self._backup_count
            is_healthy = self._is_healthy

        if not is_healthy:
            status = "unhealthy"
        elif last_time is not None and self._clock() - last_time > STALE_AFTER:
            status = "degraded"
        else:
            status = "healthy"

        return HealthSummary(
            status=status,
            last_backup_time=last_time,
            last_backup_error=last_error,
            backup_count=count,
        )

    def reset(self) -> None:
        """Reset the health record to its initial state."""
        with self._lock:
            self._last_backup_time = None
            self._last_backup_error = ""
            self._backup_count = 0
            self._is_healthy = True

    def render(self) -> bytes:
        """Render all collectors in the Prometheus text format."""
        return generate_latest(self.registry)
