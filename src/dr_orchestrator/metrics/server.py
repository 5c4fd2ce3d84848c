"""HTTP endpoint for Prometheus scraping and health checks.

Endpoints:
    GET /metrics  - Prometheus text format
    GET /health   - JSON health summary (503 when unhealthy)
    GET /         - endpoint index

Usage:
    from dr_orchestrator.metrics import MetricsSink
    from dr_orchestrator.metrics.server import create_app, serve

    sink = MetricsSink()
    serve(sink, host="0.0.0.0", port=9090)
"""

import logging
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from dr_orchestrator.metrics.sink import MetricsSink

logger = logging.getLogger(__name__)


def create_app(sink: MetricsSink) -> FastAPI:
    """Build the FastAPI app serving ``sink``."""
    app = FastAPI(title="dr-orchestrator metrics")

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(content=sink.render(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health() -> JSONResponse:
        summary = sink.health()
        body = {
            "status": summary.status,
            "last_backup_time": (
                summary.last_backup_time.isoformat() if summary.last_backup_time else None
            ),
            "last_backup_error": summary.last_backup_error,
            "backup_count": summary.backup_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        status_code = 503 if summary.status == "unhealthy" else 200
        return JSONResponse(status_code=status_code, content=body)

    @app.get("/")
    async def index() -> dict:
        return {
            "service": "dr-orchestrator",
            "endpoints": {
                "/metrics": "Prometheus metrics",
                "/health": "Backup health status (JSON)",
            },
        }

    return app


def serve(sink: MetricsSink, host: str = "0.0.0.0", port: int = 9090) -> None:
    """Run the metrics app until interrupted."""
    logger.info(f"Serving metrics on http://{host}:{port}/metrics")
    uvicorn.run(create_app(sink), host=host, port=port, log_level="warning")
