"""FastAPI application factory for the usage tracking service."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import Response

from usage_tracking.config import Settings, get_settings
from usage_tracking.lib.logger import get_logger
from usage_tracking.lib.metrics import UsageRegistry
from usage_tracking.profiling.routes import build_router as build_profiling_router
from usage_tracking.tracking.routes import router as tracking_router

logger = get_logger(__name__)

PPROF_PREFIX = "/debug/pprof"


def create_app(settings: Settings | None = None, registry: UsageRegistry | None = None) -> FastAPI:
    """Wire routes around one shared usage registry."""

    settings = settings or get_settings()
    registry = registry or UsageRegistry()

    app = FastAPI(title="Usage Tracking", version="1.0.0", docs_url=None, redoc_url=None)
    app.state.settings = settings
    app.state.registry = registry

    app.include_router(tracking_router, tags=["tracking"])

    @app.get("/healthz", tags=["system"], summary="Liveness probe")
    async def health_check() -> Response:
        return Response(status_code=204)

    @app.get("/metrics", tags=["system"], summary="Prometheus exposition")
    def metrics_endpoint() -> Response:
        return Response(content=registry.render(), media_type=registry.content_type)

    if settings.pprof:
        app.include_router(build_profiling_router(), prefix=PPROF_PREFIX, tags=["pprof"])
        logger.info("pprof endpoints enabled at %s", PPROF_PREFIX)

    return app
