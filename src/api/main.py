"""FastAPI application main module.

This module defines the FastAPI application for the SignalRank ranking
service: health and status endpoints, metrics, exception handlers and the
recommendation and trending routers.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src import __version__
from src.api.exceptions import SignalRankException
from src.api.logging_config import RequestLoggingMiddleware, setup_logging
from src.api.metrics import metrics_service
from src.api.routes import recommendations, trending
from src.api.state import get_runtime, is_loaded, persist_statistics
from src.engine.config import get_settings
from src.engine.exceptions import RankingError

# Configure module logger
logger = logging.getLogger(__name__)

SHUTDOWN_DRAIN_TIMEOUT_SECONDS = 5.0


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Flush pending feedback and snapshot the bandit statistics on shutdown."""
    yield
    if not is_loaded():
        return
    await get_runtime().recorder.drain(timeout=SHUTDOWN_DRAIN_TIMEOUT_SECONDS)
    try:
        if persist_statistics():
            logger.info("Statistics snapshot written on shutdown")
    except Exception:
        logger.exception("Failed to write statistics snapshot on shutdown")


def create_app() -> FastAPI:
    """Build the application with logging, handlers and routers installed."""
    setup_logging(get_settings().log_level)

    application = FastAPI(
        title="SignalRank API",
        description="Multi-signal recommendation and ranking service",
        version=__version__,
        lifespan=lifespan,
    )
    application.add_middleware(RequestLoggingMiddleware)

    @application.exception_handler(SignalRankException)
    async def signalrank_exception_handler(
        request: Request, exc: SignalRankException
    ) -> JSONResponse:
        logger.warning(
            exc.message,
            extra={"path": str(request.url.path), "status_code": exc.status_code},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @application.exception_handler(RankingError)
    async def ranking_error_handler(request: Request, exc: RankingError) -> JSONResponse:
        logger.error(exc.message, extra={"path": str(request.url.path)})
        return JSONResponse(
            status_code=500,
            content={
                "error": type(exc).__name__,
                "message": exc.message,
                "details": exc.details,
            },
        )

    application.include_router(recommendations.router)
    application.include_router(trending.router)

    @application.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint.

        Example:
            >>> response = client.get("/ping")
            >>> assert response.json() == {"status": "ok"}
        """
        return {"status": "ok"}

    @application.get("/status")
    async def engine_status() -> Dict[str, Any]:
        """Engine configuration and data-source sizes.

        Builds the engine if it has not been used yet.
        """
        runtime = get_runtime()
        candidates = await runtime.catalog.fetch_candidates(
            limit=runtime.settings.candidate_batch_size
        )
        counters = await runtime.store.all_counters()
        return {
            "engine_loaded": is_loaded(),
            "business_type": runtime.engine.config.type,
            "weights": runtime.engine.config.weights.as_dict(),
            "catalog_size": len(candidates),
            "order_lines": len(runtime.history.orders),
            "tracked_items": len(counters),
            "timestamp_last_loaded": runtime.loaded_at.isoformat() + "Z",
        }

    @application.get("/metrics")
    def get_metrics() -> Dict[str, Any]:
        return metrics_service.get_metrics()

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
