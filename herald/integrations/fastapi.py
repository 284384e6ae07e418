"""
FastAPI health surface.

Provides:
- A router exposing GET /health and GET /stats
- An application factory used by the service runner

Usage:
    >>> from herald.integrations.fastapi import create_health_app
    >>> app = create_health_app(HealthReporter(barrier, consumer))
    >>> # uvicorn.run(app, port=8085)
"""

from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse

from herald.health import HealthReporter

__all__ = [
    "create_health_app",
    "create_health_router",
]


def create_health_router(reporter: HealthReporter) -> APIRouter:
    """
    Create the health router.

    Routes:
        GET /health: 200 when the idempotency store is reachable, else 503
        GET /stats: Barrier statistics, 500 when they cannot be read
    """
    router = APIRouter(tags=["health"])

    @router.get("/health")
    async def health_handler():
        healthy, body = await reporter.health()
        return JSONResponse(content=body, status_code=200 if healthy else 503)

    @router.get("/stats")
    async def stats_handler():
        stats = await reporter.stats_or_none()
        if stats is None:
            return JSONResponse(content={"error": "Failed to retrieve stats"}, status_code=500)
        return JSONResponse(content=stats)

    return router


def create_health_app(reporter: HealthReporter, title: str = "herald email service") -> FastAPI:
    app = FastAPI(title=title)
    app.include_router(create_health_router(reporter))
    return app
