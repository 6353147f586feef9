"""Main FastAPI application hosting the health check scheduler."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .database import init_db, close_db
from .routers import status_router
from .services.lifecycle import HealthCheckLifecycle

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, start the health checker, and drain it on the way out."""
    logger.info("[START] UptimeX health checker")

    await init_db()
    logger.info(f"Database ready (data_path={settings.data_path})")

    lifecycle = HealthCheckLifecycle.from_settings(settings)
    app.state.lifecycle = lifecycle
    lifecycle.start()

    yield

    # uvicorn turns SIGINT/SIGTERM into this branch
    logger.info("[SHUTDOWN] Starting graceful shutdown...")
    await lifecycle.shutdown(grace_seconds=settings.shutdown_grace_seconds)
    app.state.lifecycle = None

    await close_db()
    logger.info("[SHUTDOWN] Database closed")


def create_app() -> FastAPI:
    """Build the app. The lifecycle is attached by the lifespan handler."""
    app = FastAPI(
        title="UptimeX",
        description="URL uptime monitoring with throttled email alerts",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.lifecycle = None

    app.include_router(status_router)

    @app.get("/health")
    async def health_check():
        lifecycle = app.state.lifecycle
        return {
            "status": "healthy",
            "scheduler": lifecycle.scheduler.state if lifecycle else "stopped",
        }

    return app


app = create_app()


def run():
    """Console entry point."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)


if __name__ == "__main__":
    run()
