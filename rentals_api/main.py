import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from rentals_api.api.deps import get_rentals_component
from rentals_api.api.errors import register_error_handlers
from rentals_api.api.routes.rentals import router as rentals_router
from rentals_api.core.config import settings
from rentals_api.core.database import async_session
from rentals_api.core.logging import setup_logging
from rentals_api.scheduler import PeriodicJob

setup_logging()
logger = logging.getLogger(__name__)


def build_jobs() -> list[PeriodicJob]:
    rentals = get_rentals_component()
    return [
        PeriodicJob("Sync metadata", rentals.sync_metadata),
        PeriodicJob("Sync rentals", rentals.sync_rentals),
        PeriodicJob("Cancel stale rentals", rentals.cancel_stale_rentals),
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: keep listings in sync with the indexers
    jobs = build_jobs()
    for job in jobs:
        job.start()
    app.state.jobs = jobs
    yield
    # Shutdown: let in-flight runs finish before closing the indexer clients
    for job in jobs:
        await job.stop()
    await get_rentals_component().close()


app = FastAPI(title=settings.PROJECT_NAME, debug=settings.DEBUG, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGIN.split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)
app.include_router(rentals_router, prefix="/v1")


@app.get("/ping")
async def ping():
    return "pong"


@app.get("/health")
async def health():
    try:
        async with async_session() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()
        db_status = "connected"
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Health check failed: %s", e)
        db_status = f"error: {e}"

    jobs = getattr(app.state, "jobs", [])
    return {
        "status": "ok" if db_status == "connected" else "degraded",
        "db": db_status,
        "jobs": [job.get_stats() for job in jobs],
    }
