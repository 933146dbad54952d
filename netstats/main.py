import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from netstats.api.routes import get_stats_service, router
from netstats.services.stats_service import StatsService

PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(PROJECT_ROOT / ".env")
logger = logging.getLogger(__name__)


def _validate_env() -> None:
    required = ["DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD"]
    missing = [key for key in required if not os.getenv(key)]
    if missing:
        joined = ", ".join(missing)
        raise RuntimeError(f"Missing required environment variables: {joined}")


async def materialize_periodically(service: StatsService, interval_seconds: float) -> None:
    while True:
        try:
            await service.materialize_utilization_stats()
        except Exception as exc:  # pragma: no cover - retried next cycle
            logger.warning("Network usage materialization failed: %s", exc)
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(_: FastAPI):
    _validate_env()
    service = get_stats_service()
    try:
        await service.warmup()
    except Exception as exc:  # pragma: no cover - startup best effort
        logger.warning("StatsService warmup skipped due to error: %s", exc)

    task: asyncio.Task[None] | None = None
    if os.getenv("MATERIALIZE_ENABLED", "1") == "1":
        interval = float(os.getenv("MATERIALIZE_INTERVAL_SECONDS", "300"))
        task = asyncio.create_task(materialize_periodically(service, interval))
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await service.close()


app = FastAPI(
    title="Storage Network Stats API",
    description="Network-wide storage statistics for the dashboard.",
    version="0.1.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8001"))
    uvicorn.run("netstats.main:app", host="0.0.0.0", port=port, reload=True)
