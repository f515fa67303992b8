import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from trendboard.config import get_settings
from trendboard.database import Base, SessionLocal, engine
from trendboard.routes.pipeline import router, runner

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("Creating database tables if they don't exist...")
    Base.metadata.create_all(bind=engine)

    task = None
    if get_settings().run_in_process:
        logger.info("Starting background pipeline runner...")
        task = asyncio.create_task(runner.run(SessionLocal))

    yield

    # --- Shutdown ---
    if task is not None:
        logger.info("Shutting down background pipeline runner...")
        task.cancel()


app = FastAPI(
    title="Trendboard Pipeline API",
    description="Clusters short-form content into events and ranks trending entities per time window.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)
