import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from journey_engine.config import RUN_TICKER_IN_PROCESS
from journey_engine.db.init import close_db, init_db, get_database
from journey_engine.api.journeys import router as journeys_router
from journey_engine.api.runs import router as runs_router
from journey_engine.models.journey import JourneyModel
from journey_engine.models.run import JourneyRunModel, LIVE_STATUSES
from journey_engine.services.ticker import JourneyTicker

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ticker = JourneyTicker()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=== APPLICATION STARTUP ===")
    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}", exc_info=True)
        raise

    if RUN_TICKER_IN_PROCESS:
        await ticker.start()
    else:
        logger.info("Journey ticks run in the Celery worker (RUN_TICKER_IN_PROCESS is off).")
    logger.info("=== APPLICATION STARTUP COMPLETE ===")

    yield

    logger.info("=== APPLICATION SHUTDOWN ===")
    if ticker.running:
        await ticker.stop()
    await close_db()
    logger.info("=== APPLICATION SHUTDOWN COMPLETE ===")


app = FastAPI(title="Journey Automation Engine", lifespan=lifespan)

# The journey builder frontend is served from a different origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    try:
        await get_database().command("ping")
        db_status = "healthy"
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"

    try:
        active_journeys = await JourneyModel.find({"status": "active"}).count()
        live_runs = await JourneyRunModel.find({"status": {"$in": [s.value for s in LIVE_STATUSES]}}).count()
    except Exception:
        active_journeys = 0
        live_runs = 0

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
        "in_process_ticker": ticker.running,
        "statistics": {
            "active_journeys": active_journeys,
            "live_runs": live_runs,
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


app.include_router(journeys_router, prefix="/api", tags=["journeys"])
app.include_router(runs_router, prefix="/api", tags=["runs"])
