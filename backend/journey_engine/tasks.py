import asyncio
import logging
from dataclasses import asdict

from journey_engine.celery_config import celery_app
from journey_engine.config import TICK_INTERVAL_SECONDS
from journey_engine.db.init import close_db, init_db
from journey_engine.services.ticker import JourneyTicker

logger = logging.getLogger(__name__)


async def run_tick() -> dict:
    # The client is bound to this event loop, so every tick opens and closes its own.
    await init_db()
    try:
        report = await JourneyTicker().tick()
    finally:
        await close_db()
    return asdict(report)


# Ticks not picked up before the next beat are dropped instead of piling up.
@celery_app.task(name="journey_engine.tasks.tick_journeys_task", acks_late=True, expires=TICK_INTERVAL_SECONDS)
def tick_journeys_task():
    """
    One scheduler tick: reclaim stale runs, then execute every due run of
    every active journey. Safe to run on several workers at once.
    """
    try:
        report = asyncio.run(run_tick())
        logger.info(f"[TICK] Tick finished: {report}")
        return report
    except Exception as e:
        logger.error(f"=== TICK_JOURNEYS_TASK FAILED ===")
        logger.error(f"Error: {e}", exc_info=True)
        raise
