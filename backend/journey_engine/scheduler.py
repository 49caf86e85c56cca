import logging
from journey_engine.celery_config import celery_app
from journey_engine.config import TICK_INTERVAL_SECONDS
from journey_engine.tasks import tick_journeys_task

logger = logging.getLogger(__name__)


@celery_app.on_after_configure.connect
def setup_periodic_tasks(sender, **kwargs):
    logger.info("Setting up periodic tasks...")

    sender.add_periodic_task(
        TICK_INTERVAL_SECONDS,
        tick_journeys_task.s(),
        name="tick-journeys"
    )

    logger.info(f"Journey tick scheduled every {TICK_INTERVAL_SECONDS}s")
