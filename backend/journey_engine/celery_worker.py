import logging
from journey_engine.celery_config import celery_app
# Registers the beat schedule on the app.
import journey_engine.scheduler  # noqa: F401

# Entry point for the worker and beat:
#   celery -A journey_engine.celery_worker.celery worker --loglevel=info
#   celery -A journey_engine.celery_worker.celery beat --loglevel=info
# Each tick initialises its own database connection inside its event loop,
# so nothing is set up per worker process here.

logger = logging.getLogger(__name__)

celery = celery_app
