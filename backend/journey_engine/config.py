import os

# Engine policy. Everything can be overridden from the environment; the
# defaults are what the Docker setup runs with.

TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "60"))
WORKER_POOL_SIZE = int(os.getenv("WORKER_POOL_SIZE", "10"))
TICK_BATCH_SIZE = int(os.getenv("TICK_BATCH_SIZE", "200"))

# A run left in "processing" longer than this is assumed to belong to a dead worker.
STALE_CLAIM_TIMEOUT_SECONDS = int(os.getenv("STALE_CLAIM_TIMEOUT_SECONDS", "300"))

# Zero-delay steps a worker may chain on one run within a single tick.
MAX_STEPS_PER_CLAIM = int(os.getenv("MAX_STEPS_PER_CLAIM", "25"))

MAX_DISPATCH_ATTEMPTS = int(os.getenv("MAX_DISPATCH_ATTEMPTS", "3"))
DISPATCH_BACKOFF_SECONDS = int(os.getenv("DISPATCH_BACKOFF_SECONDS", "300"))

RUN_TICKER_IN_PROCESS = os.getenv("RUN_TICKER_IN_PROCESS", "false").lower() in ("1", "true", "yes")

# Signing key for opt-out links. Must be identical for the API and the workers.
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-journey-engine-secret")
API_PUBLIC_URL = os.getenv("API_PUBLIC_URL", "http://localhost:8000")
OPT_OUT_TOKEN_MAX_AGE = int(os.getenv("OPT_OUT_TOKEN_MAX_AGE", str(90 * 24 * 3600)))
