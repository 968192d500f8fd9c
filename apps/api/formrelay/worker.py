"""
Reconciliation worker.

Usage:
    python -m formrelay.worker

Runs the reconciliation scheduler until SIGINT/SIGTERM. For production, run
this as a separate process next to the API (systemd unit, container).
"""

import logging
import signal

from formrelay.core.config import settings
from formrelay.core.structured_logging import configure_logging
from formrelay.services.reconciliation_service import ReconciliationScheduler, get_scheduler

logger = logging.getLogger(__name__)


def run(scheduler: ReconciliationScheduler | None = None) -> None:
    """Start the scheduler and block until a shutdown signal arrives."""
    scheduler = scheduler or get_scheduler()

    def _shutdown(signum, frame):
        logger.info("Received signal %s; stopping reconciliation", signum)
        scheduler.request_stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    scheduler.start()
    while not scheduler.wait(timeout=1.0):
        pass
    # Let an in-flight cycle finish its submissions and case projections.
    scheduler.stop(timeout=settings.RECONCILE_SHUTDOWN_TIMEOUT_SECONDS)


def main() -> None:
    """Entry point for the worker."""
    configure_logging()
    try:
        run()
    except Exception:
        logger.exception("Worker crashed")
        raise
    logger.info("Worker shut down")


if __name__ == "__main__":
    main()
