"""Dispatcher worker — runs the poll loop against persisted notifications.

Several workers may run against the same database; claims keep them from
sending the same record twice.

Usage:
    python src/worker.py           # Poll forever
    python src/worker.py --once    # Run a single cycle and exit
"""

import argparse
import time

import structlog
from courier.channel import build_default_registry
from courier.domain import courier
from courier.notification.dispatcher import Dispatcher
from courier.settings import load_settings
from courier.utils.logging import configure_logging

logger = structlog.get_logger(__name__)


def run(once=False, channels=None):
    with courier.domain_context():
        settings = load_settings()
        logger.info(
            "Dispatcher starting",
            worker_count=settings.worker_count,
            batch_size=settings.batch_size,
            poll_interval_seconds=settings.poll_interval_seconds,
        )

        with Dispatcher(channels or build_default_registry(), settings) as dispatcher:
            if once:
                return dispatcher.run_cycle()

            while True:
                try:
                    dispatcher.run_cycle()
                except Exception:
                    # Nothing is lost: the next cycle starts again from persisted state
                    logger.exception("Dispatch cycle aborted")
                time.sleep(settings.poll_interval_seconds)


def main():
    parser = argparse.ArgumentParser(description="Courier dispatcher worker")
    parser.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
    args = parser.parse_args()

    configure_logging()
    courier.init()

    try:
        run(once=args.once)
    except KeyboardInterrupt:
        logger.info("Dispatcher stopped")


if __name__ == "__main__":
    main()
