# slotbook/worker.py
"""
Entry point for the sweep worker: ``python -m slotbook.worker``.
"""
import logging
import signal
import threading

from slotbook.core.kafka_producer import close_kafka_singleton
from slotbook.scheduler import init_scheduler, shutdown_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    stop = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    init_scheduler()
    try:
        stop.wait()
    finally:
        shutdown_scheduler()
        close_kafka_singleton()


if __name__ == "__main__":
    main()
