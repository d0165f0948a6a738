# slotbook/core/kafka_producer.py

import json
import logging
import threading
from typing import Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from slotbook.core.config import settings

logger = logging.getLogger(__name__)

_producer: Optional[KafkaProducer] = None
_producer_lock = threading.Lock()


def _build_producer() -> KafkaProducer:
    return KafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        # Fail fast on connection issues instead of stalling a sweep
        request_timeout_ms=5000,
        acks="all",
        retries=3,
    )


def get_kafka_singleton() -> Optional[KafkaProducer]:
    """
    Process-wide Kafka producer, created on first use.

    Returns None when the broker is unreachable so callers can record the
    failure and retry later.
    """
    global _producer

    if _producer is not None:
        return _producer

    with _producer_lock:
        if _producer is None:
            try:
                _producer = _build_producer()
                logger.info("Kafka producer connected")
            except KafkaError as e:
                logger.error(f"Could not create Kafka producer: {e}")
                return None
    return _producer


def close_kafka_singleton() -> None:
    global _producer

    with _producer_lock:
        if _producer is not None:
            _producer.flush()  # Ensure all buffered messages are sent
            _producer.close()
            _producer = None
