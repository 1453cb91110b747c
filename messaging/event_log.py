"""Append-log backends that carry change events to downstream consumers.

Entries sharing a key are read back in the order they were appended: Kafka
routes one key to one partition, and a Redis stream or the in-memory log is
a single ordered sequence per topic.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from functools import lru_cache
from itertools import count
from threading import Lock
from typing import Any, Dict, List, Optional

import redis
from confluent_kafka import KafkaError, KafkaException, Producer

from settings import get_settings

logger = logging.getLogger(__name__)

MEMORY_SCHEME = "memory://"
KAFKA_SCHEME = "kafka://"
REDIS_SCHEMES = ("redis://", "rediss://", "unix://")
DEFAULT_MAX_LEN = 10000
DEFAULT_SEND_TIMEOUT = 10.0


@dataclass(frozen=True, slots=True)
class LogEntry:
    entry_id: str
    key: str
    value: str


class EventLog(ABC):
    """Minimal producer interface over an ordered append log."""

    @abstractmethod
    def append(self, topic: str, key: str, value: str) -> str:
        """Append one entry and return the id the log assigned to it."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Report whether the log currently answers."""

    def close(self) -> None:
        return None


class KafkaEventLog(EventLog):
    """Kafka topic written through an idempotent producer.

    ``append`` blocks until the broker acknowledges the message or
    ``send_timeout`` elapses. The producer's own retries are deduplicated by
    the broker, so one call never yields two copies of the message. A
    delivery that is rejected or not confirmed in time raises
    :class:`KafkaException`.
    """

    def __init__(self, producer: Producer, send_timeout: float = DEFAULT_SEND_TIMEOUT) -> None:
        self._producer = producer
        self._send_timeout = send_timeout

    @classmethod
    def from_bootstrap(
        cls, bootstrap_servers: str, send_timeout: float = DEFAULT_SEND_TIMEOUT
    ) -> "KafkaEventLog":
        producer = Producer(
            {
                "bootstrap.servers": bootstrap_servers,
                "enable.idempotence": True,
                "message.timeout.ms": int(send_timeout * 1000),
            }
        )
        logger.info("Using Kafka event log at %s", bootstrap_servers)
        return cls(producer, send_timeout=send_timeout)

    def append(self, topic: str, key: str, value: str) -> str:
        report: Dict[str, Any] = {}

        def on_delivery(err: Optional[KafkaError], msg: Any) -> None:
            report["error"] = err
            report["message"] = msg

        self._producer.produce(topic, key=key, value=value, on_delivery=on_delivery)
        self._producer.flush(self._send_timeout)

        if not report:
            raise KafkaException(
                KafkaError(
                    KafkaError._MSG_TIMED_OUT,
                    f"delivery to {topic!r} not confirmed within {self._send_timeout}s",
                )
            )
        if report["error"] is not None:
            raise KafkaException(report["error"])
        message = report["message"]
        return f"{message.partition()}-{message.offset()}"

    def is_connected(self) -> bool:
        try:
            self._producer.list_topics(timeout=2.0)
        except KafkaException:
            return False
        return True

    def close(self) -> None:
        remaining = self._producer.flush(self._send_timeout)
        if remaining:
            logger.warning("Kafka producer closed with %d undelivered messages", remaining)


class RedisEventLog(EventLog):
    """Redis Streams log: one stream per topic, trimmed to ``max_len``."""

    def __init__(self, client: redis.Redis, max_len: int = DEFAULT_MAX_LEN) -> None:
        self._client = client
        self._max_len = max_len

    @classmethod
    def from_url(cls, url: str, max_len: int = DEFAULT_MAX_LEN) -> "RedisEventLog":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        logger.info("Using Redis Streams event log at %s", url.split("@")[-1])
        return cls(client, max_len=max_len)

    def append(self, topic: str, key: str, value: str) -> str:
        entry_id = self._client.xadd(
            topic,
            {"key": key, "value": value},
            maxlen=self._max_len,
            approximate=True,
        )
        if isinstance(entry_id, bytes):
            return entry_id.decode("utf-8")
        return str(entry_id)

    def is_connected(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False

    def close(self) -> None:
        self._client.close()


class InMemoryEventLog(EventLog):
    """Process-local log for development and tests."""

    def __init__(self) -> None:
        self._topics: Dict[str, List[LogEntry]] = defaultdict(list)
        self._sequence = count(1)
        self._lock = Lock()

    def append(self, topic: str, key: str, value: str) -> str:
        with self._lock:
            entry = LogEntry(entry_id=f"{next(self._sequence)}-0", key=key, value=value)
            self._topics[topic].append(entry)
            return entry.entry_id

    def is_connected(self) -> bool:
        return True

    def entries(self, topic: str, key: Optional[str] = None) -> list[LogEntry]:
        with self._lock:
            items = list(self._topics.get(topic, ()))
        if key is None:
            return items
        return [entry for entry in items if entry.key == key]


@lru_cache
def build_default_event_log(
    url: Optional[str] = None,
    max_len: Optional[int] = None,
) -> EventLog:
    """Pick the backend from the broker URL.

    ``memory://`` selects the in-process log and ``redis://`` (or
    ``rediss://``, ``unix://``) a Redis stream. Anything else, including an
    unset URL, produces to Kafka: ``kafka://host:port[,host:port]`` names
    the bootstrap servers, otherwise the configured bootstrap address is
    used.
    """
    settings = get_settings()
    broker_url = settings.broker_url if url is None else url
    trim_len = settings.broker_max_len if max_len is None else max_len
    if broker_url.startswith(MEMORY_SCHEME):
        logger.info("Using in-memory event log")
        return InMemoryEventLog()
    if broker_url.startswith(REDIS_SCHEMES):
        return RedisEventLog.from_url(broker_url, max_len=trim_len)
    bootstrap = settings.broker_bootstrap
    if broker_url.startswith(KAFKA_SCHEME) and broker_url[len(KAFKA_SCHEME):]:
        bootstrap = broker_url[len(KAFKA_SCHEME):]
    return KafkaEventLog.from_bootstrap(bootstrap, send_timeout=settings.broker_send_timeout_seconds)
