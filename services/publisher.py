"""Publication of sensor configuration change events."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

import redis
from confluent_kafka import KafkaException

from app.schemas import SensorConfigChangedEvent
from messaging.event_log import EventLog, build_default_event_log
from services.errors import PublishError
from settings import get_settings

logger = logging.getLogger(__name__)


class EventPublisher:
    """Serializes change events and appends them keyed by sensor id.

    A single send is attempted per event. Transport failures are raised as
    :class:`PublishError` instead of being retried here.
    """

    def __init__(self, log: EventLog, topic: str) -> None:
        self.log = log
        self.topic = topic

    def publish(self, event: SensorConfigChangedEvent) -> str:
        body = event.to_json()
        try:
            entry_id = self.log.append(self.topic, event.sensor_id, body)
        except (KafkaException, redis.RedisError, BufferError, OSError) as exc:
            logger.warning(
                "Change event publication failed",
                extra={
                    "sensor_id": event.sensor_id,
                    "action": event.action.value,
                    "topic": self.topic,
                    "reason": str(exc),
                },
            )
            raise PublishError(
                f"Could not publish {event.action.value} event for sensor {event.sensor_id!r}",
                sensor_id=event.sensor_id,
                action=event.action,
            ) from exc

        logger.info(
            "Published change event",
            extra={
                "sensor_id": event.sensor_id,
                "action": event.action.value,
                "topic": self.topic,
                "entry_id": entry_id,
            },
        )
        return entry_id

    def close(self) -> None:
        self.log.close()


@lru_cache
def build_default_publisher(topic: Optional[str] = None) -> EventPublisher:
    settings = get_settings()
    return EventPublisher(
        log=build_default_event_log(),
        topic=settings.config_topic if topic is None else topic,
    )
