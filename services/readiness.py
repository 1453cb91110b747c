"""Startup probe that waits for the definition store to accept the schema."""

from __future__ import annotations

import logging
import time
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from datastore.sensor_store import SensorStore
from services.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def ensure_ready(
    store: SensorStore,
    max_attempts: int = 30,
    backoff_seconds: float = 1.0,
    fail_fast: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Create the schema, retrying with a fixed backoff until it succeeds.

    Returns ``True`` once the schema exists. After ``max_attempts``
    consecutive failures raises :class:`StoreUnavailableError` when
    ``fail_fast`` is set, otherwise logs the failure and returns ``False``
    so the service starts degraded.
    """
    attempts = max(1, max_attempts)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            store.ensure_schema()
        except (SQLAlchemyError, OSError) as exc:
            last_error = exc
            logger.warning(
                "Definition store not ready",
                extra={
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "backoff_seconds": backoff_seconds,
                    "reason": str(exc),
                },
            )
            if attempt < attempts:
                sleep(backoff_seconds)
            continue

        logger.info(
            "Definition store schema ensured",
            extra={"attempt": attempt, "max_attempts": attempts},
        )
        return True

    if fail_fast:
        raise StoreUnavailableError(
            f"Definition store unavailable after {attempts} attempts"
        ) from last_error

    logger.error(
        "Definition store unavailable; starting degraded",
        extra={"max_attempts": attempts, "reason": str(last_error)},
    )
    return False
