"""Retry of idempotent store operations on transient connection failures.

Only wrap operations whose replay is a no-op (ledger postings keyed by order,
token issuance keyed by (order, kind)). Business errors (AppError) are never
retried; they propagate on the first attempt.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import InterfaceError, OperationalError

from config.settings import settings
from src.mp_common.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    RedisConnectionError,
    RedisTimeoutError,
    ConnectionError,
)


async def retry_idempotent(
    operation: str,
    func: Callable[[], Awaitable[T]],
    attempts: int | None = None,
    base_delay_ms: int | None = None,
) -> T:
    """Run ``func`` up to ``attempts`` times with exponential backoff.

    ``func`` must open its own transaction per attempt (the services do:
    rollback on failure, commit on success).
    """
    max_attempts = attempts if attempts is not None else settings.STORE_RETRY_ATTEMPTS
    delay_ms = base_delay_ms if base_delay_ms is not None else settings.STORE_RETRY_BASE_DELAY_MS
    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except TRANSIENT_ERRORS as exc:
            if attempt == max_attempts:
                logger.error("%s failed after %d attempts: %s", operation, attempt, exc)
                raise StoreUnavailableError(operation) from exc
            logger.warning(
                "%s transient failure (attempt %d/%d): %s", operation, attempt, max_attempts, exc
            )
            await asyncio.sleep(delay_ms * (2 ** (attempt - 1)) / 1000)
    raise StoreUnavailableError(operation)  # attempts < 1
