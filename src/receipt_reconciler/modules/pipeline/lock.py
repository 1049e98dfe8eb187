from __future__ import annotations

from typing import Protocol

import redis
from redis.exceptions import LockError, RedisError

from receipt_reconciler.core.config import settings
from receipt_reconciler.core.logging import get_logger, log_event, log_exception

logger = get_logger(__name__)


class CycleLock(Protocol):
    def acquire(self) -> bool: ...

    def extend(self) -> bool: ...

    def release(self) -> None: ...


class RedisCycleLock:
    """Cycle guard shared by every process pointed at the same Redis.

    The key expires after `timeout` seconds unless extended; the orchestrator extends it
    between documents.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        *,
        name: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self._client = client or redis.Redis.from_url(
            settings.redis_url, socket_connect_timeout=2, socket_timeout=2
        )
        self.name = name or settings.pipeline_lock_name
        self.timeout = timeout or settings.pipeline_lock_timeout_seconds
        self._held = None

    def acquire(self) -> bool:
        lock = self._client.lock(self.name, timeout=self.timeout, blocking=False)
        try:
            acquired = lock.acquire(blocking=False)
        except RedisError:
            log_exception(logger, "pipeline.lock.unavailable", lock_name=self.name)
            return False
        if acquired:
            self._held = lock
        return bool(acquired)

    def extend(self) -> bool:
        if self._held is None:
            return False
        try:
            self._held.extend(self.timeout, replace_ttl=True)
        except (LockError, RedisError):
            log_exception(logger, "pipeline.lock.lost", lock_name=self.name)
            return False
        return True

    def release(self) -> None:
        held, self._held = self._held, None
        if held is None:
            return
        try:
            held.release()
        except (LockError, RedisError):
            # Expired or taken over; nothing of ours left to free.
            log_event(logger, "pipeline.lock.release_failed", lock_name=self.name)


def build_cycle_lock() -> CycleLock | None:
    if settings.pipeline_lock_backend == "redis":
        return RedisCycleLock()
    return None
