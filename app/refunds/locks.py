"""
Concurrency control for refund attempts.

Two mechanisms are used together:

1. DistributedLock (Redis, via django_redis)
   - Serializes refund attempts against one gateway transaction
   - Backs the workflow's per-session in-flight guard
   - Keeps two periodic sync sweeps from overlapping

2. check_version (database)
   - Optimistic locking on RefundRecord.version for ledger updates

Usage:

    from refunds.locks import DistributedLock, execute_lock_key

    with DistributedLock(execute_lock_key(gateway, capture_id), ttl=120):
        ...

Note:
    The authoritative double-refund guard is the row lock taken on
    RefundTarget inside the ledger transaction. The distributed lock only
    stops a second attempt before its gateway lookup and amount checks.
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, TypeVar

from django.db import models, transaction

from django_redis import get_redis_connection

from core.exceptions import NotFoundError
from refunds.exceptions import LockAcquisitionError, StaleRecordError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

M = TypeVar("M", bound=models.Model)

LOCK_PREFIX = "lock:"
POLL_INTERVAL_SECONDS = 0.05

# Deletes the key only when it still carries our token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def execute_lock_key(gateway: str, transaction_ref: str) -> str:
    """Lock name for refund attempts against one gateway transaction."""
    return f"refund:execute:{gateway}:{transaction_ref}"


def workflow_lock_key(session_key: str, gateway: str, transaction_ref: str) -> str:
    """Lock name for one session's confirm step on one transaction."""
    return f"refund:workflow:{session_key}:{gateway}:{transaction_ref}"


class DistributedLock:
    """
    Redis lock with a TTL and an owner token.

    Args:
        key: Lock name, stored under ``lock:<key>``
        ttl: Seconds before Redis drops the key on its own; must cover the
            bounded gateway timeout
        blocking: Wait up to ``timeout`` seconds instead of failing at once
        timeout: Maximum wait when blocking

    Raises LockAcquisitionError when the lock cannot be taken.
    """

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"{LOCK_PREFIX}{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def _set_if_absent(self, token: str) -> bool:
        return bool(self.redis.set(self.key, token, nx=True, ex=self.ttl))

    def acquire(self) -> bool:
        token = uuid.uuid4().hex

        if not self.blocking:
            if not self._set_if_absent(token):
                raise LockAcquisitionError(
                    f"Lock '{self.key}' is already held",
                    details={"key": self.key},
                )
            self._token = token
            return True

        deadline = time.monotonic() + self.timeout
        while time.monotonic() < deadline:
            if self._set_if_absent(token):
                self._token = token
                return True
            time.sleep(POLL_INTERVAL_SECONDS)

        raise LockAcquisitionError(
            f"Failed to acquire lock '{self.key}' within {self.timeout}s",
            details={"key": self.key, "timeout": self.timeout},
        )

    def release(self) -> bool:
        """Release the lock; False if we did not hold it or it had expired."""
        if self._token is None:
            return False

        token, self._token = self._token, None
        return bool(self.redis.eval(RELEASE_SCRIPT, 1, self.key, token))

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.release()
        return False


def check_version(model_class: type[M], pk: Any, expected_version: int) -> M:
    """
    Lock a row for update, failing if its version moved.

    Raises:
        NotFoundError: No row with this primary key
        StaleRecordError: The row exists at a different version

    Call inside a transaction so the row lock outlives this function.
    """
    with transaction.atomic():
        instance = model_class.objects.select_for_update().filter(pk=pk).first()
        model_name = model_class.__name__

        if instance is None:
            raise NotFoundError(
                f"{model_name} {pk} not found",
                error_code=f"{model_name.upper()}_NOT_FOUND",
                details={"pk": str(pk)},
            )

        if instance.version != expected_version:
            raise StaleRecordError(
                f"{model_name} {pk} was modified concurrently "
                f"(expected version {expected_version}, current {instance.version})",
                details={
                    "pk": str(pk),
                    "expected_version": expected_version,
                    "current_version": instance.version,
                },
            )

        return instance


__all__ = [
    "DistributedLock",
    "check_version",
    "execute_lock_key",
    "workflow_lock_key",
]
