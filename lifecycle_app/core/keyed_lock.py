import asyncio
import logging
from contextlib import asynccontextmanager

from .errors import ConflictError, StaleStateError

logger = logging.getLogger(__name__)


class KeyedLock:
    """Single writer per entity id inside one process.

    ``wait=0`` fails fast with ``StaleStateError`` when another operation
    holds the id; a positive ``wait`` blocks up to that many seconds and then
    raises ``ConflictError``. Cross-process safety comes from row locks and
    the ``version`` column, not from this class.
    """

    def __init__(self, namespace: str):
        self.namespace = namespace
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def _name(self, key) -> str:
        return f"{self.namespace}:{key}"

    def is_held(self, key) -> bool:
        lock = self._locks.get(self._name(key))
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key, wait: float = 0):
        name = self._name(key)
        lock = self._locks.setdefault(name, asyncio.Lock())
        self._users[name] = self._users.get(name, 0) + 1
        acquired = False
        try:
            if wait <= 0:
                if lock.locked():
                    raise StaleStateError(
                        f"{self.namespace} {key} is being modified by another operation"
                    )
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=wait)
                except asyncio.TimeoutError:
                    logger.warning("Timed out waiting %.1fs for %s", wait, name)
                    raise ConflictError(
                        f"{self.namespace} {key} is busy, retry later"
                    ) from None
            acquired = True
            yield
        finally:
            if acquired:
                lock.release()
            self._users[name] -= 1
            if self._users[name] == 0:
                self._users.pop(name, None)
                self._locks.pop(name, None)


booking_locks = KeyedLock("booking")
payment_locks = KeyedLock("payment")
ticket_locks = KeyedLock("maintenance_ticket")
verification_locks = KeyedLock("provider_verification")
