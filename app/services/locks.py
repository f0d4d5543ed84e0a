from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, ContextManager, Dict, Iterator, Optional

from app.db import Raffle, get_session, repo
from app.services.errors import NotFound


class _RaffleLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class RaffleLocks:
    """Per-raffle locks that exist only while someone holds or waits on them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, _RaffleLock] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, raffle_id: int) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(raffle_id)
            if entry is None:
                entry = self._locks[raffle_id] = _RaffleLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[raffle_id]


raffle_locks = RaffleLocks()


@contextmanager
def raffle_transaction(
    raffle_id: int,
    session_factory: Optional[Callable[[], ContextManager]] = None,
) -> Iterator[tuple]:
    """Exclusive section for one raffle: process lock, transaction, row lock.

    Draws and exclusion or membership changes all go through here, so a change
    racing a draw either commits first or sees the raffle as drawn.
    """
    factory = session_factory or get_session
    with raffle_locks.hold(raffle_id):
        with factory() as session:
            raffle: Optional[Raffle] = repo.lock_raffle(session, raffle_id)
            if raffle is None:
                raise NotFound("Raffle not found.")
            yield session, raffle
