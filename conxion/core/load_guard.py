"""
Stale-result protection for repeated loads of the same thing.

Every load of a key takes a token from ``begin``. The result may be
committed only if no newer load of that key has committed already, so a slow
load that started first can never overwrite a fresher one.

State for a key lives only while loads of it are in flight: the last load to
finish (``commit`` or ``abandon``) releases it.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadTicket:
    key: str
    token: int


@dataclass(frozen=True)
class LoadResult:
    # what the caller should serve: its own value, or the newer committed one
    value: Any
    stale: bool


@dataclass
class _Slot:
    issued: int = 0
    committed: int = 0
    pending: int = 0
    value: Any = None


class LoadGuard:
    def __init__(self):
        self._lock = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def begin(self, key: str) -> LoadTicket:
        with self._lock:
            slot = self._slots.setdefault(key, _Slot())
            slot.issued += 1
            slot.pending += 1
            return LoadTicket(key=key, token=slot.issued)

    def is_current(self, ticket: LoadTicket) -> bool:
        with self._lock:
            slot = self._slots.get(ticket.key)
            return slot is not None and slot.issued == ticket.token

    def commit(self, ticket: LoadTicket, value: Any) -> LoadResult:
        """Store ``value`` unless a newer load already committed, in which case that newer value is returned."""
        with self._lock:
            slot = self._slots.get(ticket.key)
            if slot is None:
                return LoadResult(value=value, stale=False)
            if ticket.token <= slot.committed:
                logger.info("Discarding stale load %s#%d (committed #%d)",
                            ticket.key, ticket.token, slot.committed)
                result = LoadResult(value=slot.value, stale=True)
            else:
                slot.committed = ticket.token
                slot.value = value
                result = LoadResult(value=value, stale=False)
            self._finish(ticket.key, slot)
            return result

    def abandon(self, ticket: LoadTicket) -> None:
        """Mark a failed load as finished without committing anything."""
        with self._lock:
            slot = self._slots.get(ticket.key)
            if slot is not None:
                self._finish(ticket.key, slot)

    def _finish(self, key: str, slot: _Slot) -> None:
        slot.pending -= 1
        if slot.pending <= 0:
            del self._slots[key]

    def latest(self, key: str) -> Any:
        with self._lock:
            slot = self._slots.get(key)
            return slot.value if slot else None

    def committed_token(self, key: str) -> int:
        with self._lock:
            slot = self._slots.get(key)
            return slot.committed if slot else 0


reference_candidates_guard = LoadGuard()
