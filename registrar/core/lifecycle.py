"""
Legal status transitions for academic years and sub-periods, and the per-scope locks
that make "check no other ACTIVE, then write ACTIVE" atomic within the process.
"""

import asyncio
import weakref
from typing import Dict, FrozenSet, Hashable

from registrar.core.enums import PeriodStatus, YearStatus
from registrar.core.exceptions import ConflictError

YEAR_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    YearStatus.PLANNED.value: frozenset({YearStatus.ACTIVE.value}),
    YearStatus.ACTIVE.value: frozenset({YearStatus.CLOSED.value}),
    YearStatus.CLOSED.value: frozenset(),
}

PERIOD_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    PeriodStatus.PLANNED.value: frozenset({PeriodStatus.ACTIVE.value, PeriodStatus.CANCELLED.value}),
    PeriodStatus.ACTIVE.value: frozenset({PeriodStatus.CLOSED.value, PeriodStatus.CANCELLED.value}),
    PeriodStatus.CLOSED.value: frozenset(),
    PeriodStatus.CANCELLED.value: frozenset(),
}


def is_terminal(table: Dict[str, FrozenSet[str]], current: str) -> bool:
    return not table.get(current)


def ensure_transition(table: Dict[str, FrozenSet[str]], label: str, current: str, target: str) -> None:
    """Raise ConflictError unless current -> target is a legal transition."""
    if target not in table.get(current, frozenset()):
        raise ConflictError(f"Cannot move {label} from {current} to {target}")


class ScopeLocks:
    """
    asyncio.Lock per scope key, e.g. ("year", tenant_id) or ("period", academic_year_id).

    Entries are weak: a lock lives while some task holds or awaits it, then its key drops out.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def for_scope(self, *key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


transition_locks = ScopeLocks()
