"""
Scan and selection stores.

The orchestrator and the services only see the ScanStore / SelectionStore
interfaces. The in-memory implementations keep one table each, guarded by a
reader/writer lock so status polling never blocks on other readers.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Mapping, Optional, Sequence

from iam_grapher.exceptions import ScanNotFoundError
from iam_grapher.models import IdentityMarker, ScanState, Selection

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many concurrent readers or a single writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ScanStore(ABC):
    """Key-value store of scan states keyed by scan id."""

    @abstractmethod
    def get(self, scan_id: str) -> Optional[ScanState]:
        """Return the current state, or None for an unknown id."""

    @abstractmethod
    def put(self, state: ScanState) -> None:
        """Insert or replace a state."""

    @abstractmethod
    def update(
        self, scan_id: str, transition: Callable[[ScanState], ScanState]
    ) -> ScanState:
        """Atomically apply a transition to the stored state."""


class SelectionStore(ABC):
    """Key-value store of selections keyed by scan id."""

    @abstractmethod
    def get(self, scan_id: str) -> Selection:
        """Return the selection for a scan (empty if none recorded)."""

    @abstractmethod
    def merge(
        self, scan_id: str, updates: Mapping[str, Sequence[IdentityMarker]]
    ) -> Selection:
        """Overwrite the given categories and return the merged selection."""


class InMemoryScanStore(ScanStore):
    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._states: Dict[str, ScanState] = {}

    def get(self, scan_id: str) -> Optional[ScanState]:
        with self._lock.read():
            return self._states.get(scan_id)

    def put(self, state: ScanState) -> None:
        with self._lock.write():
            self._states[state.scan_id] = state

    def update(
        self, scan_id: str, transition: Callable[[ScanState], ScanState]
    ) -> ScanState:
        with self._lock.write():
            current = self._states.get(scan_id)
            if current is None:
                raise ScanNotFoundError(scan_id)
            new_state = transition(current)
            self._states[scan_id] = new_state
            return new_state


class InMemorySelectionStore(SelectionStore):
    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._selections: Dict[str, Selection] = {}

    def get(self, scan_id: str) -> Selection:
        with self._lock.read():
            return self._selections.get(scan_id) or Selection()

    def merge(
        self, scan_id: str, updates: Mapping[str, Sequence[IdentityMarker]]
    ) -> Selection:
        with self._lock.write():
            merged = self._selections.get(scan_id, Selection()).merge(updates)
            self._selections[scan_id] = merged
        logger.debug(
            f"Selection for scan {scan_id} updated: {sorted(updates)} "
            f"({merged.total_selected()} selected)"
        )
        return merged
