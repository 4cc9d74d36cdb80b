"""Progress events pushed by a running scan."""

import logging
from typing import List, Protocol, Tuple

from iam_grapher.exceptions import InvalidStateTransition
from iam_grapher.stores import ScanStore

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    def emit(self, progress: int, message: str) -> None: ...


class StoreProgressSink:
    """Applies progress events to the scan's entry in a ScanStore."""

    def __init__(self, store: ScanStore, scan_id: str) -> None:
        self.store = store
        self.scan_id = scan_id

    def emit(self, progress: int, message: str) -> None:
        try:
            self.store.update(self.scan_id, lambda s: s.advance(progress, message))
        except InvalidStateTransition:
            logger.debug(f"Ignoring progress for finished scan {self.scan_id}")


class RecordingProgressSink:
    """Keeps every event in order. Used by the CLI and in tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[int, str]] = []

    def emit(self, progress: int, message: str) -> None:
        self.events.append((progress, message))
        logger.info(f"📊 [{progress:3d}%] {message}")
