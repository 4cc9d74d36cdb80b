"""
Scan Orchestrator

Starts scans as background asyncio tasks and tracks them in a ScanStore.
Callers poll get_status(); a scan moves Pending -> InProgress -> Completed or
Failed and is never retried. Scans with different ids share nothing but the
store.
"""

import asyncio
import uuid
from typing import Callable, Dict, Optional

import structlog

from iam_grapher.exceptions import (
    IamGrapherError,
    ScanNotCompletedError,
    ScanNotFoundError,
)
from iam_grapher.models import Document, ScanConfig, ScanState
from iam_grapher.progress import StoreProgressSink
from iam_grapher.scanners import ProviderScanner, create_scanner
from iam_grapher.stores import ScanStore

logger = structlog.get_logger(__name__)

ScannerFactory = Callable[[ScanConfig], ProviderScanner]


class ScanOrchestrator:
    def __init__(
        self,
        store: ScanStore,
        scanner_factory: Optional[ScannerFactory] = None,
    ) -> None:
        self.store = store
        self._scanner_factory = scanner_factory or create_scanner
        self._tasks: Dict[str, "asyncio.Task[None]"] = {}

    async def start(self, config: ScanConfig) -> str:
        """
        Validate the request, register a Pending scan and run it in the background.

        Returns the new scan id immediately.

        Raises:
            ConfigurationError: If the scan request is malformed
        """
        config.validate()
        scan_id = str(uuid.uuid4())
        state = ScanState(scan_id=scan_id, provider=config.provider)
        enabled = config.enabled_categories()

        if not enabled:
            self.store.put(
                state.complete(
                    Document(provider=config.provider),
                    "No categories selected, nothing to scan",
                )
            )
            logger.info("scan_completed_empty", scan_id=scan_id, provider=config.provider)
            return scan_id

        self.store.put(state)
        task = asyncio.create_task(self._run(scan_id, config), name=f"scan-{scan_id}")
        self._tasks[scan_id] = task
        task.add_done_callback(lambda _t, sid=scan_id: self._tasks.pop(sid, None))
        logger.info(
            "scan_started",
            scan_id=scan_id,
            provider=config.provider,
            categories=enabled,
        )
        return scan_id

    async def _run(self, scan_id: str, config: ScanConfig) -> None:
        # Each task runs in its own context copy, so bindings stay per scan
        with structlog.contextvars.bound_contextvars(
            scan_id=scan_id, provider=config.provider
        ):
            sink = StoreProgressSink(self.store, scan_id)
            sink.emit(0, "Starting scan")
            try:
                scanner = self._scanner_factory(config)
                document = await scanner.scan(sink)
            except IamGrapherError as e:
                logger.error("scan_failed", **e.to_dict())
                self.store.update(
                    scan_id, lambda s: s.fail(f"Scan failed: {e}", e.to_dict())
                )
                return
            except Exception as e:
                logger.exception("scan_crashed")
                error = {"error_type": type(e).__name__, "message": str(e)}
                self.store.update(scan_id, lambda s: s.fail(f"Scan failed: {e}", error))
                return

            total = sum(document.resource_summary().values())
            self.store.update(
                scan_id,
                lambda s: s.complete(document, f"Scan completed: {total} resources found"),
            )
            logger.info(
                "scan_completed",
                summary=document.resource_summary(),
                degraded_calls=len(scanner.degradations),
            )

    def register_document(self, document: Document) -> str:
        """Store a document from an earlier scan as a completed scan."""
        scan_id = str(uuid.uuid4())
        total = sum(document.resource_summary().values())
        self.store.put(
            ScanState(scan_id=scan_id, provider=document.provider).complete(
                document, f"Scan loaded: {total} resources found"
            )
        )
        logger.info("scan_registered", scan_id=scan_id, provider=document.provider)
        return scan_id

    def get_status(self, scan_id: str) -> ScanState:
        state = self.store.get(scan_id)
        if state is None:
            raise ScanNotFoundError(scan_id)
        return state

    def get_document(self, scan_id: str) -> Document:
        state = self.get_status(scan_id)
        if state.document is None:
            raise ScanNotCompletedError(scan_id, state.status.value)
        return state.document

    async def wait_for(self, scan_id: str) -> ScanState:
        """Wait until the scan's background task finished and return its state."""
        task = self._tasks.get(scan_id)
        if task is not None:
            await task
        return self.get_status(scan_id)

    async def run(self, config: ScanConfig) -> ScanState:
        """Start a scan and wait for it to finish."""
        return await self.wait_for(await self.start(config))
