"""
IAM Grapher

Coordinator that wires the in-memory stores, the scan orchestrator and the
resource, dependency, generation, template and validation services together.
"""

import logging
from typing import Any, Optional

from iam_grapher.config_manager import IamGrapherConfig
from iam_grapher.generators.templates import FileSystemTemplateStore, TemplateStore
from iam_grapher.models import Document, ScanConfig, ScanState
from iam_grapher.scanners import AdmissionPool, ProviderScanner, create_scanner
from iam_grapher.services import (
    DependencyService,
    GenerationService,
    ResourceService,
    ScanOrchestrator,
    TemplateService,
    ValidationService,
)
from iam_grapher.stores import (
    InMemoryScanStore,
    InMemorySelectionStore,
    ScanStore,
    SelectionStore,
)

logger = logging.getLogger(__name__)


class IamGrapher:
    """
    Coordinator for IAM scanning, querying and code generation.
    Composes ScanOrchestrator, ResourceService, DependencyService,
    GenerationService, TemplateService and ValidationService over shared stores.
    """

    def __init__(
        self,
        config: Optional[IamGrapherConfig] = None,
        scan_store: Optional[ScanStore] = None,
        selection_store: Optional[SelectionStore] = None,
        template_store: Optional[TemplateStore] = None,
        **scanner_kwargs: Any,
    ) -> None:
        """
        Args:
            config: Settings; read from the environment when None
            scan_store: Scan state table; in-memory when None
            selection_store: Selection table; in-memory when None
            template_store: Template tiers; from config.templates when None
            scanner_kwargs: Passed to every scanner (e.g. client_factory)
        """
        self.config = config or IamGrapherConfig.from_environment()
        self.scan_store = scan_store or InMemoryScanStore()
        self.selection_store = selection_store or InMemorySelectionStore()
        self.template_store = template_store or FileSystemTemplateStore.from_config(
            self.config.templates
        )
        self._scanner_kwargs = scanner_kwargs

        self.orchestrator = ScanOrchestrator(self.scan_store, self.create_scanner)
        self.resources = ResourceService(self.orchestrator, self.selection_store)
        self.dependencies = DependencyService(self.orchestrator)
        self.generation = GenerationService(
            self.orchestrator,
            self.selection_store,
            template_store=self.template_store,
            defaults=self.config.generation,
        )
        self.templates = TemplateService(self.template_store)
        self.validation = ValidationService(self.generation)

    def create_scanner(self, scan_config: ScanConfig) -> ProviderScanner:
        """Create a scanner with its own admission pool for one scan."""
        kwargs = dict(self._scanner_kwargs)
        kwargs.setdefault("page_size", self.config.processing.page_size)
        pool = AdmissionPool(self.config.processing.enrichment_concurrency)
        return create_scanner(scan_config, pool=pool, **kwargs)

    async def start_scan(self, scan_config: ScanConfig) -> str:
        return await self.orchestrator.start(scan_config)

    async def scan(self, scan_config: ScanConfig) -> ScanState:
        """Run a scan to completion and return its terminal state."""
        state = await self.orchestrator.run(scan_config)
        logger.info(f"🔍 Scan {state.scan_id} finished: {state.message}")
        return state

    def load_document(self, document: Document) -> str:
        """Register a previously saved scan document and return its scan id."""
        return self.orchestrator.register_document(document)
