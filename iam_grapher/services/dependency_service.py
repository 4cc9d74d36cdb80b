"""Dependency Service: relationship graphs for completed scans."""

from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from iam_grapher.graph import DependencyGraph, build_graph, export_graph, filter_by_root
from iam_grapher.services.scan_orchestrator import ScanOrchestrator

logger = structlog.get_logger(__name__)


class DependencyService:
    def __init__(self, orchestrator: ScanOrchestrator) -> None:
        self.orchestrator = orchestrator

    def get_dependencies(self, scan_id: str, root_id: Optional[str] = None) -> DependencyGraph:
        """
        Build the dependency graph of a completed scan.

        With root_id, only the part of the graph connected to that node is
        returned; an unknown root gives an empty graph.
        """
        graph = build_graph(self.orchestrator.get_document(scan_id))
        if root_id:
            graph = filter_by_root(graph, root_id)
        logger.info(
            "dependencies_built",
            scan_id=scan_id,
            root_id=root_id,
            node_count=len(graph.nodes),
            edge_count=len(graph.edges),
        )
        return graph

    def export_dependencies(
        self,
        scan_id: str,
        output_path: Path,
        format: str = "json",
        root_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        return export_graph(self.get_dependencies(scan_id, root_id), output_path, format)
