"""Export a dependency graph as JSON or GraphML."""

import json
from pathlib import Path
from typing import Any, Dict

import networkx as nx
import structlog

from iam_grapher.graph.model import DependencyGraph

logger = structlog.get_logger(__name__)

EXPORT_FORMATS = ("json", "graphml")


def export_graph(graph: DependencyGraph, output_path: Path, format: str = "json") -> Dict[str, Any]:
    """Write the graph to output_path.

    Args:
        graph: Graph to export
        output_path: Destination file
        format: "json" (nodes with raw data) or "graphml" (Gephi, Cytoscape, yEd)

    Returns:
        Dictionary with output_path, format, node_count and edge_count

    Raises:
        ValueError: If the format is not supported
    """
    if format not in EXPORT_FORMATS:
        raise ValueError(
            f"Unsupported format: {format}. Must be one of: {', '.join(EXPORT_FORMATS)}"
        )
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if format == "graphml":
        nx.write_graphml(graph.to_networkx(), str(output_path))
    else:
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(graph.to_dict(), f, indent=2, default=str)

    logger.info(
        "graph_exported",
        output_path=str(output_path),
        format=format,
        node_count=len(graph.nodes),
        edge_count=len(graph.edges),
    )
    return {
        "output_path": str(output_path),
        "format": format,
        "node_count": len(graph.nodes),
        "edge_count": len(graph.edges),
    }
