from iam_grapher.graph.builder import build_graph, filter_by_root
from iam_grapher.graph.export import export_graph
from iam_grapher.graph.model import DependencyEdge, DependencyGraph, DependencyNode

__all__ = [
    "DependencyEdge",
    "DependencyGraph",
    "DependencyNode",
    "build_graph",
    "export_graph",
    "filter_by_root",
]
