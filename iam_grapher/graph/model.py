"""Dependency graph data structures."""

from dataclasses import dataclass, field
from typing import Any, Dict, List

import networkx as nx

from iam_grapher.records import Record


@dataclass(frozen=True)
class DependencyNode:
    id: str
    type: str
    display_name: str
    raw_data: Record = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "display_name": self.display_name,
            "raw_data": self.raw_data,
        }


@dataclass(frozen=True)
class DependencyEdge:
    source: str
    target: str
    edge_type: str
    label: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "edge_type": self.edge_type,
            "label": self.label,
        }


@dataclass
class DependencyGraph:
    nodes: List[DependencyNode] = field(default_factory=list)
    edges: List[DependencyEdge] = field(default_factory=list)

    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }

    def to_networkx(self) -> nx.MultiDiGraph:
        """Directed multigraph view; raw record data is left out of node attributes."""
        graph = nx.MultiDiGraph()
        for node in self.nodes:
            graph.add_node(node.id, type=node.type, name=node.display_name)
        for edge in self.edges:
            graph.add_edge(
                edge.source,
                edge.target,
                key=edge.edge_type,
                edge_type=edge.edge_type,
                label=edge.label,
            )
        return graph
