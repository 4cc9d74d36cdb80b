"""
Rebuilds typed relationship graphs from a completed scan document.

Node ids are "{type}:{identity}" so identities from different categories never
collide. Both functions are pure and do not modify their inputs.
"""

import logging
from typing import Dict, List, Set, Tuple

import networkx as nx

from iam_grapher.graph.model import DependencyEdge, DependencyGraph, DependencyNode
from iam_grapher.models import Document

logger = logging.getLogger(__name__)

# category -> (node type, identity field, display field)
AWS_NODE_SPECS = {
    "users": ("user", "user_name", "user_name"),
    "groups": ("group", "group_name", "group_name"),
    "roles": ("role", "role_name", "role_name"),
    "policies": ("policy", "arn", "policy_name"),
}

AWS_ENTITY_NODE_TYPES = {"User": "user", "Group": "group", "Role": "role"}


def build_graph(document: Document) -> DependencyGraph:
    """Build the dependency graph for a document of any supported provider."""
    if document.provider == "aws":
        graph = _build_aws_graph(document)
    elif document.provider == "azure":
        graph = _build_azure_graph(document)
    else:
        logger.warning(f"⚠️  No graph extraction for provider '{document.provider}'")
        graph = DependencyGraph()
    logger.debug(
        f"Built {document.provider} graph: {len(graph.nodes)} nodes, {len(graph.edges)} edges"
    )
    return graph


def _build_aws_graph(document: Document) -> DependencyGraph:
    nodes: List[DependencyNode] = []
    seen: Set[str] = set()
    for category, (node_type, id_field, name_field) in AWS_NODE_SPECS.items():
        for record in document.records(category):
            identity = record.get(id_field)
            if not identity:
                continue
            node_id = f"{node_type}:{identity}"
            if node_id in seen:
                continue
            seen.add(node_id)
            nodes.append(
                DependencyNode(
                    id=node_id,
                    type=node_type,
                    display_name=record.get(name_field) or identity,
                    raw_data=record,
                )
            )

    edges: List[DependencyEdge] = []
    for attachment in document.records("attachments"):
        node_type = AWS_ENTITY_NODE_TYPES.get(attachment.get("entity_type", ""))
        entity_name = attachment.get("entity_name")
        policy_arn = attachment.get("policy_arn")
        if not node_type or not entity_name or not policy_arn:
            continue
        edges.append(
            DependencyEdge(
                source=f"{node_type}:{entity_name}",
                target=f"policy:{policy_arn}",
                edge_type="policy_attachment",
                label="has policy",
            )
        )

    memberships: Dict[Tuple[str, str], None] = {}
    for group in document.records("groups"):
        for user_name in group.get("members") or []:
            memberships[(user_name, group.get("group_name", ""))] = None
    for user in document.records("users"):
        for group_name in user.get("groups") or []:
            memberships[(user.get("user_name", ""), group_name)] = None
    for user_name, group_name in memberships:
        if user_name and group_name:
            edges.append(
                DependencyEdge(
                    source=f"user:{user_name}",
                    target=f"group:{group_name}",
                    edge_type="group_membership",
                    label="member of",
                )
            )
    return DependencyGraph(nodes, edges)


def _build_azure_graph(document: Document) -> DependencyGraph:
    nodes: List[DependencyNode] = []
    seen: Set[str] = set()
    for record in document.records("role_definitions"):
        identity = record.get("role_definition_id") or record.get("id")
        if not identity:
            continue
        node_id = f"role_definition:{identity}"
        if node_id in seen:
            continue
        seen.add(node_id)
        nodes.append(
            DependencyNode(
                id=node_id,
                type="role_definition",
                display_name=record.get("role_name") or identity,
                raw_data=record,
            )
        )

    edges: List[DependencyEdge] = []
    for assignment in document.records("role_assignments"):
        principal_id = assignment.get("principal_id")
        role_definition_id = assignment.get("role_definition_id")
        if not principal_id or not role_definition_id:
            continue
        principal_node = f"principal:{principal_id}"
        # Principal ids are directory object ids, unique across principal types
        if principal_node not in seen:
            seen.add(principal_node)
            principal_type = assignment.get("principal_type") or "Unknown"
            nodes.append(
                DependencyNode(
                    id=principal_node,
                    type="principal",
                    display_name=assignment.get("principal_name") or principal_id,
                    raw_data={
                        "principal_id": principal_id,
                        "principal_type": principal_type,
                    },
                )
            )
        edges.append(
            DependencyEdge(
                source=principal_node,
                target=f"role_definition:{role_definition_id}",
                edge_type="role_assignment",
                label="assigned",
            )
        )
    return DependencyGraph(nodes, edges)


def filter_by_root(graph: DependencyGraph, root_id: str) -> DependencyGraph:
    """
    Project the graph onto everything reachable from root_id.

    Edges count in both directions for reachability. An unknown root gives an
    empty graph. The input graph is not modified.
    """
    nx_graph = graph.to_networkx()
    if root_id not in nx_graph:
        return DependencyGraph()
    reachable = nx.node_connected_component(
        nx_graph.to_undirected(as_view=True), root_id
    )
    return DependencyGraph(
        nodes=[node for node in graph.nodes if node.id in reachable],
        edges=[
            edge
            for edge in graph.edges
            if edge.source in reachable and edge.target in reachable
        ],
    )
