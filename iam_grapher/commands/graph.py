"""Graph command.

Builds the dependency graph of a saved scan document and exports it as JSON
or GraphML (Gephi, Cytoscape, yEd).
"""

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from iam_grapher.commands.base import command_context, exit_with_error, load_document
from iam_grapher.graph import export_graph
from iam_grapher.graph.export import EXPORT_FORMATS


@click.command("graph")
@click.argument("scan_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--root", "root_id", default=None, help="Only keep nodes connected to this node id (e.g. user:alice)")
@click.option(
    "--format",
    "export_format",
    type=click.Choice(EXPORT_FORMATS),
    default="json",
    show_default=True,
    help="Export format",
)
@click.option("--output", "-o", type=str, default=None, help="Output file (JSON goes to stdout when omitted)")
@click.pass_context
def graph(
    ctx: click.Context,
    scan_file: str,
    root_id: Optional[str],
    export_format: str,
    output: Optional[str],
) -> None:
    """Build the user/group/role/policy dependency graph of a scan."""
    grapher = command_context(ctx).get_grapher()
    scan_id = grapher.load_document(load_document(scan_file))
    dependency_graph = grapher.dependencies.get_dependencies(scan_id, root_id)

    if root_id and not dependency_graph.nodes:
        click.echo(f"⚠️  Node '{root_id}' is not in the graph", err=True)

    if output:
        result = export_graph(dependency_graph, Path(output), export_format)
        console = Console(stderr=True)
        table = Table(title="Dependency graph")
        table.add_column("Nodes", justify="right")
        table.add_column("Edges", justify="right")
        table.add_column("Output", style="dim")
        table.add_row(str(result["node_count"]), str(result["edge_count"]), result["output_path"])
        console.print(table)
    elif export_format == "json":
        click.echo(json.dumps(dependency_graph.to_dict(), indent=2, default=str))
    else:
        exit_with_error("--output is required for GraphML export")
