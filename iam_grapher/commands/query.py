"""Query command.

Filters the records of a saved scan document with a query expression, e.g.

    iam-grapher query scan.json 'tags.env == "production" AND user_name LIKE "app-*"'
"""

import json
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from iam_grapher.commands.base import command_context, load_document, report_error
from iam_grapher.exceptions import IamGrapherError, QuerySyntaxError
from iam_grapher.records import label_of

NAME_FIELDS = (
    "user_name",
    "group_name",
    "role_name",
    "policy_name",
    "principal_name",
    "name",
)


def display_name(category: Optional[str], record: dict) -> str:
    if category:
        return label_of(category, record)
    for field in NAME_FIELDS:
        if record.get(field):
            return str(record[field])
    return label_of("", record)


@click.command("query")
@click.argument("scan_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("expression")
@click.option("--category", "-c", default=None, help="Only search this category")
@click.option("--page", type=int, default=1, show_default=True, help="Page number")
@click.option("--page-size", type=int, default=50, show_default=True, help="Results per page")
@click.option("--json", "output_json", is_flag=True, help="Output the page as JSON")
@click.pass_context
def query(
    ctx: click.Context,
    scan_file: str,
    expression: str,
    category: Optional[str],
    page: int,
    page_size: int,
    output_json: bool,
) -> None:
    """Run a query expression against a saved scan document."""
    console = Console()
    grapher = command_context(ctx).get_grapher()
    scan_id = grapher.load_document(load_document(scan_file))

    try:
        result = grapher.resources.query_resources(
            scan_id, expression, category=category, page=page, page_size=page_size
        )
    except QuerySyntaxError as e:
        click.echo(f"❌ Invalid query: {e.message}", err=True)
        if e.position is not None:
            click.echo(f"   {expression}", err=True)
            click.echo("   " + " " * e.position + "^", err=True)
        ctx.exit(2)
    except IamGrapherError as e:
        report_error(e)

    if output_json:
        click.echo(json.dumps(result.to_dict(), indent=2, default=str))
        return

    if not result.resources:
        click.echo("No resources match the query.")
        return

    table = Table(title=f"Query results (page {result.page}/{result.total_pages}, {result.total} total)")
    table.add_column("Name", style="cyan")
    table.add_column("ARN / ID", style="dim")
    for record in result.resources:
        table.add_row(
            display_name(category, record),
            str(record.get("arn") or record.get("id") or ""),
        )
    console.print(table)
