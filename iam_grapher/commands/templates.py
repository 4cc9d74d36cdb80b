"""Template management commands.

    iam-grapher templates list
    iam-grapher templates show aws/iam_user.tf.j2
    iam-grapher templates preview aws/iam_user.tf.j2 [--file my.tf.j2] [--context ctx.json]
    iam-grapher templates save aws/iam_user.tf.j2 my.tf.j2
    iam-grapher templates delete aws/iam_user.tf.j2
"""

from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from iam_grapher.commands.base import command_context, load_json_file, report_error
from iam_grapher.exceptions import IamGrapherError
from iam_grapher.services import TemplateService


def _service(ctx: click.Context) -> TemplateService:
    return command_context(ctx).get_grapher().templates


@click.group("templates")
def templates() -> None:
    """List, inspect, preview and override code generation templates."""


@templates.command("list")
@click.pass_context
def list_templates(ctx: click.Context) -> None:
    """List bundled templates and user overrides."""
    entries = _service(ctx).list_templates()
    if not entries:
        click.echo("No templates found.")
        return
    table = Table(title="Templates")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("Override")
    for entry in entries:
        table.add_row(
            entry["name"],
            entry["source"],
            "[yellow]yes[/yellow]" if entry["has_user_override"] else "",
        )
    Console().print(table)


@templates.command("show")
@click.argument("name")
@click.pass_context
def show(ctx: click.Context, name: str) -> None:
    """Print a template (the user override when one exists)."""
    try:
        template = _service(ctx).get_template(name)
    except IamGrapherError as e:
        report_error(e)
    click.echo(f"# source: {template['source']}", err=True)
    click.echo(template["content"], nl=False)


@templates.command("preview")
@click.argument("name")
@click.option(
    "--file",
    "content_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Preview unsaved template text from this file",
)
@click.option(
    "--context",
    "context_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON render context (default: built-in sample record)",
)
@click.pass_context
def preview(
    ctx: click.Context,
    name: str,
    content_file: Optional[str],
    context_file: Optional[str],
) -> None:
    """Render a template against a sample record."""
    content = Path(content_file).read_text(encoding="utf-8") if content_file else None
    try:
        rendered = _service(ctx).preview_template(
            name, content=content, context=load_json_file(context_file)
        )
    except IamGrapherError as e:
        report_error(e)
    click.echo(rendered, nl=False)


@templates.command("save")
@click.argument("name")
@click.argument("source", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def save(ctx: click.Context, name: str, source: str) -> None:
    """Store SOURCE as the user override for NAME."""
    try:
        path = _service(ctx).save_template(name, Path(source).read_text(encoding="utf-8"))
    except IamGrapherError as e:
        report_error(e)
    click.echo(f"💾 Saved {name} to {path}")


@templates.command("delete")
@click.argument("name")
@click.pass_context
def delete(ctx: click.Context, name: str) -> None:
    """Remove the user override for NAME (bundled templates are read-only)."""
    try:
        _service(ctx).delete_template(name)
    except IamGrapherError as e:
        report_error(e)
    click.echo(f"🗑️  Deleted user template {name}")
