"""Scan command.

This module provides the 'scan' command, which enumerates the IAM
resources of an AWS account or an Azure scope and writes the scan document
as JSON.
"""

import asyncio
from typing import Optional

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from iam_grapher.commands.base import (
    async_command,
    command_context,
    exit_with_error,
    report_error,
    write_json,
)
from iam_grapher.exceptions import IamGrapherError
from iam_grapher.models import ScanConfig, ScanStatus
from iam_grapher.records import PROVIDER_CATEGORIES
from iam_grapher.requests import AZURE_AUTH_METHODS, AZURE_SCOPE_TYPES

POLL_INTERVAL = 0.2


def build_scan_config(
    provider: str,
    categories: Optional[str],
    name_prefix: Optional[str],
    no_tags: bool,
    **auth: Optional[str],
) -> ScanConfig:
    """Turn CLI options into a scan request; every category is on by default."""
    available = PROVIDER_CATEGORIES[provider]
    if categories:
        requested = [c.strip() for c in categories.split(",") if c.strip()]
    else:
        requested = list(available)
    filters = {"name_prefix": name_prefix} if name_prefix else {}
    return ScanConfig(
        provider=provider,
        scan_targets={category: True for category in requested},
        filters=filters,
        include_tags=not no_tags,
        **auth,
    )


@click.command("scan")
@click.option(
    "--provider",
    type=click.Choice(sorted(PROVIDER_CATEGORIES)),
    required=True,
    help="Cloud provider to scan",
)
@click.option("--profile", help="AWS named profile")
@click.option("--region", help="AWS region")
@click.option("--assume-role-arn", help="AWS role to assume before scanning")
@click.option("--subscription-id", envvar="AZURE_SUBSCRIPTION_ID", help="Azure subscription ID")
@click.option("--tenant-id", envvar="AZURE_TENANT_ID", help="Azure tenant ID")
@click.option(
    "--auth-method",
    type=click.Choice(AZURE_AUTH_METHODS),
    default=None,
    help="Azure credential type (default: DefaultAzureCredential)",
)
@click.option("--client-id", envvar="AZURE_CLIENT_ID", help="Service principal client ID")
@click.option(
    "--client-secret",
    envvar="AZURE_CLIENT_SECRET",
    help="Service principal client secret",
)
@click.option(
    "--scope-type",
    type=click.Choice(AZURE_SCOPE_TYPES),
    default=None,
    help="Azure scope to scan (default: subscription)",
)
@click.option("--scope-value", help="Resource group or management group name")
@click.option(
    "--categories",
    help="Comma-separated categories to scan (default: all for the provider)",
)
@click.option("--name-prefix", help="Only keep resources whose name starts with this prefix")
@click.option("--no-tags", is_flag=True, help="Do not fetch resource tags")
@click.option("--page-size", type=int, default=None, help="Listing page size")
@click.option("--output", "-o", type=str, default=None, help="Write the scan document to this file")
@click.pass_context
@async_command
async def scan(
    ctx: click.Context,
    provider: str,
    profile: Optional[str],
    region: Optional[str],
    assume_role_arn: Optional[str],
    subscription_id: Optional[str],
    tenant_id: Optional[str],
    auth_method: Optional[str],
    client_id: Optional[str],
    client_secret: Optional[str],
    scope_type: Optional[str],
    scope_value: Optional[str],
    categories: Optional[str],
    name_prefix: Optional[str],
    no_tags: bool,
    page_size: Optional[int],
    output: Optional[str],
) -> None:
    """Scan IAM users, groups, roles and policies (AWS) or RBAC (Azure)."""
    if provider == "aws":
        auth = {"profile": profile, "region": region, "assume_role_arn": assume_role_arn}
    else:
        auth = {
            "subscription_id": subscription_id,
            "tenant_id": tenant_id,
            "auth_method": auth_method,
            "client_id": client_id,
            "client_secret": client_secret,
            "scope_type": scope_type,
            "scope_value": scope_value,
        }
    scan_config = build_scan_config(provider, categories, name_prefix, no_tags, **auth)
    await scan_command_handler(ctx, scan_config, page_size, output)


async def scan_command_handler(
    ctx: click.Context,
    scan_config: ScanConfig,
    page_size: Optional[int] = None,
    output: Optional[str] = None,
) -> None:
    """Handle the scan command logic."""
    console = Console(stderr=True)
    try:
        grapher = command_context(ctx).get_grapher(page_size=page_size)
        scan_id = await grapher.start_scan(scan_config)
    except IamGrapherError as e:
        report_error(e)
    except ValueError as e:
        exit_with_error(str(e))

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task(description="Starting scan", total=100)
        while True:
            state = grapher.orchestrator.get_status(scan_id)
            progress.update(task, completed=state.progress, description=state.message)
            if state.is_terminal:
                break
            await asyncio.sleep(POLL_INTERVAL)

    state = await grapher.orchestrator.wait_for(scan_id)
    if state.status == ScanStatus.FAILED:
        console.print(f"[red]❌ {state.message}[/red]")
        suggestion = (state.error or {}).get("recovery_suggestion")
        if suggestion:
            console.print(f"💡 {suggestion}")
        ctx.exit(1)

    document = grapher.orchestrator.get_document(scan_id)
    table = Table(title=f"{scan_config.provider.upper()} scan summary")
    table.add_column("Category", style="cyan")
    table.add_column("Resources", justify="right")
    for category, count in document.summary().items():
        table.add_row(category, str(count))
    console.print(table)
    console.print(f"✅ {state.message}")

    write_json(document.to_dict(), output)
    if output:
        console.print(f"📄 Scan document written to {output}")
