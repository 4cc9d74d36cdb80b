"""
Command line interface for IAM Grapher.

Scans AWS IAM or Azure RBAC, queries and graphs the scan document, and
generates Terraform code with an import script.
"""

import click

from iam_grapher.commands import register_all_commands


@click.group()
@click.option(
    "--log-level",
    default="INFO",
    help="Logging level (DEBUG, INFO, WARNING, ERROR)",
)
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, log_level: str, debug: bool) -> None:
    """IAM Grapher - scan IAM resources and generate Terraform code."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = "DEBUG" if debug else log_level.upper()
    ctx.obj["debug"] = debug


register_all_commands(cli)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
