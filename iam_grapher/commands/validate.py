"""Validate command.

Runs terraform init + validate (and optionally fmt) over a directory written
by 'iam-grapher generate'.

    iam-grapher validate output/<generation-id>
    iam-grapher validate output/<generation-id> --check-format
    iam-grapher validate output/<generation-id> --fmt
"""

from pathlib import Path

import click
from rich.console import Console

from iam_grapher.commands.base import command_context, report_error, write_json
from iam_grapher.exceptions import IamGrapherError
from iam_grapher.grapher import IamGrapher
from iam_grapher.validators import ValidationResult


def print_validation(console: Console, result: ValidationResult) -> None:
    if result.valid:
        console.print("✅ Terraform configuration is valid")
    else:
        console.print("❌ Terraform validation failed")
        if result.error_message and not result.errors:
            console.print(f"   {result.error_message}")
    for error in result.errors:
        console.print(f"   [red]error[/red] {error}")
    for warning in result.warnings:
        console.print(f"   [yellow]warning[/yellow] {warning}")


def run_validation(
    grapher: IamGrapher,
    generation_id: str,
    check_format: bool = False,
    apply_format: bool = False,
    as_json: bool = False,
) -> bool:
    """Validate one generation and print the outcome. Returns True when it passed."""
    console = Console(stderr=as_json)
    service = grapher.validation
    report = {"terraform": service.check_terraform().to_dict()}
    if not report["terraform"]["available"]:
        if as_json:
            write_json(report, None)
        else:
            console.print("⚠️  Terraform CLI not found, validation skipped")
            console.print("💡 Install Terraform from https://www.terraform.io/downloads")
        return True

    passed = True
    try:
        if apply_format:
            report["formatted_files"] = service.format_code(generation_id)
            if not as_json:
                for name in report["formatted_files"]:
                    console.print(f"🖊  Formatted {name}")
        elif check_format:
            fmt = service.check_format(generation_id)
            report["format"] = fmt.to_dict()
            passed = fmt.formatted
            if not as_json:
                if fmt.formatted:
                    console.print("✅ Files are formatted")
                else:
                    console.print("❌ Files need formatting:")
                    for name in fmt.files_changed:
                        console.print(f"   - {name}")
        result = service.validate_generation(generation_id)
    except IamGrapherError as e:
        report_error(e)

    report["validation"] = result.to_dict()
    passed = passed and result.valid
    if as_json:
        write_json(report, None)
    else:
        print_validation(console, result)
    return passed


@click.command("validate")
@click.argument("output_dir", type=click.Path(exists=True, file_okay=False))
@click.option(
    "--check-format",
    is_flag=True,
    help="Also fail when 'terraform fmt' would change a file",
)
@click.option(
    "--fmt",
    "apply_format",
    is_flag=True,
    help="Rewrite files with 'terraform fmt' before validating",
)
@click.option("--json", "as_json", is_flag=True, help="Print the results as JSON")
@click.pass_context
def validate(
    ctx: click.Context,
    output_dir: str,
    check_format: bool,
    apply_format: bool,
    as_json: bool,
) -> None:
    """Validate generated Terraform with the Terraform CLI."""
    grapher = command_context(ctx).get_grapher()
    try:
        generation_id = grapher.generation.register_output(Path(output_dir))
    except IamGrapherError as e:
        report_error(e)
    if not run_validation(grapher, generation_id, check_format, apply_format, as_json):
        ctx.exit(1)
