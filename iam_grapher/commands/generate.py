"""Generate command.

Renders a saved scan document into Terraform files plus an import script.
"""

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from iam_grapher.commands.base import (
    command_context,
    exit_with_error,
    load_document,
    load_json_file,
    report_error,
)
from iam_grapher.commands.validate import run_validation
from iam_grapher.exceptions import GenerationEmptyError, IamGrapherError
from iam_grapher.generators import get_generator_registry
from iam_grapher.generators.naming import NAMING_CONVENTIONS
from iam_grapher.models import FileSplitPolicy, GenerationConfig


@click.command("generate")
@click.argument("scan_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output-dir",
    "-o",
    default=None,
    help="Root directory for generated code (default: IAMG_OUTPUT_DIR or ./output)",
)
@click.option(
    "--split",
    type=click.Choice([p.value for p in FileSplitPolicy]),
    default=FileSplitPolicy.SINGLE.value,
    show_default=True,
    help="One file per category or one file per resource",
)
@click.option(
    "--naming",
    type=click.Choice(NAMING_CONVENTIONS),
    default="snake_case",
    show_default=True,
    help="Naming convention for resource labels",
)
@click.option(
    "--script",
    type=click.Choice(["sh", "ps1"]),
    default="sh",
    show_default=True,
    help="Import script format",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(sorted(get_generator_registry())),
    default="terraform",
    show_default=True,
    help="Code generator to use",
)
@click.option("--no-readme", is_flag=True, help="Do not write README.md")
@click.option(
    "--selection",
    "selection_file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON file mapping category -> list of names/ids to include",
)
@click.option("--zip", "make_zip", is_flag=True, help="Also write a .zip archive of the output")
@click.option(
    "--validate",
    "run_validate",
    is_flag=True,
    help="Run terraform init + validate on the output (skipped when Terraform is missing)",
)
@click.pass_context
def generate(
    ctx: click.Context,
    scan_file: str,
    output_dir: Optional[str],
    split: str,
    naming: str,
    script: str,
    output_format: str,
    no_readme: bool,
    selection_file: Optional[str],
    make_zip: bool,
    run_validate: bool,
) -> None:
    """Generate Terraform code for the resources of a scan."""
    console = Console()
    grapher = command_context(ctx).get_grapher(output_dir=output_dir)
    scan_id = grapher.load_document(load_document(scan_file))

    selection_data = load_json_file(selection_file)
    if selection_data:
        invalid = [k for k, v in selection_data.items() if not isinstance(v, list)]
        if invalid:
            exit_with_error(f"Selection entries must be lists: {', '.join(invalid)}")
        grapher.resources.update_selection(scan_id, selection_data)

    config = GenerationConfig(
        output_path=grapher.config.generation.output_dir,
        file_split_rule=split,
        naming_convention=naming,
        import_script_format=script,
        generate_readme=not no_readme,
        generator=output_format,
    )

    try:
        result = grapher.generation.generate(scan_id, config)
    except GenerationEmptyError as e:
        click.echo(f"❌ {e.message}", err=True)
        click.echo("Likely causes:", err=True)
        for cause in e.causes:
            click.echo(f"   - {cause}", err=True)
        ctx.exit(1)
    except IamGrapherError as e:
        report_error(e)

    table = Table(title=f"Generated files ({result.generation_id})")
    table.add_column("File", style="cyan")
    table.add_column("Kind")
    for name in result.files:
        table.add_row(name, "documentation" if name.endswith(".md") else "terraform")
    if result.import_script_path:
        table.add_row(result.import_script_path, "import script")
    console.print(table)
    console.print(f"📁 Output: {result.output_path}")

    if make_zip:
        archive = grapher.generation.create_archive(result.generation_id)
        console.print(f"📦 Archive: {archive}")

    if result.import_script_path:
        console.print(
            f"💡 Run 'terraform init' then ./{result.import_script_path} in {result.output_path}"
        )

    if run_validate and not run_validation(grapher, result.generation_id):
        ctx.exit(1)
