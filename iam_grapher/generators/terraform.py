"""Terraform generator for IAM resources.

This module renders scanned IAM records into Terraform files through the
two-tier template store and writes a companion import script.
"""

import logging
import os
import shlex
from pathlib import Path
from typing import Callable, ClassVar, Dict, Iterator, List, Optional, Tuple

from iam_grapher.models import Document, FileSplitPolicy, GenerationConfig, Selection
from iam_grapher.records import Record, label_of

from . import register_generator
from .base import CodeGenerator
from .naming import LabelAllocator

logger = logging.getLogger(__name__)

ImportSpec = Tuple[str, Callable[[Record], Optional[str]]]


def _aws_name_import(name_field: str) -> Callable[[Record], Optional[str]]:
    def resolve(record: Record) -> Optional[str]:
        # Only resources with an ARN exist remotely and can be imported
        if not record.get("arn"):
            return None
        return record.get(name_field) or None

    return resolve


def _aws_arn_import(record: Record) -> Optional[str]:
    return record.get("arn") or None


def _azure_role_definition_import(record: Record) -> Optional[str]:
    # Built-in roles are not managed by azurerm_role_definition
    if record.get("role_type") != "CustomRole":
        return None
    definition_id = record.get("role_definition_id") or record.get("id")
    scope = record.get("scope")
    if not definition_id or not scope:
        return None
    return f"{definition_id}|{scope}"


def _azure_role_assignment_import(record: Record) -> Optional[str]:
    assignment_id = record.get("id")
    if isinstance(assignment_id, str) and assignment_id.startswith("/"):
        return assignment_id
    return None


class TerraformGenerator(CodeGenerator):
    """Generator for Terraform configurations of IAM resources."""

    # provider -> category -> (template name, context key)
    CATEGORY_TEMPLATES: ClassVar[Dict[str, Dict[str, Tuple[str, str]]]] = {
        "aws": {
            "users": ("aws/iam_user.tf.j2", "user"),
            "groups": ("aws/iam_group.tf.j2", "group"),
            "roles": ("aws/iam_role.tf.j2", "role"),
            "policies": ("aws/iam_policy.tf.j2", "policy"),
        },
        "azure": {
            "role_definitions": ("azure/role_definition.tf.j2", "role_definition"),
            "role_assignments": ("azure/role_assignment.tf.j2", "role_assignment"),
        },
    }

    # provider -> category -> (terraform resource type, import id resolver)
    IMPORT_SPECS: ClassVar[Dict[str, Dict[str, ImportSpec]]] = {
        "aws": {
            "users": ("aws_iam_user", _aws_name_import("user_name")),
            "groups": ("aws_iam_group", _aws_name_import("group_name")),
            "roles": ("aws_iam_role", _aws_name_import("role_name")),
            "policies": ("aws_iam_policy", _aws_arn_import),
        },
        "azure": {
            "role_definitions": ("azurerm_role_definition", _azure_role_definition_import),
            "role_assignments": ("azurerm_role_assignment", _azure_role_assignment_import),
        },
    }

    def supported_categories(self, provider: str) -> List[str]:
        return list(self.CATEGORY_TEMPLATES.get(provider, {}))

    def _selected(
        self,
        document: Document,
        config: GenerationConfig,
        selection: Selection,
        category: str,
    ) -> Iterator[Tuple[Record, str]]:
        """Yield (record, resource label) for every selected record of a category.

        Both passes label records the same way, so import addresses match the
        generated resources.
        """
        records = selection.filter_records(category, document.records(category))
        labels = LabelAllocator(config.naming_convention)
        for record in records:
            yield record, labels.allocate(label_of(category, record))

    def generate(
        self,
        document: Document,
        config: GenerationConfig,
        selection: Selection,
        out_dir: Path,
    ) -> List[str]:
        mapping = self.CATEGORY_TEMPLATES.get(document.provider, {})
        if not mapping:
            logger.warning(
                f"⚠️  No Terraform templates for provider '{document.provider}'"
            )
        split_policy = config.split_policy
        out_dir.mkdir(parents=True, exist_ok=True)
        files: List[str] = []

        for category, (template_name, context_key) in mapping.items():
            if category not in document.categories:
                continue
            rendered: List[Tuple[str, str]] = []
            for record, label in self._selected(document, config, selection, category):
                context = {
                    "resource_name": label,
                    "provider": document.provider,
                    context_key: record,
                    "resource": record,
                }
                rendered.append((label, self.template_store.render(template_name, context)))

            if not rendered:
                logger.debug(f"No selected {category} to generate")
                continue

            if split_policy == FileSplitPolicy.BY_RESOURCE_NAME:
                for label, content in rendered:
                    files.append(self._write(out_dir, f"{category}_{label}.tf", content))
            else:
                content = "\n".join(text.rstrip("\n") + "\n" for _, text in rendered)
                files.append(self._write(out_dir, f"{category}.tf", content))
            logger.info(f"📝 Generated {len(rendered)} {category} resources")

        return files

    def _write(self, out_dir: Path, file_name: str, content: str) -> str:
        (out_dir / file_name).write_text(content, encoding="utf-8")
        return file_name

    def import_commands(
        self, document: Document, config: GenerationConfig, selection: Selection
    ) -> List[Tuple[str, str]]:
        """Return (resource address, import id) for every importable record."""
        commands: List[Tuple[str, str]] = []
        specs = self.IMPORT_SPECS.get(document.provider, {})
        for category in self.CATEGORY_TEMPLATES.get(document.provider, {}):
            if category not in document.categories:
                continue
            if category not in specs:
                logger.debug(f"Import not supported for {document.provider}/{category}")
                continue
            resource_type, resolve = specs[category]
            for record, label in self._selected(document, config, selection, category):
                import_id = resolve(record)
                if import_id:
                    commands.append((f"{resource_type}.{label}", import_id))
        return commands

    def generate_import_script(
        self,
        document: Document,
        config: GenerationConfig,
        selection: Selection,
        out_dir: Path,
    ) -> Optional[str]:
        commands = self.import_commands(document, config, selection)
        if not commands:
            logger.info("No importable resources, skipping import script")
            return None

        out_dir.mkdir(parents=True, exist_ok=True)
        if config.script_format == "ps1":
            file_name = "import.ps1"
            content = render_powershell_script(commands)
        else:
            file_name = "import.sh"
            content = render_shell_script(commands)

        path = out_dir / file_name
        path.write_text(content, encoding="utf-8")
        if file_name.endswith(".sh"):
            os.chmod(path, 0o755)
        logger.info(f"📜 Wrote {len(commands)} import commands to {file_name}")
        return file_name

    def render_readme(
        self,
        document: Document,
        files: List[str],
        import_script: Optional[str],
    ) -> str:
        """Describe the generated files and how to bring them under management."""
        lines = [
            "# Generated Terraform Code",
            "",
            f"Provider: {document.provider}",
            "",
            "## Generated Files",
            "",
        ]
        lines.extend(f"- `{name}`" for name in files)
        if import_script:
            lines.extend(["- `{}`".format(import_script), ""])
            lines.extend(["## Import Script", ""])
            if import_script.endswith(".ps1"):
                lines.append(f"Run `./{import_script}` from PowerShell in this directory.")
            else:
                lines.append(f"Run `./{import_script}` in this directory.")
            lines.append(
                "It imports the existing resources into the Terraform state."
            )
        lines.extend(
            [
                "",
                "## Next Steps",
                "",
                "1. Review the generated files",
                "2. Run `terraform init`",
            ]
        )
        if import_script:
            lines.append(f"3. Run `./{import_script}` to import existing resources")
            lines.append("4. Run `terraform plan` and verify that no changes are planned")
        else:
            lines.append("3. Run `terraform plan` and verify that no changes are planned")
        return "\n".join(lines) + "\n"


def render_shell_script(commands: List[Tuple[str, str]]) -> str:
    lines = ["#!/bin/bash", "set -e", ""]
    lines.extend(
        f"terraform import {address} {shlex.quote(import_id)}"
        for address, import_id in commands
    )
    return "\n".join(lines) + "\n"


def render_powershell_script(commands: List[Tuple[str, str]]) -> str:
    lines = ['$ErrorActionPreference = "Stop"', ""]
    for address, import_id in commands:
        quoted = "'" + import_id.replace("'", "''") + "'"
        lines.append(f"terraform import {address} {quoted}")
    return "\n".join(lines) + "\n"


register_generator("terraform", TerraformGenerator)
