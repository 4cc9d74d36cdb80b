"""
Tests for TerraformGenerator: file layout, selection and import scripts.
"""

import os
import stat

import pytest

from iam_grapher.generators import get_generator, get_generator_registry
from iam_grapher.generators.terraform import (
    TerraformGenerator,
    render_powershell_script,
    render_shell_script,
)
from iam_grapher.models import Document, GenerationConfig, Selection

from conftest import CUSTOM_ID, aws_arn


@pytest.fixture
def generator(template_store):
    return TerraformGenerator(template_store=template_store)


def config_for(tmp_path, **kwargs):
    return GenerationConfig(output_path=str(tmp_path), **kwargs)


class TestRegistry:
    def test_terraform_is_registered(self):
        assert get_generator("terraform") is TerraformGenerator
        assert "terraform" in get_generator_registry()

    def test_unknown_format(self):
        with pytest.raises(KeyError, match="No generator registered for format 'pulumi'"):
            get_generator("pulumi")

    def test_supported_categories(self, generator):
        assert generator.supported_categories("aws") == ["users", "groups", "roles", "policies"]
        assert generator.supported_categories("azure") == ["role_definitions", "role_assignments"]
        assert generator.supported_categories("gcp") == []


class TestGenerate:
    def test_single_file_per_category(self, generator, aws_document, tmp_path):
        files = generator.generate(aws_document, config_for(tmp_path), Selection(), tmp_path)

        assert files == ["users.tf", "groups.tf", "roles.tf", "policies.tf"]
        users = (tmp_path / "users.tf").read_text()
        assert 'resource "aws_iam_user" "alice"' in users
        assert 'resource "aws_iam_user" "bob_ci"' in users
        # Literal values keep their original spelling
        assert 'name = "bob-ci"' in users

    def test_attachments_category_is_not_rendered(self, generator, aws_document, tmp_path):
        files = generator.generate(aws_document, config_for(tmp_path), Selection(), tmp_path)
        assert not any("attachments" in name for name in files)

    def test_by_resource_name(self, generator, aws_document, tmp_path):
        config = config_for(tmp_path, file_split_rule="by_resource_name")
        files = generator.generate(aws_document, config, Selection(), tmp_path)

        assert files == [
            "users_alice.tf",
            "users_bob_ci.tf",
            "groups_admins.tf",
            "roles_app_runner.tf",
            "policies_s3_read.tf",
        ]

    def test_by_resource_type_renders_like_single(self, generator, aws_document, tmp_path):
        config = config_for(tmp_path, file_split_rule="by_resource_type")
        files = generator.generate(aws_document, config, Selection(), tmp_path)
        assert files == ["users.tf", "groups.tf", "roles.tf", "policies.tf"]

    def test_kebab_case_labels(self, generator, aws_document, tmp_path):
        config = config_for(tmp_path, naming_convention="kebab-case")
        generator.generate(aws_document, config, Selection(), tmp_path)
        assert 'resource "aws_iam_role" "app-runner"' in (tmp_path / "roles.tf").read_text()

    def test_selection_limits_records(self, generator, aws_document, tmp_path):
        selection = Selection({"users": ["bob-ci"]})
        generator.generate(aws_document, config_for(tmp_path), selection, tmp_path)
        users = (tmp_path / "users.tf").read_text()
        assert "bob_ci" in users
        assert "alice" not in users

    def test_selection_accepts_marker_objects(self, generator, aws_document, tmp_path):
        selection = Selection({"policies": [{"arn": aws_arn("policy", "s3-read")}]})
        files = generator.generate(aws_document, config_for(tmp_path), selection, tmp_path)
        assert "policies.tf" in files

    def test_empty_category_list_excludes_category(self, generator, aws_document, tmp_path):
        selection = Selection({"users": [], "groups": []})
        files = generator.generate(aws_document, config_for(tmp_path), selection, tmp_path)
        assert files == ["roles.tf", "policies.tf"]

    def test_no_matching_records(self, generator, aws_document, tmp_path):
        selection = Selection({c: [] for c in ("users", "groups", "roles", "policies")})
        assert generator.generate(aws_document, config_for(tmp_path), selection, tmp_path) == []

    def test_duplicate_labels_are_made_unique(self, generator, tmp_path):
        document = Document(
            provider="aws",
            categories={"users": [{"user_name": "app.user"}, {"user_name": "app-user"}]},
        )
        generator.generate(document, config_for(tmp_path), Selection(), tmp_path)
        users = (tmp_path / "users.tf").read_text()
        assert '"aws_iam_user" "app_user"' in users
        assert '"aws_iam_user" "app_user_2"' in users

    def test_azure(self, generator, azure_document, tmp_path):
        files = generator.generate(azure_document, config_for(tmp_path), Selection(), tmp_path)
        assert files == ["role_definitions.tf", "role_assignments.tf"]
        assignments = (tmp_path / "role_assignments.tf").read_text()
        assert 'resource "azurerm_role_assignment" "ra_1"' in assignments
        assert 'principal_type     = "User"' in assignments

    def test_unknown_provider_generates_nothing(self, generator, tmp_path):
        document = Document(provider="gcp", categories={"users": [{"name": "x"}]})
        assert generator.generate(document, config_for(tmp_path), Selection(), tmp_path) == []


class TestImportScript:
    def test_shell_script(self, generator, aws_document, tmp_path):
        name = generator.generate_import_script(
            aws_document, config_for(tmp_path), Selection(), tmp_path
        )
        assert name == "import.sh"
        script = (tmp_path / "import.sh").read_text()
        lines = script.splitlines()
        assert lines[:2] == ["#!/bin/bash", "set -e"]
        assert "terraform import aws_iam_user.alice alice" in lines
        assert "terraform import aws_iam_group.admins admins" in lines
        assert f"terraform import aws_iam_policy.s3_read {aws_arn('policy', 's3-read')}" in lines
        mode = os.stat(tmp_path / "import.sh").st_mode
        assert mode & stat.S_IXUSR

    def test_powershell_script(self, generator, aws_document, tmp_path):
        config = config_for(tmp_path, import_script_format="ps1")
        name = generator.generate_import_script(aws_document, config, Selection(), tmp_path)
        assert name == "import.ps1"
        script = (tmp_path / "import.ps1").read_text()
        assert script.startswith('$ErrorActionPreference = "Stop"')
        assert "terraform import aws_iam_role.app_runner 'app-runner'" in script

    def test_records_without_arn_are_skipped(self, generator, tmp_path):
        document = Document(provider="aws", categories={"users": [{"user_name": "ghost"}]})
        commands = generator.import_commands(document, config_for(tmp_path), Selection())
        assert commands == []

    def test_no_commands_means_no_script(self, generator, tmp_path):
        document = Document(provider="aws", categories={"users": [{"user_name": "ghost"}]})
        name = generator.generate_import_script(
            document, config_for(tmp_path), Selection(), tmp_path
        )
        assert name is None
        assert not (tmp_path / "import.sh").exists()

    def test_import_addresses_follow_selection_and_labels(self, generator, aws_document, tmp_path):
        selection = Selection({"users": ["bob-ci"], "groups": [], "roles": [], "policies": []})
        commands = generator.import_commands(aws_document, config_for(tmp_path), selection)
        assert commands == [("aws_iam_user.bob_ci", "bob-ci")]

    def test_azure_imports(self, generator, azure_document, tmp_path):
        commands = generator.import_commands(azure_document, config_for(tmp_path), Selection())
        addresses = [address for address, _ in commands]
        # Built-in role definitions are not imported
        assert addresses == [
            "azurerm_role_definition.custom_auditor",
            "azurerm_role_assignment.ra_1",
            "azurerm_role_assignment.ra_2",
        ]
        assert commands[0][1] == f"{CUSTOM_ID}|/subscriptions/sub-1"

    def test_shell_quoting(self):
        script = render_shell_script([("azurerm_role_definition.x", "/a|/b")])
        assert "terraform import azurerm_role_definition.x '/a|/b'" in script

    def test_powershell_quoting(self):
        script = render_powershell_script([("aws_iam_user.x", "o'brien")])
        assert "terraform import aws_iam_user.x 'o''brien'" in script


class TestReadme:
    def test_readme_mentions_files_and_script(self, generator, aws_document):
        readme = generator.render_readme(aws_document, ["users.tf"], "import.sh")
        assert readme.startswith("# Generated Terraform Code")
        assert "- `users.tf`" in readme
        assert "./import.sh" in readme
        assert "terraform plan" in readme
