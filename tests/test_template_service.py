"""
Tests for TemplateService: overrides and previews against sample records.
"""

import pytest

from iam_grapher.exceptions import (
    ConfigurationError,
    TemplateNotFoundError,
    TemplateSyntaxError,
)
from iam_grapher.services import TemplateService
from iam_grapher.services.template_service import sample_context


@pytest.fixture
def service(template_store):
    return TemplateService(template_store)


class TestSampleContext:
    @pytest.mark.parametrize(
        "name, key",
        [
            ("aws/iam_user.tf.j2", "user"),
            ("aws/iam_group.tf.j2", "group"),
            ("aws/iam_role.tf.j2", "role"),
            ("aws/iam_policy.tf.j2", "policy"),
            ("azure/role_definition.tf.j2", "role_definition"),
            ("azure/role_assignment.tf.j2", "role_assignment"),
        ],
    )
    def test_known_templates(self, name, key):
        context = sample_context(name)
        assert context["resource_name"] == f"example_{key}"
        assert context[key] is context["resource"]

    def test_generic_fallback(self):
        context = sample_context("aws/custom.tf.j2")
        assert context == {
            "resource_name": "example_resource",
            "resource": {"name": "example", "id": "123"},
        }


class TestTemplateService:
    def test_get_template(self, service):
        template = service.get_template("aws/iam_group.tf.j2")
        assert template["source"] == "default"
        assert "aws_iam_group" in template["content"]

    def test_preview_bundled_templates(self, service):
        for entry in service.list_templates():
            output = service.preview_template(entry["name"])
            assert "resource " in output

    def test_preview_user_uses_sample_record(self, service):
        output = service.preview_template("aws/iam_user.tf.j2")
        assert 'resource "aws_iam_user" "example_user"' in output
        assert '"Team" = "DevOps"' in output

    def test_preview_unsaved_content(self, service):
        output = service.preview_template(
            "aws/iam_role.tf.j2", content="{{ role.role_name }}|{{ resource_name }}"
        )
        assert output == "example-role|example_role"

    def test_preview_custom_context(self, service):
        output = service.preview_template(
            "aws/anything.tf.j2", content="{{ resource.name }}", context={"resource": {"name": "x"}}
        )
        assert output == "x"

    def test_preview_does_not_save(self, service):
        service.preview_template("aws/iam_user.tf.j2", content="changed")
        assert service.get_template("aws/iam_user.tf.j2")["source"] == "default"

    def test_preview_syntax_error(self, service):
        with pytest.raises(TemplateSyntaxError):
            service.preview_template("aws/iam_user.tf.j2", content="{% for %}")

    def test_preview_rejects_unsafe_name(self, service):
        with pytest.raises(ConfigurationError):
            service.preview_template("../outside.j2", content="x")

    def test_save_and_delete(self, service, user_templates_dir):
        path = service.save_template("azure/role_assignment.tf.j2", "# mine\n")
        assert path == str(user_templates_dir / "azure" / "role_assignment.tf.j2")
        assert service.get_template("azure/role_assignment.tf.j2")["source"] == "user"

        service.delete_template("azure/role_assignment.tf.j2")
        assert service.get_template("azure/role_assignment.tf.j2")["source"] == "default"

    def test_delete_missing_override(self, service):
        with pytest.raises(TemplateNotFoundError):
            service.delete_template("aws/iam_user.tf.j2")
