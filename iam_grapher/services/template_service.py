"""
Template Service

Manages the user override tier of the template store and previews templates
against built-in sample records.
"""

from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog

from iam_grapher.generators.templates import TemplateStore, validate_template_name

logger = structlog.get_logger(__name__)

SUBSCRIPTION_SCOPE = "/subscriptions/12345678-1234-1234-1234-123456789012"

# (template name fragment, context key, sample record)
SAMPLE_RECORDS: List[Tuple[str, str, Dict[str, Any]]] = [
    (
        "iam_user",
        "user",
        {
            "user_name": "example-user",
            "path": "/",
            "arn": "arn:aws:iam::123456789012:user/example-user",
            "tags": {"Environment": "Production", "Team": "DevOps"},
            "attached_policies": [
                {
                    "policy_name": "ReadOnlyAccess",
                    "policy_arn": "arn:aws:iam::aws:policy/ReadOnlyAccess",
                }
            ],
        },
    ),
    (
        "iam_group",
        "group",
        {
            "group_name": "example-group",
            "path": "/",
            "members": ["example-user"],
        },
    ),
    (
        "iam_role",
        "role",
        {
            "role_name": "example-role",
            "path": "/",
            "description": "Example role",
            "assume_role_policy_document": (
                '{"Version":"2012-10-17","Statement":[{"Effect":"Allow",'
                '"Principal":{"Service":"ec2.amazonaws.com"},"Action":"sts:AssumeRole"}]}'
            ),
        },
    ),
    (
        "iam_policy",
        "policy",
        {
            "policy_name": "example-policy",
            "path": "/",
            "policy_document": {
                "Version": "2012-10-17",
                "Statement": [
                    {"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}
                ],
            },
        },
    ),
    (
        "role_definition",
        "role_definition",
        {
            "role_definition_id": f"{SUBSCRIPTION_SCOPE}/providers/Microsoft.Authorization/roleDefinitions/example",
            "role_name": "Example Role",
            "description": "Example role definition",
            "role_type": "CustomRole",
            "scope": SUBSCRIPTION_SCOPE,
            "permissions": [
                {
                    "actions": ["Microsoft.Storage/storageAccounts/read"],
                    "not_actions": [],
                    "data_actions": [],
                    "not_data_actions": [],
                }
            ],
            "assignable_scopes": [SUBSCRIPTION_SCOPE],
        },
    ),
    (
        "role_assignment",
        "role_assignment",
        {
            "assignment_id": "12345678-1234-1234-1234-123456789012",
            "role_definition_id": f"{SUBSCRIPTION_SCOPE}/providers/Microsoft.Authorization/roleDefinitions/b24988ac-6180-42a0-ab88-20f7382dd24c",
            "role_definition_name": "Contributor",
            "principal_id": "87654321-4321-4321-4321-210987654321",
            "principal_name": "user@example.com",
            "principal_type": "User",
            "scope": SUBSCRIPTION_SCOPE,
        },
    ),
]


def sample_context(template_name: str) -> Dict[str, Any]:
    """Build a render context with a representative record for a template."""
    for fragment, key, record in SAMPLE_RECORDS:
        if fragment in template_name:
            return {
                "resource_name": f"example_{key}",
                key: record,
                "resource": record,
            }
    resource = {"name": "example", "id": "123"}
    return {"resource_name": "example_resource", "resource": resource}


class TemplateService:
    def __init__(self, store: TemplateStore) -> None:
        self.store = store

    def list_templates(self) -> List[Dict[str, Any]]:
        return self.store.list_templates()

    def get_template(self, name: str) -> Dict[str, Any]:
        content, source = self.store.get_source(name)
        return {"name": validate_template_name(name), "source": source, "content": content}

    def save_template(self, name: str, content: str) -> str:
        """Store content as a user override and return its path."""
        path = self.store.save(name, content)
        logger.info("template_saved", template=name, path=path)
        return path

    def delete_template(self, name: str) -> None:
        """Remove a user override; bundled defaults cannot be deleted."""
        self.store.delete(name)
        logger.info("template_deleted", template=name)

    def preview_template(
        self,
        name: str,
        content: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """
        Render a template against a sample context.

        Args:
            name: Template name; selects the built-in sample context
            content: Unsaved template text; the stored template when None
            context: Render context overriding the sample
        """
        name = validate_template_name(name)
        if content is None:
            content, _ = self.store.get_source(name)
        return self.store.render_string(
            content, context if context is not None else sample_context(name), name=name
        )
