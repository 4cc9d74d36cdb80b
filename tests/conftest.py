import asyncio
import json
import subprocess
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import patch

import pytest

from iam_grapher.config_manager import DEFAULT_TEMPLATES_DIR
from iam_grapher.generators.templates import FileSystemTemplateStore
from iam_grapher.models import Document, ListPage

ACCOUNT = "123456789012"
SUBSCRIPTION = "/subscriptions/sub-1"
DEFINITION_PROVIDER = "/providers/Microsoft.Authorization/roleDefinitions"
READER_ID = f"{SUBSCRIPTION}{DEFINITION_PROVIDER}/acdd72a7-3385-48ef-bd42-f606fba81ae7"
CUSTOM_ID = f"{SUBSCRIPTION}{DEFINITION_PROVIDER}/custom-auditor"


def aws_arn(kind: str, name: str) -> str:
    return f"arn:aws:iam::{ACCOUNT}:{kind}/{name}"


# ============================================================================
# Scan documents
# ============================================================================


@pytest.fixture
def aws_document() -> Document:
    """A small AWS scan: two users, one group, one role, one policy."""
    policy_arn = aws_arn("policy", "s3-read")
    return Document(
        provider="aws",
        categories={
            "users": [
                {
                    "user_name": "alice",
                    "arn": aws_arn("user", "alice"),
                    "path": "/",
                    "tags": {"env": "production", "team": "platform"},
                    "groups": ["admins"],
                    "attached_policies": [
                        {"policy_name": "s3-read", "policy_arn": policy_arn}
                    ],
                    "inline_policies": [],
                },
                {
                    "user_name": "bob-ci",
                    "arn": aws_arn("user", "bob-ci"),
                    "path": "/",
                    "tags": {"env": "staging"},
                    "groups": [],
                    "attached_policies": [],
                    "inline_policies": ["deploy"],
                },
            ],
            "groups": [
                {
                    "group_name": "admins",
                    "arn": aws_arn("group", "admins"),
                    "path": "/",
                    "members": ["alice"],
                    "attached_policies": [],
                }
            ],
            "roles": [
                {
                    "role_name": "app-runner",
                    "arn": aws_arn("role", "app-runner"),
                    "path": "/service/",
                    "max_session_duration": 3600,
                    "assume_role_policy_document": (
                        '{"Version": "2012-10-17", "Statement": [{"Effect": "Allow", '
                        '"Principal": {"Service": "ec2.amazonaws.com"}, '
                        '"Action": "sts:AssumeRole"}]}'
                    ),
                    "attached_policies": [
                        {"policy_name": "s3-read", "policy_arn": policy_arn}
                    ],
                }
            ],
            "policies": [
                {
                    "policy_name": "s3-read",
                    "arn": policy_arn,
                    "path": "/",
                    "default_version_id": "v1",
                    "policy_document": {
                        "Version": "2012-10-17",
                        "Statement": [
                            {"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}
                        ],
                    },
                }
            ],
            "attachments": [
                {
                    "entity_type": "User",
                    "entity_name": "alice",
                    "policy_type": "managed",
                    "policy_arn": policy_arn,
                    "policy_name": "s3-read",
                },
                {
                    "entity_type": "User",
                    "entity_name": "bob-ci",
                    "policy_type": "inline",
                    "policy_name": "deploy",
                },
                {
                    "entity_type": "Role",
                    "entity_name": "app-runner",
                    "policy_type": "managed",
                    "policy_arn": policy_arn,
                    "policy_name": "s3-read",
                },
            ],
        },
    )


@pytest.fixture
def azure_document() -> Document:
    """An Azure scan with a built-in and a custom role and two assignments."""
    return Document(
        provider="azure",
        categories={
            "role_definitions": [
                {
                    "role_definition_id": READER_ID,
                    "role_name": "Reader",
                    "role_type": "BuiltInRole",
                    "scope": SUBSCRIPTION,
                    "permissions": [
                        {
                            "actions": ["*/read"],
                            "not_actions": [],
                            "data_actions": [],
                            "not_data_actions": [],
                        }
                    ],
                    "assignable_scopes": ["/"],
                },
                {
                    "role_definition_id": CUSTOM_ID,
                    "role_name": "Custom Auditor",
                    "description": "Reads activity logs",
                    "role_type": "CustomRole",
                    "scope": SUBSCRIPTION,
                    "permissions": [
                        {
                            "actions": ["Microsoft.Insights/eventtypes/*"],
                            "not_actions": [],
                            "data_actions": [],
                            "not_data_actions": [],
                        }
                    ],
                    "assignable_scopes": [SUBSCRIPTION],
                },
            ],
            "role_assignments": [
                {
                    "id": f"{SUBSCRIPTION}/providers/Microsoft.Authorization/roleAssignments/ra-1",
                    "assignment_id": "ra-1",
                    "role_definition_id": READER_ID,
                    "role_definition_name": "Reader",
                    "principal_id": "p-1",
                    "principal_type": "User",
                    "principal_name": "alice@example.com",
                    "scope": SUBSCRIPTION,
                },
                {
                    "id": f"{SUBSCRIPTION}/providers/Microsoft.Authorization/roleAssignments/ra-2",
                    "assignment_id": "ra-2",
                    "role_definition_id": CUSTOM_ID,
                    "role_definition_name": "Custom Auditor",
                    "principal_id": "p-1",
                    "principal_type": "User",
                    "principal_name": "alice@example.com",
                    "scope": SUBSCRIPTION,
                },
            ],
        },
    )


# ============================================================================
# Template store
# ============================================================================


@pytest.fixture
def user_templates_dir(tmp_path):
    return tmp_path / "templates_user"


@pytest.fixture
def template_store(user_templates_dir) -> FileSystemTemplateStore:
    """Template store with an empty user tier over the bundled defaults."""
    return FileSystemTemplateStore(user_templates_dir, DEFAULT_TEMPLATES_DIR)


# ============================================================================
# Fake provider clients
# ============================================================================


class FakeAwsIamClient:
    """In-memory AwsIamClient that records calls and in-flight concurrency."""

    def __init__(
        self,
        users: Optional[List[Dict[str, Any]]] = None,
        groups: Optional[List[Dict[str, Any]]] = None,
        roles: Optional[List[Dict[str, Any]]] = None,
        policies: Optional[List[Dict[str, Any]]] = None,
        page_size: int = 2,
        delay: float = 0.0,
    ) -> None:
        self.listings = {
            "list_users": users or [],
            "list_groups": groups or [],
            "list_roles": roles or [],
            "list_policies": policies or [],
        }
        self.page_size = page_size
        self.delay = delay
        self.lookups: Dict[str, Dict[Any, Any]] = {}
        self.failures: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, Any]] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    def set_lookup(self, method: str, key: Any, value: Any) -> None:
        self.lookups.setdefault(method, {})[key] = value

    async def _list(self, method: str, marker: Optional[str]) -> ListPage:
        self.calls.append((method, marker))
        if method in self.failures:
            raise self.failures[method]
        items = self.listings[method]
        start = int(marker or 0)
        end = start + self.page_size
        return ListPage(list(items[start:end]), str(end) if end < len(items) else None)

    async def _lookup(self, method: str, key: Any, default: Any) -> Any:
        self.calls.append((method, key))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if method in self.failures:
                raise self.failures[method]
            return self.lookups.get(method, {}).get(key, default)
        finally:
            self.in_flight -= 1

    async def list_users(self, marker):
        return await self._list("list_users", marker)

    async def list_groups(self, marker):
        return await self._list("list_groups", marker)

    async def list_roles(self, marker):
        return await self._list("list_roles", marker)

    async def list_policies(self, marker):
        return await self._list("list_policies", marker)

    async def list_user_tags(self, user_name):
        return await self._lookup("list_user_tags", user_name, [])

    async def list_role_tags(self, role_name):
        return await self._lookup("list_role_tags", role_name, [])

    async def list_user_policies(self, user_name):
        return await self._lookup("list_user_policies", user_name, [])

    async def list_attached_user_policies(self, user_name):
        return await self._lookup("list_attached_user_policies", user_name, [])

    async def list_groups_for_user(self, user_name):
        return await self._lookup("list_groups_for_user", user_name, [])

    async def list_group_policies(self, group_name):
        return await self._lookup("list_group_policies", group_name, [])

    async def list_attached_group_policies(self, group_name):
        return await self._lookup("list_attached_group_policies", group_name, [])

    async def get_group_members(self, group_name):
        return await self._lookup("get_group_members", group_name, [])

    async def list_role_policies(self, role_name):
        return await self._lookup("list_role_policies", role_name, [])

    async def list_attached_role_policies(self, role_name):
        return await self._lookup("list_attached_role_policies", role_name, [])

    async def get_policy_version(self, policy_arn, version_id):
        return await self._lookup("get_policy_version", (policy_arn, version_id), None)


class FakeAzureRbacClient:
    """In-memory AzureRbacClient counting token acquisitions."""

    def __init__(
        self,
        definitions: Optional[List[Dict[str, Any]]] = None,
        assignments: Optional[List[Dict[str, Any]]] = None,
        role_names: Optional[Dict[str, str]] = None,
        principal_names: Optional[Dict[str, str]] = None,
        token_error: Optional[Exception] = None,
        list_error: Optional[Exception] = None,
    ) -> None:
        self.definitions = definitions or []
        self.assignments = assignments or []
        self.role_names = role_names or {}
        self.principal_names = principal_names or {}
        self.token_error = token_error
        self.list_error = list_error
        self.token_requests: List[str] = []
        self.listed_scopes: List[str] = []
        self.role_lookups: List[str] = []
        self.closed = False

    async def list_role_definitions(self, scope, continuation_token):
        self.listed_scopes.append(scope)
        if self.list_error:
            raise self.list_error
        return ListPage(list(self.definitions))

    async def list_role_assignments(self, scope, continuation_token):
        self.listed_scopes.append(scope)
        if self.list_error:
            raise self.list_error
        return ListPage(list(self.assignments))

    async def acquire_token(self, scope):
        self.token_requests.append(scope)
        await asyncio.sleep(0)
        if self.token_error:
            raise self.token_error
        return f"token-{len(self.token_requests)}"

    async def get_role_display_name(self, role_definition_id, token):
        self.role_lookups.append(role_definition_id)
        return self.role_names.get(role_definition_id)

    async def get_principal_display_name(self, principal_id, principal_type, token):
        return self.principal_names.get(principal_id)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_aws_client():
    """Factory for FakeAwsIamClient instances."""
    return FakeAwsIamClient


@pytest.fixture
def fake_azure_client():
    """Factory for FakeAzureRbacClient instances."""
    return FakeAzureRbacClient


TERRAFORM_MODULE = "iam_grapher.validators.terraform_validator"


def completed(stdout="", returncode=0, stderr=""):
    return subprocess.CompletedProcess(["terraform"], returncode, stdout, stderr)


class FakeTerraform:
    """Answers terraform subcommands from a table and records every call."""

    def __init__(self):
        self.responses = {
            "version": completed(json.dumps({"terraform_version": "1.7.5"})),
            "init": completed("Terraform has been successfully initialized!"),
            "validate": completed(json.dumps({"valid": True, "diagnostics": []})),
            "fmt": completed(),
        }
        self.calls = []

    def __call__(self, args, **kwargs):
        self.calls.append((args, kwargs))
        response = self.responses[args[1]]
        if isinstance(response, Exception):
            raise response
        return response

    def subcommands(self):
        return [args[1] for args, _ in self.calls]


@pytest.fixture
def terraform():
    """Terraform on PATH, backed by a FakeTerraform."""
    fake = FakeTerraform()
    with patch(f"{TERRAFORM_MODULE}.shutil.which", return_value="/usr/bin/terraform"), patch(
        f"{TERRAFORM_MODULE}.subprocess.run", side_effect=fake
    ):
        yield fake


@pytest.fixture
def no_terraform():
    """Terraform missing from PATH; yields the subprocess.run mock."""
    with patch(f"{TERRAFORM_MODULE}.shutil.which", return_value=None), patch(
        f"{TERRAFORM_MODULE}.subprocess.run"
    ) as run:
        yield run
