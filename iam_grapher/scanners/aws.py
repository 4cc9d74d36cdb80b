"""AWS IAM scanner: users, groups, roles and customer managed policies."""

import asyncio
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from iam_grapher.exceptions import AuthenticationError, IamGrapherError
from iam_grapher.models import Document, ScanConfig
from iam_grapher.records import Record
from iam_grapher.scanners.aws_client import (
    DEFAULT_PAGE_SIZE,
    AwsIamClient,
    create_aws_client,
)
from iam_grapher.scanners.aws_policy import (
    decode_policy_document,
    parse_trust_statements,
)
from iam_grapher.scanners.base import AdmissionPool, ProviderScanner, json_safe

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

ENTITY_TYPES = {"users": "User", "groups": "Group", "roles": "Role"}
ENTITY_NAME_FIELDS = {"users": "user_name", "groups": "group_name", "roles": "role_name"}


def _snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _tags_to_dict(tags: Optional[List[Dict[str, str]]]) -> Dict[str, str]:
    return {t["Key"]: t.get("Value", "") for t in tags or [] if "Key" in t}


def normalize_record(raw: Dict[str, Any]) -> Record:
    """Convert an IAM API entity to a snake_case record, keeping every field."""
    record: Record = {}
    for key, value in raw.items():
        if key == "Tags":
            tags = _tags_to_dict(value)
            if tags:
                record["tags"] = tags
        elif key == "AssumeRolePolicyDocument":
            document = decode_policy_document(value)
            if document is not None:
                record["assume_role_policy_document"] = json.dumps(document)
                record["assume_role_statements"] = parse_trust_statements(document)
        else:
            record[_snake(key)] = json_safe(value)
    return record


def _attached(policies: List[Dict[str, str]]) -> List[Dict[str, str]]:
    return [
        {"policy_name": p.get("PolicyName", ""), "policy_arn": p.get("PolicyArn", "")}
        for p in policies
    ]


class AwsIamScanner(ProviderScanner):
    provider = "aws"
    name_fields = {
        "users": ("user_name",),
        "groups": ("group_name",),
        "roles": ("role_name",),
        "policies": ("policy_name",),
    }

    def __init__(
        self,
        config: ScanConfig,
        client: Optional[AwsIamClient] = None,
        client_factory: Callable[..., AwsIamClient] = create_aws_client,
        pool: Optional[AdmissionPool] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        super().__init__(config, pool=pool)
        self.client = client
        self._client_factory = client_factory
        self.page_size = page_size

    async def prepare(self) -> None:
        if self.client is not None:
            return
        try:
            self.client = await asyncio.to_thread(
                self._client_factory, self.config, self.page_size
            )
        except IamGrapherError:
            raise
        except Exception as e:
            raise AuthenticationError(
                f"Failed to create AWS IAM client: {e}",
                provider="aws",
                profile=self.config.profile,
                cause=e,
            ) from e

    @property
    def _client(self) -> AwsIamClient:
        if self.client is None:
            raise RuntimeError("prepare() must run before listing")
        return self.client

    async def list_category(self, category: str) -> List[Record]:
        fetchers = {
            "users": self._client.list_users,
            "groups": self._client.list_groups,
            "roles": self._client.list_roles,
            "policies": self._client.list_policies,
        }
        raw = await self.paginate(fetchers[category])
        return [normalize_record(item) for item in raw]

    async def enrich_category(self, category: str, records: List[Record]) -> List[Record]:
        enrichers = {
            "users": self._enrich_user,
            "groups": self._enrich_group,
            "roles": self._enrich_role,
            "policies": self._enrich_policy,
        }
        await asyncio.gather(*(enrichers[category](r) for r in records))
        return records

    async def _enrich_user(self, user: Record) -> None:
        name = user["user_name"]
        client = self._client
        tags, inline, attached, groups = await asyncio.gather(
            self._tags("users", client.list_user_tags, name, user),
            self.enrich("users", "inline_policies", client.list_user_policies, name),
            self.enrich(
                "users", "attached_policies", client.list_attached_user_policies, name
            ),
            self.enrich("users", "groups", client.list_groups_for_user, name),
        )
        if tags:
            user["tags"] = tags
        if inline is not None:
            user["inline_policies"] = list(inline)
        if attached is not None:
            user["attached_policies"] = _attached(attached)
        if groups is not None:
            user["groups"] = [g["GroupName"] for g in groups if "GroupName" in g]

    async def _enrich_group(self, group: Record) -> None:
        name = group["group_name"]
        client = self._client
        members, inline, attached = await asyncio.gather(
            self.enrich("groups", "members", client.get_group_members, name),
            self.enrich("groups", "inline_policies", client.list_group_policies, name),
            self.enrich(
                "groups", "attached_policies", client.list_attached_group_policies, name
            ),
        )
        if members is not None:
            group["members"] = [m["UserName"] for m in members if "UserName" in m]
        if inline is not None:
            group["inline_policies"] = list(inline)
        if attached is not None:
            group["attached_policies"] = _attached(attached)

    async def _enrich_role(self, role: Record) -> None:
        name = role["role_name"]
        client = self._client
        tags, inline, attached = await asyncio.gather(
            self._tags("roles", client.list_role_tags, name, role),
            self.enrich("roles", "inline_policies", client.list_role_policies, name),
            self.enrich(
                "roles", "attached_policies", client.list_attached_role_policies, name
            ),
        )
        if tags:
            role["tags"] = tags
        if inline is not None:
            role["inline_policies"] = list(inline)
        if attached is not None:
            role["attached_policies"] = _attached(attached)

    async def _enrich_policy(self, policy: Record) -> None:
        arn = policy.get("arn")
        version_id = policy.get("default_version_id")
        if not arn or not version_id:
            return
        raw = await self.enrich(
            "policies",
            "policy_document",
            self._client.get_policy_version,
            arn,
            version_id,
        )
        document = decode_policy_document(raw)
        if document is not None:
            policy["policy_document"] = document

    async def _tags(
        self, category: str, call: Any, name: str, record: Record
    ) -> Optional[Dict[str, str]]:
        if not self.config.include_tags:
            record.pop("tags", None)
            return None
        if record.get("tags"):
            return record["tags"]
        return _tags_to_dict(await self.enrich(category, "tags", call, name))

    async def finalize(self, document: Document) -> None:
        """Collect every policy attachment into a flat 'attachments' list."""
        attachments = []
        for category, entity_type in ENTITY_TYPES.items():
            name_field = ENTITY_NAME_FIELDS[category]
            for record in document.records(category):
                for policy in record.get("attached_policies", []):
                    attachments.append(
                        {
                            "entity_type": entity_type,
                            "entity_name": record[name_field],
                            "policy_type": "managed",
                            "policy_arn": policy["policy_arn"],
                            "policy_name": policy["policy_name"],
                        }
                    )
                for policy_name in record.get("inline_policies", []):
                    attachments.append(
                        {
                            "entity_type": entity_type,
                            "entity_name": record[name_field],
                            "policy_type": "inline",
                            "policy_name": policy_name,
                        }
                    )
        if any(c in document.categories for c in ENTITY_TYPES):
            document.categories["attachments"] = attachments
