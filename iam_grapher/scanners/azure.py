"""Azure RBAC scanner: role definitions and role assignments for one scope."""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from iam_grapher.exceptions import AuthenticationError, IamGrapherError
from iam_grapher.models import ScanConfig
from iam_grapher.records import Record
from iam_grapher.scanners.azure_client import (
    GRAPH_SCOPE,
    MANAGEMENT_SCOPE,
    AzureRbacClient,
    create_azure_client,
    resolve_scope,
)
from iam_grapher.scanners.base import (
    AdmissionPool,
    CachedTokenProvider,
    ProviderScanner,
    json_safe,
)

logger = logging.getLogger(__name__)

ROLE_DEFINITION_PROVIDER = "/providers/Microsoft.Authorization/roleDefinitions"


def _subscription_level(scope: str) -> bool:
    parts = [p for p in scope.split("/") if p]
    return len(parts) == 2 and parts[0].lower() == "subscriptions"


def preferred_scope(definition: Record) -> Optional[str]:
    """First subscription-level assignable scope, else the first one, else from the id."""
    scopes = [s for s in definition.get("assignableScopes") or [] if isinstance(s, str)]
    for scope in scopes:
        if _subscription_level(scope):
            return scope
    if scopes:
        return scopes[0]
    definition_id = definition.get("id") or ""
    if ROLE_DEFINITION_PROVIDER in definition_id:
        return definition_id.split(ROLE_DEFINITION_PROVIDER)[0] or "/"
    return None


def _permissions(raw: Any) -> List[Dict[str, List[str]]]:
    permissions = []
    for permission in raw or []:
        if not isinstance(permission, dict):
            continue
        permissions.append(
            {
                "actions": list(permission.get("actions") or []),
                "not_actions": list(permission.get("notActions") or []),
                "data_actions": list(permission.get("dataActions") or []),
                "not_data_actions": list(permission.get("notDataActions") or []),
            }
        )
    return permissions


def transform_role_definition(raw: Record, display_name: Optional[str] = None) -> Record:
    record: Record = {
        "role_definition_id": raw.get("id"),
        "role_name": display_name or raw.get("roleName") or raw.get("name"),
        "description": raw.get("description"),
        "role_type": raw.get("roleType") or raw.get("type"),
        "scope": preferred_scope(raw),
        "permissions": _permissions(raw.get("permissions")),
        "assignable_scopes": list(raw.get("assignableScopes") or []),
    }
    for key, value in raw.items():
        record.setdefault(key, json_safe(value))
    return record


def transform_role_assignment(
    raw: Record,
    role_name: Optional[str] = None,
    principal_name: Optional[str] = None,
) -> Record:
    role_definition_id = raw.get("roleDefinitionId") or ""
    principal_id = raw.get("principalId")
    record: Record = {
        "assignment_id": raw.get("name") or raw.get("id"),
        "role_definition_id": role_definition_id,
        "role_definition_name": role_name
        or raw.get("roleDefinitionName")
        or role_definition_id.rsplit("/", 1)[-1],
        "principal_id": principal_id,
        "principal_type": raw.get("principalType"),
        "principal_name": principal_name or raw.get("principalName") or principal_id,
        "scope": raw.get("scope"),
    }
    for key, value in raw.items():
        record.setdefault(key, json_safe(value))
    return record


class AzureRbacScanner(ProviderScanner):
    provider = "azure"
    name_fields = {
        "role_definitions": ("roleName", "name"),
        "role_assignments": ("roleDefinitionName",),
    }

    def __init__(
        self,
        config: ScanConfig,
        client: Optional[AzureRbacClient] = None,
        client_factory: Callable[[ScanConfig], AzureRbacClient] = create_azure_client,
        pool: Optional[AdmissionPool] = None,
    ) -> None:
        super().__init__(config, pool=pool)
        self.client = client
        self._client_factory = client_factory
        self.scope = ""
        self.tokens: Optional[CachedTokenProvider] = None
        self._role_cache: Dict[str, Optional[str]] = {}

    async def prepare(self) -> None:
        self.scope = resolve_scope(self.config)
        if self.client is None:
            try:
                self.client = self._client_factory(self.config)
            except IamGrapherError:
                raise
            except Exception as e:
                raise AuthenticationError(
                    f"Failed to create Azure client: {e}",
                    provider="azure",
                    context=self.config.identity_context(),
                    cause=e,
                ) from e
        self.tokens = CachedTokenProvider(self._client.acquire_token)
        logger.info(f"🔍 Azure RBAC scope: {self.scope}")

    async def close(self) -> None:
        if self.client is not None:
            await self.client.close()

    @property
    def _client(self) -> AzureRbacClient:
        if self.client is None:
            raise RuntimeError("prepare() must run before listing")
        return self.client

    async def list_category(self, category: str) -> List[Record]:
        if category == "role_definitions":
            fetch = self._client.list_role_definitions
        else:
            fetch = self._client.list_role_assignments
        return await self.paginate(lambda token: fetch(self.scope, token))

    async def enrich_category(self, category: str, records: List[Record]) -> List[Record]:
        if category == "role_definitions":
            return await self._enrich_role_definitions(records)
        return await self._enrich_role_assignments(records)

    async def _token(self, scope: str) -> Optional[str]:
        if self.tokens is None:
            return None
        return await self.tokens.get(scope)

    async def _role_names(self, role_ids: List[str]) -> Dict[str, Optional[str]]:
        """Display names by role definition id; each id is looked up once per scan."""
        pending = [r for r in role_ids if r.lower() not in self._role_cache]
        if pending:
            token = await self._token(MANAGEMENT_SCOPE)
            if token is not None:
                names = await asyncio.gather(
                    *(
                        self.enrich(
                            "role_definitions",
                            "role_name",
                            self._client.get_role_display_name,
                            role_id,
                            token,
                        )
                        for role_id in pending
                    )
                )
                for role_id, name in zip(pending, names):
                    self._role_cache[role_id.lower()] = name
        return {r: self._role_cache.get(r.lower()) for r in role_ids}

    async def record_names(
        self, category: str, records: List[Record]
    ) -> List[Optional[str]]:
        if category != "role_assignments":
            return await super().record_names(category, records)
        # Assignments are filtered on their role name, resolved before filtering
        unnamed = list(
            dict.fromkeys(
                r["roleDefinitionId"]
                for r in records
                if not r.get("roleDefinitionName") and r.get("roleDefinitionId")
            )
        )
        resolved = await self._role_names(unnamed)
        names: List[Optional[str]] = []
        for record in records:
            name = record.get("roleDefinitionName") or resolved.get(
                record.get("roleDefinitionId") or ""
            )
            names.append(name if isinstance(name, str) else None)
        return names

    async def _enrich_role_definitions(self, raw_records: List[Record]) -> List[Record]:
        role_ids = list(dict.fromkeys(r["id"] for r in raw_records if r.get("id")))
        names = await self._role_names(role_ids)
        records = [
            transform_role_definition(raw, names.get(raw.get("id") or ""))
            for raw in raw_records
        ]
        for record in records:
            if record["role_definition_id"] and record["role_name"]:
                self._role_cache[record["role_definition_id"].lower()] = record["role_name"]
        return records

    async def _enrich_role_assignments(self, raw_records: List[Record]) -> List[Record]:
        role_ids = list(
            dict.fromkeys(
                r["roleDefinitionId"] for r in raw_records if r.get("roleDefinitionId")
            )
        )
        principals: List[Tuple[str, str]] = list(
            dict.fromkeys(
                (r["principalId"], r.get("principalType") or "")
                for r in raw_records
                if r.get("principalId")
            )
        )
        role_names, principal_names = await asyncio.gather(
            self._role_names(role_ids), self._principal_names(principals)
        )
        return [
            transform_role_assignment(
                raw,
                role_names.get(raw.get("roleDefinitionId") or ""),
                principal_names.get(
                    (raw.get("principalId") or "", raw.get("principalType") or "")
                ),
            )
            for raw in raw_records
        ]

    async def _principal_names(
        self, principals: List[Tuple[str, str]]
    ) -> Dict[Tuple[str, str], Optional[str]]:
        token = await self._token(GRAPH_SCOPE)
        if token is None or not principals:
            return {}
        names = await asyncio.gather(
            *(
                self.enrich(
                    "role_assignments",
                    "principal_name",
                    self._client.get_principal_display_name,
                    principal_id,
                    principal_type,
                    token,
                )
                for principal_id, principal_type in principals
            )
        )
        return dict(zip(principals, names))
