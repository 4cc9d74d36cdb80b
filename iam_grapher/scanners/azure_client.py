"""
Azure RBAC client used by the Azure scanner.

Role definitions and assignments are listed from the ARM REST API; display-name
lookups go to the management API and Microsoft Graph. All calls use httpx with
bearer tokens from an azure-identity credential.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx
from azure.identity import (
    AzureCliCredential,
    ClientSecretCredential,
    DefaultAzureCredential,
)

from iam_grapher.exceptions import ConfigurationError
from iam_grapher.models import ListPage, ScanConfig
from iam_grapher.records import Record

logger = logging.getLogger(__name__)

MANAGEMENT_SCOPE = "https://management.azure.com/.default"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"
MANAGEMENT_ENDPOINT = "https://management.azure.com"
GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"
ROLE_DEFINITION_API_VERSION = "2022-04-01"

GRAPH_PRINCIPAL_PATHS = {
    "User": "users",
    "ServicePrincipal": "servicePrincipals",
    "Group": "groups",
}


class AzureRbacClient(Protocol):
    async def list_role_definitions(
        self, scope: str, continuation_token: Optional[str]
    ) -> ListPage: ...

    async def list_role_assignments(
        self, scope: str, continuation_token: Optional[str]
    ) -> ListPage: ...

    async def acquire_token(self, scope: str) -> str: ...

    async def get_role_display_name(
        self, role_definition_id: str, token: str
    ) -> Optional[str]: ...

    async def get_principal_display_name(
        self, principal_id: str, principal_type: str, token: str
    ) -> Optional[str]: ...

    async def close(self) -> None: ...


def resolve_scope(config: ScanConfig) -> str:
    """Translate the configured scope into an ARM scope path."""
    scope_type = config.scope_type or "subscription"
    if scope_type == "subscription":
        return f"/subscriptions/{config.subscription_id}"
    if scope_type == "resource_group":
        return (
            f"/subscriptions/{config.subscription_id}"
            f"/resourceGroups/{config.scope_value}"
        )
    if scope_type == "management_group":
        return (
            "/providers/Microsoft.Management/managementGroups/"
            f"{config.scope_value}"
        )
    raise ConfigurationError(
        f"Unsupported scope type '{scope_type}'", config_section="scope"
    )

_DEFINITION_FIELDS = ("roleName", "description", "assignableScopes")
_ASSIGNMENT_FIELDS = (
    "scope",
    "roleDefinitionId",
    "principalId",
    "principalType",
    "description",
    "condition",
)


def _permission_to_dict(permission: Dict[str, Any]) -> Dict[str, List[str]]:
    return {
        "actions": list(permission.get("actions") or []),
        "notActions": list(permission.get("notActions") or []),
        "dataActions": list(permission.get("dataActions") or []),
        "notDataActions": list(permission.get("notDataActions") or []),
    }


def role_definition_from_arm(item: Dict[str, Any]) -> Record:
    """Flatten an ARM roleDefinitions item into a single-level record.

    ARM nests everything except id/name/type under ``properties`` and calls the
    built-in/custom marker ``type``; it is surfaced here as ``roleType``.
    """
    properties = dict(item.get("properties") or {})
    record: Record = {
        "id": item.get("id"),
        "name": item.get("name"),
        "type": item.get("type"),
    }
    for field in _DEFINITION_FIELDS:
        record[field] = properties.pop(field, None)
    record["roleType"] = properties.pop("type", None)
    record["permissions"] = [
        _permission_to_dict(p) for p in properties.pop("permissions", None) or []
    ]
    record["assignableScopes"] = list(record["assignableScopes"] or [])
    for key, value in properties.items():
        record.setdefault(key, value)
    return record


def role_assignment_from_arm(item: Dict[str, Any]) -> Record:
    """Flatten an ARM roleAssignments item into a single-level record."""
    properties = dict(item.get("properties") or {})
    record: Record = {
        "id": item.get("id"),
        "name": item.get("name"),
        "type": item.get("type"),
    }
    for field in _ASSIGNMENT_FIELDS:
        record[field] = properties.pop(field, None)
    for key, value in properties.items():
        record.setdefault(key, value)
    return record


class AzureRestRbacClient:
    """AzureRbacClient backed by an azure-identity credential and httpx."""

    def __init__(
        self,
        credential: Any,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self._credential = credential
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))
        self._tokens: Dict[str, str] = {}

    async def acquire_token(self, scope: str) -> str:
        if scope not in self._tokens:
            access_token = await asyncio.to_thread(self._credential.get_token, scope)
            self._tokens[scope] = access_token.token
        return self._tokens[scope]

    async def _list(
        self,
        scope: str,
        collection: str,
        continuation_token: Optional[str],
        convert: Callable[[Dict[str, Any]], Record],
    ) -> ListPage:
        token = await self.acquire_token(MANAGEMENT_SCOPE)
        headers = {"Authorization": f"Bearer {token}"}
        if continuation_token:
            # nextLink already carries the api-version and skip token
            response = await self._http.get(continuation_token, headers=headers)
        else:
            response = await self._http.get(
                f"{MANAGEMENT_ENDPOINT}{scope}/providers/Microsoft.Authorization/{collection}",
                params={"api-version": ROLE_DEFINITION_API_VERSION},
                headers=headers,
            )
        response.raise_for_status()
        payload = response.json()
        items = [convert(item) for item in payload.get("value") or []]
        logger.debug(f"📄 Listed {len(items)} {collection} under {scope}")
        return ListPage(items, payload.get("nextLink"))

    async def list_role_definitions(
        self, scope: str, continuation_token: Optional[str]
    ) -> ListPage:
        return await self._list(
            scope, "roleDefinitions", continuation_token, role_definition_from_arm
        )

    async def list_role_assignments(
        self, scope: str, continuation_token: Optional[str]
    ) -> ListPage:
        return await self._list(
            scope, "roleAssignments", continuation_token, role_assignment_from_arm
        )

    async def get_role_display_name(
        self, role_definition_id: str, token: str
    ) -> Optional[str]:
        response = await self._http.get(
            f"{MANAGEMENT_ENDPOINT}{role_definition_id}",
            params={"api-version": ROLE_DEFINITION_API_VERSION},
            headers={"Authorization": f"Bearer {token}"},
        )
        response.raise_for_status()
        properties = response.json().get("properties", {})
        return properties.get("displayName") or properties.get("roleName")

    async def get_principal_display_name(
        self, principal_id: str, principal_type: str, token: str
    ) -> Optional[str]:
        path = GRAPH_PRINCIPAL_PATHS.get(principal_type)
        if path is None:
            return None
        response = await self._http.get(
            f"{GRAPH_ENDPOINT}/{path}/{principal_id}",
            headers={"Authorization": f"Bearer {token}"},
        )
        response.raise_for_status()
        data = response.json()
        return data.get("displayName") or data.get("appDisplayName")

    async def close(self) -> None:
        await self._http.aclose()


def create_azure_credential(config: ScanConfig) -> Any:
    if config.auth_method == "service_principal":
        return ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret,
        )
    if config.auth_method == "cli":
        return AzureCliCredential(tenant_id=config.tenant_id or "")
    return DefaultAzureCredential()


def create_azure_client(config: ScanConfig) -> AzureRestRbacClient:
    """Factory used by the scanner."""
    return AzureRestRbacClient(create_azure_credential(config))
