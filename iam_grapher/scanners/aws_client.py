"""
AWS IAM client used by the AWS scanner.

The scanner depends only on the AwsIamClient protocol. Boto3IamClient is the
real implementation: boto3 calls are blocking, so each one runs in a worker
thread via asyncio.to_thread.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from iam_grapher.exceptions import AuthenticationError
from iam_grapher.models import ListPage, ScanConfig

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "iam-grapher"
DEFAULT_PAGE_SIZE = 100


class AwsIamClient(Protocol):
    async def list_users(self, marker: Optional[str]) -> ListPage: ...

    async def list_groups(self, marker: Optional[str]) -> ListPage: ...

    async def list_roles(self, marker: Optional[str]) -> ListPage: ...

    async def list_policies(self, marker: Optional[str]) -> ListPage: ...

    async def list_user_tags(self, user_name: str) -> List[Dict[str, str]]: ...

    async def list_role_tags(self, role_name: str) -> List[Dict[str, str]]: ...

    async def list_user_policies(self, user_name: str) -> List[str]: ...

    async def list_attached_user_policies(self, user_name: str) -> List[Dict[str, str]]: ...

    async def list_groups_for_user(self, user_name: str) -> List[Dict[str, Any]]: ...

    async def list_group_policies(self, group_name: str) -> List[str]: ...

    async def list_attached_group_policies(self, group_name: str) -> List[Dict[str, str]]: ...

    async def get_group_members(self, group_name: str) -> List[Dict[str, Any]]: ...

    async def list_role_policies(self, role_name: str) -> List[str]: ...

    async def list_attached_role_policies(self, role_name: str) -> List[Dict[str, str]]: ...

    async def get_policy_version(
        self, policy_arn: str, version_id: str
    ) -> Union[str, Dict[str, Any], None]: ...


def create_aws_session(config: ScanConfig) -> boto3.session.Session:
    """
    Build a boto3 session for the scan, assuming a role when configured.

    Raises:
        AuthenticationError: If the profile, credentials or role cannot be resolved
    """
    try:
        session = boto3.session.Session(
            profile_name=config.profile, region_name=config.region
        )
        if session.get_credentials() is None:
            raise AuthenticationError(
                "No AWS credentials found",
                provider="aws",
                profile=config.profile,
            )
        if config.assume_role_arn:
            sts = session.client("sts")
            response = sts.assume_role(
                RoleArn=config.assume_role_arn,
                RoleSessionName=config.assume_role_session_name
                or DEFAULT_SESSION_NAME,
            )
            credentials = response["Credentials"]
            logger.info(f"🔐 Assumed role {config.assume_role_arn}")
            session = boto3.session.Session(
                aws_access_key_id=credentials["AccessKeyId"],
                aws_secret_access_key=credentials["SecretAccessKey"],
                aws_session_token=credentials["SessionToken"],
                region_name=config.region,
            )
    except (BotoCoreError, ClientError) as e:
        raise AuthenticationError(
            f"Failed to create AWS session: {e}",
            provider="aws",
            profile=config.profile,
            context={"assume_role_arn": config.assume_role_arn}
            if config.assume_role_arn
            else {},
            cause=e,
        ) from e
    return session


class Boto3IamClient:
    """AwsIamClient backed by a boto3 IAM client."""

    def __init__(self, iam_client: Any, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        self._iam = iam_client
        self.page_size = page_size

    async def _call(self, operation: str, **kwargs: Any) -> Dict[str, Any]:
        return await asyncio.to_thread(getattr(self._iam, operation), **kwargs)

    async def _page(
        self, operation: str, result_key: str, marker: Optional[str], **kwargs: Any
    ) -> ListPage:
        params: Dict[str, Any] = {"MaxItems": self.page_size, **kwargs}
        if marker:
            params["Marker"] = marker
        response = await self._call(operation, **params)
        next_token = response.get("Marker") if response.get("IsTruncated") else None
        return ListPage(list(response.get(result_key, [])), next_token)

    async def _collect(self, operation: str, result_key: str, **kwargs: Any) -> List[Any]:
        items: List[Any] = []
        marker: Optional[str] = None
        while True:
            page = await self._page(operation, result_key, marker, **kwargs)
            items.extend(page.items)
            marker = page.next_token
            if not marker:
                return items

    async def list_users(self, marker: Optional[str]) -> ListPage:
        return await self._page("list_users", "Users", marker)

    async def list_groups(self, marker: Optional[str]) -> ListPage:
        return await self._page("list_groups", "Groups", marker)

    async def list_roles(self, marker: Optional[str]) -> ListPage:
        return await self._page("list_roles", "Roles", marker)

    async def list_policies(self, marker: Optional[str]) -> ListPage:
        # Customer managed policies only
        return await self._page("list_policies", "Policies", marker, Scope="Local")

    async def list_user_tags(self, user_name: str) -> List[Dict[str, str]]:
        return await self._collect("list_user_tags", "Tags", UserName=user_name)

    async def list_role_tags(self, role_name: str) -> List[Dict[str, str]]:
        return await self._collect("list_role_tags", "Tags", RoleName=role_name)

    async def list_user_policies(self, user_name: str) -> List[str]:
        return await self._collect("list_user_policies", "PolicyNames", UserName=user_name)

    async def list_attached_user_policies(self, user_name: str) -> List[Dict[str, str]]:
        return await self._collect(
            "list_attached_user_policies", "AttachedPolicies", UserName=user_name
        )

    async def list_groups_for_user(self, user_name: str) -> List[Dict[str, Any]]:
        return await self._collect("list_groups_for_user", "Groups", UserName=user_name)

    async def list_group_policies(self, group_name: str) -> List[str]:
        return await self._collect(
            "list_group_policies", "PolicyNames", GroupName=group_name
        )

    async def list_attached_group_policies(self, group_name: str) -> List[Dict[str, str]]:
        return await self._collect(
            "list_attached_group_policies", "AttachedPolicies", GroupName=group_name
        )

    async def get_group_members(self, group_name: str) -> List[Dict[str, Any]]:
        return await self._collect("get_group", "Users", GroupName=group_name)

    async def list_role_policies(self, role_name: str) -> List[str]:
        return await self._collect("list_role_policies", "PolicyNames", RoleName=role_name)

    async def list_attached_role_policies(self, role_name: str) -> List[Dict[str, str]]:
        return await self._collect(
            "list_attached_role_policies", "AttachedPolicies", RoleName=role_name
        )

    async def get_policy_version(
        self, policy_arn: str, version_id: str
    ) -> Union[str, Dict[str, Any], None]:
        response = await self._call(
            "get_policy_version", PolicyArn=policy_arn, VersionId=version_id
        )
        return response.get("PolicyVersion", {}).get("Document")


def create_aws_client(
    config: ScanConfig, page_size: int = DEFAULT_PAGE_SIZE
) -> Boto3IamClient:
    """Factory used by the scanner; resolves credentials once per scan."""
    session = create_aws_session(config)
    return Boto3IamClient(session.client("iam"), page_size=page_size)
