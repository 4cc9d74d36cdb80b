"""
Tests for the boto3-backed IAM client against botocore stubs and moto's IAM and STS mocks.
"""

import json
import os
from datetime import datetime, timezone
from unittest.mock import patch

import boto3
import pytest
from botocore.stub import Stubber
from moto import mock_aws

from iam_grapher.exceptions import AuthenticationError
from iam_grapher.models import ScanConfig
from iam_grapher.progress import RecordingProgressSink
from iam_grapher.scanners import AwsIamScanner
from iam_grapher.scanners.aws_client import Boto3IamClient, create_aws_session

FAKE_CREDENTIALS = {
    "AWS_ACCESS_KEY_ID": "testing",
    "AWS_SECRET_ACCESS_KEY": "testing",
    "AWS_SECURITY_TOKEN": "testing",
    "AWS_SESSION_TOKEN": "testing",
    "AWS_DEFAULT_REGION": "us-east-1",
}

TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ec2.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}
POLICY_DOCUMENT = {
    "Version": "2012-10-17",
    "Statement": [{"Effect": "Allow", "Action": "s3:GetObject", "Resource": "*"}],
}


@pytest.fixture
def aws_credentials():
    with patch.dict(os.environ, FAKE_CREDENTIALS):
        yield


def seed_account(iam):
    """Create two users, a group, a role and a customer managed policy."""
    policy_arn = iam.create_policy(
        PolicyName="s3-read", PolicyDocument=json.dumps(POLICY_DOCUMENT)
    )["Policy"]["Arn"]
    iam.create_user(UserName="alice", Tags=[{"Key": "env", "Value": "prod"}])
    iam.create_user(UserName="bob")
    iam.create_group(GroupName="admins")
    iam.add_user_to_group(GroupName="admins", UserName="alice")
    iam.attach_user_policy(UserName="alice", PolicyArn=policy_arn)
    iam.put_user_policy(
        UserName="bob", PolicyName="inline-bob", PolicyDocument=json.dumps(POLICY_DOCUMENT)
    )
    iam.create_role(
        RoleName="web-server",
        AssumeRolePolicyDocument=json.dumps(TRUST_POLICY),
        Tags=[{"Key": "team", "Value": "web"}],
    )
    iam.attach_role_policy(RoleName="web-server", PolicyArn=policy_arn)
    return policy_arn


def stub_user(name):
    return {
        "Path": "/",
        "UserName": name,
        "UserId": f"AIDA{name.upper():X<16}",
        "Arn": f"arn:aws:iam::123456789012:user/{name}",
        "CreateDate": datetime(2024, 1, 1, tzinfo=timezone.utc),
    }


class TestBoto3IamClient:
    @pytest.mark.asyncio
    async def test_pages_are_followed(self, aws_credentials):
        iam = boto3.client("iam", region_name="us-east-1")
        stubber = Stubber(iam)
        stubber.add_response(
            "list_users",
            {"Users": [stub_user("alice")], "IsTruncated": True, "Marker": "page-2"},
            {"MaxItems": 1},
        )
        stubber.add_response(
            "list_users",
            {"Users": [stub_user("bob")], "IsTruncated": False},
            {"MaxItems": 1, "Marker": "page-2"},
        )
        client = Boto3IamClient(iam, page_size=1)

        with stubber:
            first = await client.list_users(None)
            second = await client.list_users(first.next_token)

        assert [u["UserName"] for u in first.items] == ["alice"]
        assert first.next_token == "page-2"
        assert [u["UserName"] for u in second.items] == ["bob"]
        assert second.next_token is None
        stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_nested_listing_collects_every_page(self, aws_credentials):
        iam = boto3.client("iam", region_name="us-east-1")
        stubber = Stubber(iam)
        stubber.add_response(
            "list_user_policies",
            {"PolicyNames": ["inline-a"], "IsTruncated": True, "Marker": "m-1"},
            {"UserName": "bob", "MaxItems": 1},
        )
        stubber.add_response(
            "list_user_policies",
            {"PolicyNames": ["inline-b"], "IsTruncated": False},
            {"UserName": "bob", "MaxItems": 1, "Marker": "m-1"},
        )

        with stubber:
            names = await Boto3IamClient(iam, page_size=1).list_user_policies("bob")

        assert names == ["inline-a", "inline-b"]
        stubber.assert_no_pending_responses()

    @pytest.mark.asyncio
    async def test_lookups(self, aws_credentials):
        with mock_aws():
            iam = boto3.client("iam", region_name="us-east-1")
            policy_arn = seed_account(iam)
            client = Boto3IamClient(iam)

            assert await client.list_user_tags("alice") == [{"Key": "env", "Value": "prod"}]
            assert await client.list_user_policies("bob") == ["inline-bob"]
            members = await client.get_group_members("admins")
            assert [m["UserName"] for m in members] == ["alice"]
            attached = await client.list_attached_role_policies("web-server")
            assert attached[0]["PolicyArn"] == policy_arn
            document = await client.get_policy_version(policy_arn, "v1")
            assert document is not None


class TestScanWithMoto:
    @pytest.mark.asyncio
    async def test_end_to_end_scan(self, aws_credentials):
        with mock_aws():
            iam = boto3.client("iam", region_name="us-east-1")
            policy_arn = seed_account(iam)

            config = ScanConfig(
                provider="aws",
                region="us-east-1",
                scan_targets={"users": True, "groups": True, "roles": True, "policies": True},
            )
            scanner = AwsIamScanner(config, page_size=1)
            document = await scanner.scan(RecordingProgressSink())

        users = {u["user_name"]: u for u in document.records("users")}
        assert users["alice"]["tags"] == {"env": "prod"}
        assert users["alice"]["groups"] == ["admins"]
        assert users["alice"]["attached_policies"][0]["policy_arn"] == policy_arn
        assert users["bob"]["inline_policies"] == ["inline-bob"]

        role = document.records("roles")[0]
        assert role["role_name"] == "web-server"
        assert role["tags"] == {"team": "web"}
        assert json.loads(role["assume_role_policy_document"]) == TRUST_POLICY
        assert role["assume_role_statements"][0]["principal_identifiers"] == [
            "ec2.amazonaws.com"
        ]

        policy = document.records("policies")[0]
        assert policy["arn"] == policy_arn
        assert policy["policy_document"] == POLICY_DOCUMENT
        assert len(document.records("attachments")) == 3
        assert scanner.degradations == []


class TestCreateAwsSession:
    def test_session_from_environment(self, aws_credentials):
        session = create_aws_session(ScanConfig(provider="aws", region="eu-west-1"))
        assert session.region_name == "eu-west-1"

    def test_assume_role(self, aws_credentials):
        with mock_aws():
            session = create_aws_session(
                ScanConfig(
                    provider="aws",
                    region="us-east-1",
                    assume_role_arn="arn:aws:iam::123456789012:role/auditor",
                )
            )
            credentials = session.get_credentials()
            assert credentials.access_key != "testing"

    def test_missing_profile(self, aws_credentials):
        with pytest.raises(AuthenticationError) as exc_info:
            create_aws_session(ScanConfig(provider="aws", profile="does-not-exist"))
        assert exc_info.value.context["profile"] == "does-not-exist"
