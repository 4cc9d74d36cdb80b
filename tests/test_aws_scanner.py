"""
Tests for the AWS IAM scanner using an in-memory IAM client.
"""

import json
from datetime import datetime, timezone
from urllib.parse import quote

import pytest
from botocore.exceptions import NoCredentialsError

from iam_grapher.exceptions import AuthenticationError, CategoryEnumerationError
from iam_grapher.models import ScanConfig
from iam_grapher.progress import RecordingProgressSink
from iam_grapher.scanners import AdmissionPool, AwsIamScanner
from iam_grapher.scanners.aws import normalize_record

from conftest import aws_arn

ALL_CATEGORIES = {"users": True, "groups": True, "roles": True, "policies": True}

TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
            "Condition": {"StringEquals": {"aws:SourceAccount": "123456789012"}},
        }
    ],
}
POLICY_DOCUMENT = {
    "Version": "2012-10-17",
    "Statement": [{"Effect": "Allow", "Action": "s3:*", "Resource": "*"}],
}


def raw_user(name):
    return {
        "UserName": name,
        "UserId": f"AID{name.upper()}",
        "Arn": aws_arn("user", name),
        "Path": "/",
        "CreateDate": datetime(2024, 1, 2, tzinfo=timezone.utc),
    }


@pytest.fixture
def populated_client(fake_aws_client):
    policy_arn = aws_arn("policy", "s3-full")
    client = fake_aws_client(
        users=[raw_user("alice"), raw_user("bob"), raw_user("app-ci")],
        groups=[{"GroupName": "admins", "Arn": aws_arn("group", "admins"), "Path": "/"}],
        roles=[
            {
                "RoleName": "lambda-exec",
                "Arn": aws_arn("role", "lambda-exec"),
                "Path": "/",
                "MaxSessionDuration": 3600,
                "AssumeRolePolicyDocument": quote(json.dumps(TRUST_POLICY)),
            }
        ],
        policies=[
            {
                "PolicyName": "s3-full",
                "Arn": policy_arn,
                "Path": "/",
                "DefaultVersionId": "v2",
            }
        ],
    )
    client.set_lookup("list_user_tags", "alice", [{"Key": "env", "Value": "prod"}])
    client.set_lookup(
        "list_attached_user_policies",
        "alice",
        [{"PolicyName": "s3-full", "PolicyArn": policy_arn}],
    )
    client.set_lookup("list_user_policies", "bob", ["inline-bob"])
    client.set_lookup("list_groups_for_user", "alice", [{"GroupName": "admins"}])
    client.set_lookup("get_group_members", "admins", [{"UserName": "alice"}])
    client.set_lookup(
        "list_attached_role_policies",
        "lambda-exec",
        [{"PolicyName": "s3-full", "PolicyArn": policy_arn}],
    )
    client.set_lookup(
        "get_policy_version", (policy_arn, "v2"), quote(json.dumps(POLICY_DOCUMENT))
    )
    return client


def aws_config(**kwargs):
    kwargs.setdefault("scan_targets", ALL_CATEGORIES)
    return ScanConfig(provider="aws", **kwargs)


class TestNormalizeRecord:
    def test_snake_case_keys_and_iso_dates(self):
        record = normalize_record(raw_user("alice"))
        assert record["user_name"] == "alice"
        assert record["user_id"] == "AIDALICE"
        assert record["create_date"] == "2024-01-02T00:00:00+00:00"

    def test_tags_become_mapping(self):
        record = normalize_record({"RoleName": "r", "Tags": [{"Key": "a", "Value": "b"}]})
        assert record["tags"] == {"a": "b"}

    def test_trust_policy_is_decoded(self):
        record = normalize_record(
            {"RoleName": "r", "AssumeRolePolicyDocument": quote(json.dumps(TRUST_POLICY))}
        )
        assert json.loads(record["assume_role_policy_document"]) == TRUST_POLICY
        statement = record["assume_role_statements"][0]
        assert statement["principal_type"] == "Service"
        assert statement["principal_identifiers"] == ["lambda.amazonaws.com"]
        assert statement["actions"] == ["sts:AssumeRole"]
        assert statement["conditions"] == [
            {"operator": "StringEquals", "key": "aws:SourceAccount", "value": "123456789012"}
        ]

    def test_unknown_fields_are_kept(self):
        record = normalize_record({"UserName": "x", "PermissionsBoundary": {"Type": "Policy"}})
        assert record["permissions_boundary"] == {"Type": "Policy"}


class TestAwsScan:
    @pytest.mark.asyncio
    async def test_full_scan(self, populated_client):
        scanner = AwsIamScanner(aws_config(), client=populated_client)
        document = await scanner.scan(RecordingProgressSink())

        assert document.provider == "aws"
        assert document.summary() == {
            "users": 3,
            "groups": 1,
            "roles": 1,
            "policies": 1,
            "attachments": 3,
        }
        alice = document.records("users")[0]
        assert alice["tags"] == {"env": "prod"}
        assert alice["groups"] == ["admins"]
        assert alice["attached_policies"] == [
            {"policy_name": "s3-full", "policy_arn": aws_arn("policy", "s3-full")}
        ]
        assert document.records("groups")[0]["members"] == ["alice"]
        assert document.records("policies")[0]["policy_document"] == POLICY_DOCUMENT
        assert scanner.degradations == []

    @pytest.mark.asyncio
    async def test_listing_follows_pagination(self, populated_client):
        scanner = AwsIamScanner(aws_config(scan_targets={"users": True}), client=populated_client)
        document = await scanner.scan(RecordingProgressSink())

        assert [u["user_name"] for u in document.records("users")] == ["alice", "bob", "app-ci"]
        assert ("list_users", None) in populated_client.calls
        assert ("list_users", "2") in populated_client.calls

    @pytest.mark.asyncio
    async def test_attachments_cover_managed_and_inline(self, populated_client):
        scanner = AwsIamScanner(aws_config(), client=populated_client)
        document = await scanner.scan(RecordingProgressSink())

        attachments = document.records("attachments")
        assert {
            "entity_type": "User",
            "entity_name": "bob",
            "policy_type": "inline",
            "policy_name": "inline-bob",
        } in attachments
        managed = [a for a in attachments if a["policy_type"] == "managed"]
        assert {(a["entity_type"], a["entity_name"]) for a in managed} == {
            ("User", "alice"),
            ("Role", "lambda-exec"),
        }

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(self, populated_client):
        sink = RecordingProgressSink()
        await AwsIamScanner(aws_config(), client=populated_client).scan(sink)

        percentages = [p for p, _ in sink.events]
        assert percentages == sorted(percentages)
        assert sink.events[0] == (0, "Scanning users...")
        assert sink.events[-1] == (100, "Found 1 policies")

    @pytest.mark.asyncio
    async def test_categories_run_in_fixed_order(self, populated_client):
        config = aws_config(scan_targets={"policies": True, "users": True})
        sink = RecordingProgressSink()
        await AwsIamScanner(config, client=populated_client).scan(sink)
        assert [m for _, m in sink.events if m.startswith("Scanning")] == [
            "Scanning users...",
            "Scanning policies...",
        ]

    @pytest.mark.asyncio
    async def test_no_categories(self, populated_client):
        sink = RecordingProgressSink()
        document = await AwsIamScanner(aws_config(scan_targets={}), client=populated_client).scan(sink)
        assert document.categories == {}
        assert populated_client.calls == []
        assert sink.events == [(100, "No categories selected, nothing to scan")]

    @pytest.mark.asyncio
    async def test_name_prefix_applies_before_enrichment(self, populated_client):
        config = aws_config(scan_targets={"users": True}, filters={"name_prefix": "app-"})
        document = await AwsIamScanner(config, client=populated_client).scan(
            RecordingProgressSink()
        )

        assert [u["user_name"] for u in document.records("users")] == ["app-ci"]
        enriched = {key for method, key in populated_client.calls if method != "list_users"}
        assert enriched == {"app-ci"}

    @pytest.mark.asyncio
    async def test_tags_can_be_skipped(self, populated_client):
        config = aws_config(scan_targets={"users": True}, include_tags=False)
        document = await AwsIamScanner(config, client=populated_client).scan(
            RecordingProgressSink()
        )
        assert "tags" not in document.records("users")[0]
        assert not any(method == "list_user_tags" for method, _ in populated_client.calls)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_enrichment_respects_admission_limit(self, fake_aws_client):
        client = fake_aws_client(
            users=[raw_user(f"user-{i}") for i in range(30)], page_size=100, delay=0.01
        )
        pool = AdmissionPool(10)
        scanner = AwsIamScanner(aws_config(scan_targets={"users": True}), client=client, pool=pool)
        document = await scanner.scan(RecordingProgressSink())

        assert len(document.records("users")) == 30
        assert client.peak_in_flight <= 10
        assert pool.peak_in_flight == 10
        assert pool.in_flight == 0

    @pytest.mark.asyncio
    async def test_smaller_limit(self, fake_aws_client):
        client = fake_aws_client(users=[raw_user(f"u{i}") for i in range(5)], delay=0.005)
        scanner = AwsIamScanner(
            aws_config(scan_targets={"users": True}), client=client, pool=AdmissionPool(2)
        )
        await scanner.scan(RecordingProgressSink())
        assert client.peak_in_flight <= 2


class TestErrorPolicy:
    @pytest.mark.asyncio
    async def test_enrichment_failure_omits_field(self, populated_client):
        populated_client.failures["list_attached_user_policies"] = RuntimeError("AccessDenied")
        scanner = AwsIamScanner(aws_config(scan_targets={"users": True}), client=populated_client)
        document = await scanner.scan(RecordingProgressSink())

        users = document.records("users")
        assert len(users) == 3
        assert all("attached_policies" not in u for u in users)
        assert users[0]["groups"] == ["admins"]
        assert len(scanner.degradations) == 3
        assert scanner.degradations[0].context == {
            "category": "users",
            "field": "attached_policies",
        }

    @pytest.mark.asyncio
    async def test_policy_document_failure_is_soft(self, populated_client):
        populated_client.failures["get_policy_version"] = RuntimeError("throttled")
        scanner = AwsIamScanner(aws_config(scan_targets={"policies": True}), client=populated_client)
        document = await scanner.scan(RecordingProgressSink())
        assert "policy_document" not in document.records("policies")[0]

    @pytest.mark.asyncio
    async def test_category_listing_failure_aborts(self, populated_client):
        populated_client.failures["list_roles"] = RuntimeError("AccessDenied")
        scanner = AwsIamScanner(aws_config(profile="audit"), client=populated_client)

        with pytest.raises(CategoryEnumerationError) as exc_info:
            await scanner.scan(RecordingProgressSink())

        error = exc_info.value
        assert error.category == "roles"
        assert error.context["profile"] == "audit"
        assert "iam:List" in error.recovery_suggestion
        # Later categories never run
        assert not any(method == "list_policies" for method, _ in populated_client.calls)

    @pytest.mark.asyncio
    async def test_missing_credentials(self, populated_client):
        populated_client.failures["list_users"] = NoCredentialsError()
        scanner = AwsIamScanner(aws_config(), client=populated_client)
        with pytest.raises(AuthenticationError):
            await scanner.scan(RecordingProgressSink())

    @pytest.mark.asyncio
    async def test_client_factory_failure(self):
        def broken_factory(config, page_size):
            raise RuntimeError("profile not found")

        scanner = AwsIamScanner(aws_config(profile="nope"), client_factory=broken_factory)
        with pytest.raises(AuthenticationError) as exc_info:
            await scanner.scan(RecordingProgressSink())
        assert exc_info.value.context["profile"] == "nope"
