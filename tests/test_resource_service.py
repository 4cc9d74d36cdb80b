"""
Tests for ResourceService: paging, search, queries and selections.
"""

import pytest

from iam_grapher.exceptions import (
    ConfigurationError,
    QuerySyntaxError,
    ScanNotCompletedError,
    ScanNotFoundError,
)
from iam_grapher.models import ScanState
from iam_grapher.services import ResourceService, ScanOrchestrator
from iam_grapher.services.resource_service import paginate, value_contains
from iam_grapher.stores import InMemoryScanStore, InMemorySelectionStore


@pytest.fixture
def orchestrator():
    return ScanOrchestrator(InMemoryScanStore())


@pytest.fixture
def service(orchestrator):
    return ResourceService(orchestrator, InMemorySelectionStore())


@pytest.fixture
def scan_id(orchestrator, aws_document):
    return orchestrator.register_document(aws_document)


class TestHelpers:
    def test_value_contains_searches_nested_values(self):
        record = {"user_name": "alice", "tags": {"env": "Production"}, "count": 42}
        assert value_contains(record, "product")
        assert value_contains(record, "42")
        assert not value_contains(record, "user_name")

    def test_value_contains_booleans(self):
        assert value_contains({"enabled": True}, "true")

    def test_paginate(self):
        assert paginate(list(range(5)), 2, 2) == [2, 3]
        assert paginate(list(range(5)), 4, 2) == []


class TestListResources:
    def test_category_page(self, service, scan_id):
        page = service.list_resources(scan_id, category="users", page_size=1)
        assert page.total == 2
        assert page.total_pages == 2
        assert page.provider == "aws"
        assert [r["user_name"] for r in page.resources] == ["alice"]

    def test_all_categories(self, service, scan_id):
        page = service.list_resources(scan_id)
        # users, groups, roles, policies and attachments
        assert page.total == 2 + 1 + 1 + 1 + 3

    def test_search(self, service, scan_id):
        page = service.list_resources(scan_id, category="users", search="STAGING")
        assert [r["user_name"] for r in page.resources] == ["bob-ci"]

    def test_page_beyond_end(self, service, scan_id):
        page = service.list_resources(scan_id, category="users", page=5)
        assert page.resources == []
        assert page.total == 2

    @pytest.mark.parametrize("page, page_size", [(0, 10), (1, 0), (1, 1001)])
    def test_invalid_paging(self, service, scan_id, page, page_size):
        with pytest.raises(ConfigurationError):
            service.list_resources(scan_id, page=page, page_size=page_size)

    def test_unknown_scan(self, service):
        with pytest.raises(ScanNotFoundError):
            service.list_resources("missing")

    def test_scan_without_document(self, service, orchestrator):
        orchestrator.store.put(ScanState(scan_id="pending", provider="aws"))
        with pytest.raises(ScanNotCompletedError):
            service.list_resources("pending")


class TestQueryResources:
    def test_query(self, service, scan_id):
        page = service.query_resources(scan_id, 'tags.env == "production"', category="users")
        assert [r["user_name"] for r in page.resources] == ["alice"]
        assert page.total == 1

    def test_query_across_categories(self, service, scan_id):
        page = service.query_resources(scan_id, 'path LIKE "/service/*"')
        assert [r["role_name"] for r in page.resources] == ["app-runner"]

    def test_syntax_error(self, service, scan_id):
        with pytest.raises(QuerySyntaxError):
            service.query_resources(scan_id, "user_name ==")


class TestSelection:
    def test_update_and_get(self, service, scan_id):
        assert service.update_selection(scan_id, {"users": ["alice"], "roles": []}) == 1
        assert service.update_selection(scan_id, {"groups": ["admins"]}) == 2
        selection = service.get_selection(scan_id)
        assert selection.to_dict() == {"users": ["alice"], "roles": [], "groups": ["admins"]}

    def test_update_overwrites_category(self, service, scan_id):
        service.update_selection(scan_id, {"users": ["alice", "bob-ci"]})
        assert service.update_selection(scan_id, {"users": ["bob-ci"]}) == 1

    def test_unknown_scan(self, service):
        with pytest.raises(ScanNotFoundError):
            service.update_selection("missing", {"users": []})
