"""
Resource Service

Browses, searches and queries the records of a completed scan and keeps the
per-scan selection used for code generation.
"""

from typing import Any, List, Mapping, Optional, Sequence

import structlog

from iam_grapher.exceptions import ConfigurationError
from iam_grapher.models import Document, IdentityMarker, ResourcePage, Selection
from iam_grapher.query import filter_records, parse_query
from iam_grapher.records import Record
from iam_grapher.services.scan_orchestrator import ScanOrchestrator
from iam_grapher.stores import SelectionStore

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 1000


def value_contains(value: Any, term: str) -> bool:
    """Case-insensitive substring search through nested values (keys are ignored)."""
    if isinstance(value, str):
        return term in value.lower()
    if isinstance(value, bool):
        return term in str(value).lower()
    if isinstance(value, (int, float)):
        return term in str(value)
    if isinstance(value, Mapping):
        return any(value_contains(v, term) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(value_contains(v, term) for v in value)
    return False


def paginate(records: Sequence[Record], page: int, page_size: int) -> List[Record]:
    start = (page - 1) * page_size
    return list(records[start : start + page_size])


class ResourceService:
    def __init__(self, orchestrator: ScanOrchestrator, selections: SelectionStore) -> None:
        self.orchestrator = orchestrator
        self.selections = selections

    @staticmethod
    def _check_paging(page: int, page_size: int) -> None:
        if page < 1:
            raise ConfigurationError(
                f"Page must be at least 1, got {page}", config_section="resources"
            )
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ConfigurationError(
                f"Page size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}",
                config_section="resources",
            )

    @staticmethod
    def _records(document: Document, category: Optional[str]) -> List[Record]:
        if category:
            return document.records(category)
        records: List[Record] = []
        for name in document.categories:
            records.extend(document.records(name))
        return records

    def list_resources(
        self,
        scan_id: str,
        category: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        search: Optional[str] = None,
    ) -> ResourcePage:
        """
        Return one page of a scan's records.

        Args:
            scan_id: Completed scan
            category: Restrict to one category; all categories when None
            page: 1-based page number
            page_size: Records per page
            search: Case-insensitive substring matched against every value

        Raises:
            ScanNotFoundError: Unknown scan id
            ScanNotCompletedError: The scan has no document yet
            ConfigurationError: Invalid paging parameters
        """
        self._check_paging(page, page_size)
        document = self.orchestrator.get_document(scan_id)
        records = self._records(document, category)
        term = (search or "").lower()
        if term:
            records = [r for r in records if value_contains(r, term)]
        return ResourcePage(
            resources=paginate(records, page, page_size),
            total=len(records),
            page=page,
            page_size=page_size,
            provider=document.provider,
        )

    def query_resources(
        self,
        scan_id: str,
        query: str,
        category: Optional[str] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> ResourcePage:
        """
        Filter a scan's records with a query expression.

        Raises:
            QuerySyntaxError: The query does not lex or parse
        """
        self._check_paging(page, page_size)
        expr = parse_query(query)
        document = self.orchestrator.get_document(scan_id)
        matches = filter_records(expr, self._records(document, category))
        logger.debug(
            "query_evaluated",
            scan_id=scan_id,
            category=category,
            matches=len(matches),
        )
        return ResourcePage(
            resources=paginate(matches, page, page_size),  # type: ignore[arg-type]
            total=len(matches),
            page=page,
            page_size=page_size,
            provider=document.provider,
        )

    def update_selection(
        self, scan_id: str, selections: Mapping[str, Sequence[IdentityMarker]]
    ) -> int:
        """Overwrite the selection of each given category; returns the total selected."""
        self.orchestrator.get_status(scan_id)
        merged = self.selections.merge(scan_id, selections)
        total = merged.total_selected()
        logger.info(
            "selection_updated",
            scan_id=scan_id,
            categories=sorted(selections),
            selected_count=total,
        )
        return total

    def get_selection(self, scan_id: str) -> Selection:
        return self.selections.get(scan_id)
