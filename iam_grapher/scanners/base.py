"""
Shared scan shell for provider scanners.

Provider scanners only implement category listing, enrichment and record
normalization. The shell owns what is common to every provider:

- categories run sequentially in a fixed order so progress is monotonic
- the name-prefix filter runs before any enrichment call
- enrichment sub-calls share one admission pool per scan (10 in flight)
- category listing failures abort the scan, enrichment failures only omit
  the field
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    ClassVar,
    Dict,
    List,
    Optional,
)

from iam_grapher.exceptions import (
    EnrichmentDegradation,
    IamGrapherError,
    wrap_provider_exception,
)
from iam_grapher.models import Document, ListPage, ScanConfig
from iam_grapher.progress import ProgressSink
from iam_grapher.records import Record

logger = logging.getLogger(__name__)

ENRICHMENT_CONCURRENCY = 10

PageFetcher = Callable[[Optional[str]], Awaitable[ListPage]]


class AdmissionPool:
    """Bounds the number of simultaneous in-flight enrichment calls."""

    def __init__(self, limit: int = ENRICHMENT_CONCURRENCY) -> None:
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def __aenter__(self) -> "AdmissionPool":
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.in_flight -= 1
        self._semaphore.release()


class CachedTokenProvider:
    """
    Acquires each token scope at most once per scan.

    Concurrent callers wait on the first acquisition. A failed acquisition is
    cached as None so enrichment degrades instead of retrying.
    """

    def __init__(self, acquire: Callable[[str], Awaitable[str]]) -> None:
        self._acquire = acquire
        self._lock = asyncio.Lock()
        self._tokens: Dict[str, Optional[str]] = {}
        self.failures: Dict[str, Exception] = {}

    async def get(self, scope: str) -> Optional[str]:
        async with self._lock:
            if scope not in self._tokens:
                try:
                    self._tokens[scope] = await self._acquire(scope)
                    logger.debug(f"🔑 Acquired token for {scope}")
                except Exception as e:
                    logger.warning(
                        f"⚠️  Token acquisition failed for {scope}, "
                        f"continuing without enrichment: {e}"
                    )
                    self.failures[scope] = e
                    self._tokens[scope] = None
            return self._tokens[scope]


def json_safe(value: Any) -> Any:
    """Convert SDK values (datetimes, nested containers) to JSON-compatible ones."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


class ProviderScanner(ABC):
    """Orchestration shell shared by the AWS and Azure scanners."""

    provider: ClassVar[str]
    # Field holding the name the name-prefix filter applies to, per category
    name_fields: ClassVar[Dict[str, tuple]] = {}

    def __init__(
        self,
        config: ScanConfig,
        pool: Optional[AdmissionPool] = None,
    ) -> None:
        self.config = config
        self.pool = pool or AdmissionPool()
        self.degradations: List[EnrichmentDegradation] = []

    async def scan(self, sink: ProgressSink) -> Document:
        """Run every enabled category in order and return the document."""
        enabled = self.config.enabled_categories()
        document = Document(provider=self.provider)
        if not enabled:
            sink.emit(100, "No categories selected, nothing to scan")
            return document

        total = len(enabled)
        logger.info(
            f"🔍 Starting {self.provider} scan: {', '.join(enabled)}"
        )
        try:
            await self.prepare()
            for index, category in enumerate(enabled):
                sink.emit(index * 100 // total, f"Scanning {category}...")
                records = await self._scan_category(category)
                document.categories[category] = records
                logger.info(f"✅ Found {len(records)} {category}")
                sink.emit(
                    (index + 1) * 100 // total,
                    f"Found {len(records)} {category}",
                )
            await self.finalize(document)
        finally:
            await self.close()

        if self.degradations:
            logger.warning(
                f"⚠️  {len(self.degradations)} enrichment calls failed; "
                "affected fields were omitted"
            )
        return document

    async def _scan_category(self, category: str) -> List[Record]:
        try:
            records = await self.list_category(category)
        except IamGrapherError:
            raise
        except Exception as e:
            logger.error(f"❌ Failed to enumerate {category}: {e}")
            raise wrap_provider_exception(
                e,
                category=category,
                provider=self.provider,
                context=self.config.identity_context(),
            ) from e
        records = await self.apply_name_filter(category, records)
        return await self.enrich_category(category, records)

    async def apply_name_filter(self, category: str, records: List[Record]) -> List[Record]:
        """Keep records whose name starts with the prefix; unnamed records are kept."""
        prefix = self.config.name_prefix
        if not prefix:
            return records
        names = await self.record_names(category, records)
        kept = [
            record
            for record, name in zip(records, names)
            if name is None or name.startswith(prefix)
        ]
        logger.debug(
            f"Name prefix '{prefix}' kept {len(kept)}/{len(records)} {category}"
        )
        return kept

    async def record_names(
        self, category: str, records: List[Record]
    ) -> List[Optional[str]]:
        """Name the prefix filter compares, per record (None when there is none)."""
        fields = self.name_fields.get(category, ())
        return [
            next((record[f] for f in fields if isinstance(record.get(f), str)), None)
            for record in records
        ]

    @staticmethod
    async def paginate(fetch: PageFetcher) -> List[Record]:
        """Fetch pages until the provider stops returning a continuation token."""
        items: List[Record] = []
        token: Optional[str] = None
        while True:
            page = await fetch(token)
            items.extend(page.items)
            token = page.next_token
            if not token:
                return items

    async def enrich(
        self,
        category: str,
        field_name: str,
        call: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Any:
        """
        Run one enrichment sub-call under the admission pool.

        Returns None when the call fails; the failure is recorded as an
        EnrichmentDegradation and the scan continues.
        """
        async with self.pool:
            try:
                return await call(*args)
            except Exception as e:
                degradation = EnrichmentDegradation(
                    f"Could not fetch {field_name}",
                    category=category,
                    field_name=field_name,
                    cause=e,
                )
                logger.warning(f"⚠️  {degradation}")
                self.degradations.append(degradation)
                return None

    async def prepare(self) -> None:
        """Resolve clients and credentials once per scan."""

    async def finalize(self, document: Document) -> None:
        """Derive cross-category data after every category ran."""

    async def close(self) -> None:
        """Release clients."""

    @abstractmethod
    async def list_category(self, category: str) -> List[Record]:
        """List and normalize every record of one category."""

    @abstractmethod
    async def enrich_category(
        self, category: str, records: List[Record]
    ) -> List[Record]:
        """Enrich records of one category with nested lookups."""
