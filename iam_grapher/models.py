"""
Data model shared by the scan, query, graph and generation layers.

ScanConfig and GenerationConfig are the request objects (immutable once a scan
or generation starts); Document, ScanState and Selection are what the stores
hold; GenerationResult and ResourcePage are responses.
"""

import logging
import math
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from iam_grapher.exceptions import ConfigurationError, InvalidStateTransition
from iam_grapher.records import (
    PROVIDER_CATEGORIES,
    Record,
    identity_of,
    marker_identity,
)
from iam_grapher.requests import (
    IMPORT_SCRIPT_FORMATS,
    GenerationRequest,
    ScanRequest,
    parse_request,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListPage:
    """One page of a provider listing call."""

    items: List[Record]
    next_token: Optional[str] = None


@dataclass(frozen=True)
class ScanConfig:
    """What to scan and how to authenticate. Frozen once the scan starts."""

    provider: str
    profile: Optional[str] = None
    region: Optional[str] = None
    assume_role_arn: Optional[str] = None
    assume_role_session_name: Optional[str] = None
    subscription_id: Optional[str] = None
    tenant_id: Optional[str] = None
    auth_method: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = field(default=None, repr=False)
    scope_type: Optional[str] = None
    scope_value: Optional[str] = None
    scan_targets: Mapping[str, bool] = field(default_factory=dict)
    filters: Mapping[str, str] = field(default_factory=dict)
    include_tags: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider", (self.provider or "").lower())
        object.__setattr__(
            self, "scan_targets", MappingProxyType(dict(self.scan_targets))
        )
        object.__setattr__(self, "filters", MappingProxyType(dict(self.filters)))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScanConfig":
        """Build a ScanConfig from the scan request wire shape.

        Raises:
            ConfigurationError: If the request does not validate
        """
        request = parse_request(ScanRequest, data, "scan")
        return cls(**request.model_dump(exclude={"service_principal_config"}))

    def to_request(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["scan_targets"] = dict(self.scan_targets)
        data["filters"] = dict(self.filters)
        return data

    @property
    def categories(self) -> Sequence[str]:
        """Every category this provider can scan, in scan order."""
        return PROVIDER_CATEGORIES.get(self.provider, ())

    def enabled_categories(self) -> List[str]:
        """Enabled categories in the fixed scan order."""
        return [c for c in self.categories if self.scan_targets.get(c, False)]

    @property
    def name_prefix(self) -> Optional[str]:
        return self.filters.get("name_prefix") or None

    def identity_context(self) -> Dict[str, Any]:
        """Non-secret auth parameters, used as error and log context."""
        if self.provider == "azure":
            keys = ("subscription_id", "tenant_id", "scope_type", "scope_value")
        else:
            keys = ("profile", "region", "assume_role_arn")
        return {
            key: getattr(self, key) for key in keys if getattr(self, key) is not None
        }

    def validate(self) -> None:
        """Reject malformed scan requests before any work starts."""
        parse_request(ScanRequest, self.to_request(), "scan")


@dataclass
class Document:
    """
    Scan result: category name -> ordered list of records, plus the provider.

    Records keep every field the provider returned.
    """

    provider: str
    categories: Dict[str, List[Record]] = field(default_factory=dict)

    def records(self, category: str) -> List[Record]:
        return self.categories.get(category, [])

    def summary(self) -> Dict[str, int]:
        """Record count per category."""
        return {name: len(records) for name, records in self.categories.items()}

    def resource_summary(self) -> Dict[str, int]:
        """Record count per scanned category; derived lists such as attachments are left out."""
        scanned = PROVIDER_CATEGORIES.get(self.provider, ())
        return {name: count for name, count in self.summary().items() if name in scanned}

    def is_empty(self) -> bool:
        return not any(self.categories.values())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"provider": self.provider}
        data.update(self.categories)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Document":
        """Load a document from its flat JSON shape."""
        provider = data.get("provider")
        if not isinstance(provider, str) or not provider:
            raise ConfigurationError(
                "Scan document has no provider", config_section="document"
            )
        nested = data.get("categories")
        source = nested if isinstance(nested, Mapping) else data
        categories = {
            name: list(records)
            for name, records in source.items()
            if name != "provider" and isinstance(records, list)
        }
        return cls(provider=provider, categories=categories)


class ScanStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (ScanStatus.COMPLETED, ScanStatus.FAILED)


@dataclass(frozen=True)
class ScanState:
    """
    Snapshot of one scan. Transitions return a new snapshot and only move
    forward: Pending -> InProgress -> Completed | Failed.
    """

    scan_id: str
    provider: str
    status: ScanStatus = ScanStatus.PENDING
    progress: int = 0
    message: str = "Scan queued"
    document: Optional[Document] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _check_open(self, target: ScanStatus) -> None:
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Scan {self.scan_id} is {self.status.value} and cannot move to {target.value}",
                context={"scan_id": self.scan_id},
            )

    def advance(self, progress: int, message: str) -> "ScanState":
        """Move to (or stay in) InProgress. Progress never goes backwards."""
        self._check_open(ScanStatus.IN_PROGRESS)
        progress = max(self.progress, min(100, max(0, int(progress))))
        return replace(
            self, status=ScanStatus.IN_PROGRESS, progress=progress, message=message
        )

    def complete(self, document: Document, message: str = "Scan completed") -> "ScanState":
        self._check_open(ScanStatus.COMPLETED)
        return replace(
            self,
            status=ScanStatus.COMPLETED,
            progress=100,
            message=message,
            document=document,
        )

    def fail(self, message: str, error: Optional[Dict[str, Any]] = None) -> "ScanState":
        self._check_open(ScanStatus.FAILED)
        return replace(self, status=ScanStatus.FAILED, message=message, error=error)

    def to_report(self) -> Dict[str, Any]:
        """Polling response shape."""
        report: Dict[str, Any] = {
            "scan_id": self.scan_id,
            "provider": self.provider,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
        }
        if self.document is not None:
            report["summary"] = self.document.resource_summary()
        return report


IdentityMarker = Union[str, Mapping[str, Any]]


@dataclass
class Selection:
    """
    Per-category allow-list for code generation.

    A missing category means "include all"; an empty list means "exclude the
    category entirely".
    """

    categories: Dict[str, List[IdentityMarker]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.categories

    def merge(self, updates: Mapping[str, Sequence[IdentityMarker]]) -> "Selection":
        """Return a new selection with each updated category overwritten."""
        merged = dict(self.categories)
        for category, markers in updates.items():
            merged[category] = list(markers)
        return Selection(merged)

    def total_selected(self) -> int:
        return sum(len(markers) for markers in self.categories.values())

    def filter_records(self, category: str, records: Sequence[Record]) -> List[Record]:
        """Apply this selection to one category's records."""
        if self.is_empty() or category not in self.categories:
            return list(records)
        markers = self.categories[category]
        if not markers:
            return []
        wanted = {marker_identity(category, m) for m in markers}
        wanted.discard(None)
        return [r for r in records if identity_of(category, r) in wanted]

    def to_dict(self) -> Dict[str, List[IdentityMarker]]:
        return {name: list(markers) for name, markers in self.categories.items()}


class FileSplitPolicy(str, Enum):
    SINGLE = "single"
    BY_RESOURCE_NAME = "by_resource_name"
    # Reserved for a distinct per-type grouping; currently rendered like SINGLE
    BY_RESOURCE_TYPE = "by_resource_type"

    @classmethod
    def resolve(cls, value: Optional[str]) -> "FileSplitPolicy":
        try:
            return cls(value)
        except ValueError:
            logger.warning(f"⚠️  Unknown file split rule '{value}', using 'single'")
            return cls.SINGLE


@dataclass(frozen=True)
class GenerationConfig:
    """Output layout and naming options for one generation request."""

    output_path: str
    file_split_rule: str = "single"
    naming_convention: str = "snake_case"
    import_script_format: str = "sh"
    generate_readme: bool = True
    generator: str = "terraform"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GenerationConfig":
        request = parse_request(GenerationRequest, data, "generation")
        return cls(**request.model_dump())

    @property
    def split_policy(self) -> FileSplitPolicy:
        return FileSplitPolicy.resolve(self.file_split_rule)

    @property
    def script_format(self) -> str:
        return IMPORT_SCRIPT_FORMATS[self.import_script_format.lower()]

    def validate(self) -> None:
        parse_request(
            GenerationRequest,
            {f.name: getattr(self, f.name) for f in fields(self)},
            "generation",
        )


@dataclass(frozen=True)
class GenerationResult:
    generation_id: str
    output_path: str
    files: List[str]
    import_script_path: Optional[str] = None
    preview: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation_id": self.generation_id,
            "output_path": self.output_path,
            "files": list(self.files),
            "import_script_path": self.import_script_path,
            "preview": dict(self.preview) if self.preview is not None else None,
        }


@dataclass(frozen=True)
class ResourcePage:
    resources: List[Record]
    total: int
    page: int
    page_size: int
    provider: str

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.total else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resources": self.resources,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "provider": self.provider,
        }
