"""Accessors for dynamically shaped resource records.

Records are plain ordered dicts as returned by the scanners. Unknown fields are
preserved untouched; these helpers only know which fields identify and label a
record in each category.
"""

from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

Record = Dict[str, Any]

AWS_CATEGORIES: Tuple[str, ...] = ("users", "groups", "roles", "policies")
AZURE_CATEGORIES: Tuple[str, ...] = ("role_definitions", "role_assignments")

PROVIDER_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    "aws": AWS_CATEGORIES,
    "azure": AZURE_CATEGORIES,
}

# Field precedence used to extract the identity of a record or selection marker
IDENTITY_FIELDS: Dict[str, Tuple[str, ...]] = {
    "users": ("user_name",),
    "groups": ("group_name",),
    "roles": ("role_name",),
    "policies": ("arn", "policy_name"),
    "role_definitions": ("role_definition_id", "id"),
    "role_assignments": ("assignment_id", "id", "name"),
}
FALLBACK_IDENTITY_FIELDS: Tuple[str, ...] = ("arn", "id", "name")

# Fields used to build human readable labels and file names
LABEL_FIELDS: Dict[str, Tuple[str, ...]] = {
    "users": ("user_name",),
    "groups": ("group_name",),
    "roles": ("role_name",),
    "policies": ("policy_name", "arn"),
    "role_definitions": ("role_name", "role_definition_id"),
    "role_assignments": ("assignment_id",),
}


def _first_string(record: Mapping[str, Any], fields: Sequence[str]) -> Optional[str]:
    for name in fields:
        value = record.get(name)
        if isinstance(value, str) and value:
            return value
    return None


def identity_of(category: str, record: Mapping[str, Any]) -> Optional[str]:
    """Return the identity of a record (or identity-bearing marker object)."""
    identity = _first_string(record, IDENTITY_FIELDS.get(category, ()))
    if identity is None:
        identity = _first_string(record, FALLBACK_IDENTITY_FIELDS)
    return identity


def marker_identity(category: str, marker: Any) -> Optional[str]:
    """Resolve a selection marker (raw string or object) to an identity string."""
    if isinstance(marker, str):
        return marker
    if isinstance(marker, Mapping):
        return identity_of(category, marker)
    return None


def label_of(category: str, record: Mapping[str, Any]) -> str:
    """Return the display label of a record, falling back to its identity."""
    label = _first_string(record, LABEL_FIELDS.get(category, ()))
    return label or identity_of(category, record) or category


def resolve_path(record: Any, path: Sequence[str]) -> Tuple[bool, Any]:
    """
    Walk a dotted field path through nested mappings.

    Returns (found, value). A missing key or a non-mapping intermediate gives
    (False, None).
    """
    current = record
    for part in path:
        if not isinstance(current, Mapping) or part not in current:
            return False, None
        current = current[part]
    return True, current
