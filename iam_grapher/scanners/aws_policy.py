"""Helpers for IAM policy documents returned by the AWS API."""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import unquote

logger = logging.getLogger(__name__)

PRINCIPAL_KINDS = ("Service", "AWS", "Federated")


def decode_policy_document(
    document: Union[str, Dict[str, Any], None],
) -> Optional[Dict[str, Any]]:
    """
    Return a policy document as a dict.

    The raw API returns URL-encoded JSON; boto3 usually decodes it already.
    Undecodable input yields None.
    """
    if document is None:
        return None
    if isinstance(document, dict):
        return document
    try:
        parsed = json.loads(unquote(document))
    except (TypeError, ValueError) as e:
        logger.warning(f"⚠️  Failed to parse policy document: {e}")
        return None
    return parsed if isinstance(parsed, dict) else None


def _as_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []


def _principal(principal: Any) -> Tuple[str, List[str]]:
    if principal == "*":
        return "AWS", ["*"]
    if isinstance(principal, dict):
        for kind in PRINCIPAL_KINDS:
            if kind in principal:
                return kind, _as_list(principal[kind])
    return "Unknown", []


def parse_trust_statements(document: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten the statements of a role trust policy."""
    if not document:
        return []
    statements = document.get("Statement")
    if isinstance(statements, dict):
        statements = [statements]
    if not isinstance(statements, list):
        logger.warning("⚠️  Trust policy has no Statement array")
        return []

    parsed = []
    for statement in statements:
        if not isinstance(statement, dict) or not isinstance(
            statement.get("Effect"), str
        ):
            continue
        principal_type, identifiers = _principal(statement.get("Principal"))
        conditions = []
        for operator, clauses in (statement.get("Condition") or {}).items():
            if isinstance(clauses, dict):
                for key, value in clauses.items():
                    conditions.append(
                        {"operator": operator, "key": key, "value": value}
                    )
        parsed.append(
            {
                "effect": statement["Effect"],
                "principal_type": principal_type,
                "principal_identifiers": identifiers,
                "actions": _as_list(statement.get("Action")),
                "conditions": conditions,
            }
        )
    return parsed
