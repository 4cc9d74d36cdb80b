"""Resource label naming conventions for generated code."""

import re
from typing import Dict

NAMING_CONVENTIONS = ("snake_case", "kebab-case", "original")

_INVALID_LABEL_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def apply_naming_convention(name: str, convention: str) -> str:
    """Transform a resource name according to a naming convention.

    Args:
        name: Original resource name
        convention: "snake_case", "kebab-case" or "original"

    Returns:
        Transformed name; unknown conventions return the name unchanged
    """
    if convention == "snake_case":
        return name.replace("-", "_").replace(".", "_").lower()
    if convention == "kebab-case":
        return name.replace("_", "-").replace(".", "-").lower()
    return name


def sanitize_label(name: str) -> str:
    """Sanitize a name for use as a Terraform resource label.

    Args:
        name: Name after the naming convention was applied

    Returns:
        Label containing only letters, digits, underscores and dashes
    """
    sanitized = _INVALID_LABEL_CHARS.sub("_", name)

    # Labels must start with a letter or underscore
    if sanitized and sanitized[0].isdigit():
        sanitized = f"r_{sanitized}"

    return sanitized or "unnamed_resource"


class LabelAllocator:
    """Hands out unique resource labels within one category."""

    def __init__(self, convention: str) -> None:
        self.convention = convention
        self._counts: Dict[str, int] = {}

    def allocate(self, name: str) -> str:
        base = sanitize_label(apply_naming_convention(name, self.convention))
        count = self._counts.get(base, 0) + 1
        self._counts[base] = count
        if count == 1:
            return base
        label = f"{base}_{count}"
        # A generated suffix can collide with a real name; keep counting
        while label in self._counts:
            count += 1
            label = f"{base}_{count}"
        self._counts[base] = count
        self._counts[label] = 1
        return label
