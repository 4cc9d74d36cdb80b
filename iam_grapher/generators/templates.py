"""
Two-tier template store for code generation.

Templates are looked up by logical name (e.g. "aws/iam_user.tf.j2") in a user
override directory first and the bundled default directory second.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any, Dict, List, Mapping, Optional, Tuple

import jinja2
from jinja2 import Environment, FileSystemLoader

from iam_grapher.config_manager import TemplateConfig
from iam_grapher.exceptions import (
    ConfigurationError,
    TemplateNotFoundError,
    TemplateRenderError,
    TemplateSyntaxError,
)

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".j2"
USER_SOURCE = "user"
DEFAULT_SOURCE = "default"


def hcl_string(value: Any) -> str:
    """Render a value as a quoted HCL string literal; None becomes null."""
    if value is None or isinstance(value, jinja2.Undefined):
        return "null"
    if isinstance(value, bool):
        value = "true" if value else "false"
    quoted = json.dumps(str(value), ensure_ascii=False)
    # Literal ${ and %{ would otherwise start template interpolation
    return quoted.replace("${", "$${").replace("%{", "%%{")


def hcl_json(value: Any) -> str:
    """Render a value as JSON text inside an HCL string.

    Strings are taken to be JSON documents already and are passed through.
    """
    if value is None or isinstance(value, jinja2.Undefined):
        return "null"
    text = value if isinstance(value, str) else json.dumps(value, sort_keys=True)
    return hcl_string(text)


def hcl_list(values: Any) -> str:
    """Render a sequence as an HCL list of strings."""
    if not values:
        return "[]"
    return "[" + ", ".join(hcl_string(v) for v in values) + "]"


def validate_template_name(name: str) -> str:
    """
    Check that a template name is a relative path inside a template tier.

    Raises:
        ConfigurationError: For empty names, absolute paths or '..' segments
    """
    normalized = (name or "").replace("\\", "/").strip()
    path = PurePosixPath(normalized)
    if not normalized or path.is_absolute() or ".." in path.parts:
        raise ConfigurationError(
            f"Invalid template name '{name}'",
            config_section="templates",
            recovery_suggestion="Use a relative name such as 'aws/iam_user.tf.j2'",
        )
    return str(path)


class TemplateStore(ABC):
    """Resolves templates by logical name and renders them."""

    @abstractmethod
    def searched_paths(self, name: str) -> List[str]:
        """Every location checked when resolving name, in precedence order."""

    @abstractmethod
    def get_source(self, name: str) -> Tuple[str, str]:
        """Return (content, source tier) for a template."""

    @abstractmethod
    def render(self, name: str, context: Mapping[str, Any]) -> str:
        """Render the named template with context."""

    @abstractmethod
    def render_string(
        self, content: str, context: Mapping[str, Any], name: str = "<string>"
    ) -> str:
        """Render template text that is not stored in any tier."""

    @abstractmethod
    def list_templates(self) -> List[Dict[str, Any]]:
        """Describe every template from both tiers."""

    @abstractmethod
    def save(self, name: str, content: str) -> str:
        """Write a template into the user tier and return its path."""

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove a template from the user tier."""


class FileSystemTemplateStore(TemplateStore):
    """Template store backed by a user directory and a bundled default directory."""

    def __init__(self, user_dir: Path, default_dir: Path) -> None:
        self.user_dir = Path(user_dir)
        self.default_dir = Path(default_dir)
        self.env = Environment(
            loader=FileSystemLoader([str(self.user_dir), str(self.default_dir)]),
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.env.filters["hcl_string"] = hcl_string
        self.env.filters["hcl_json"] = hcl_json
        self.env.filters["hcl_list"] = hcl_list

    @classmethod
    def from_config(cls, config: Optional[TemplateConfig] = None) -> "FileSystemTemplateStore":
        config = config or TemplateConfig()
        return cls(Path(config.user_dir), Path(config.default_dir))

    def _tiers(self) -> List[Tuple[str, Path]]:
        return [(USER_SOURCE, self.user_dir), (DEFAULT_SOURCE, self.default_dir)]

    def searched_paths(self, name: str) -> List[str]:
        name = validate_template_name(name)
        return [str(base / name) for _, base in self._tiers()]

    def get_source(self, name: str) -> Tuple[str, str]:
        name = validate_template_name(name)
        for source, base in self._tiers():
            path = base / name
            if path.is_file():
                return path.read_text(encoding="utf-8"), source
        raise TemplateNotFoundError(
            f"Template not found: {name}",
            template_name=name,
            searched_paths=self.searched_paths(name),
        )

    def render(self, name: str, context: Mapping[str, Any]) -> str:
        name = validate_template_name(name)
        try:
            template = self.env.get_template(name)
        except jinja2.TemplateNotFound:
            raise TemplateNotFoundError(
                f"Template not found: {name}",
                template_name=name,
                searched_paths=self.searched_paths(name),
            ) from None
        except jinja2.TemplateSyntaxError as e:
            raise TemplateSyntaxError(
                f"Syntax error in template {name} line {e.lineno}: {e.message}",
                template_name=name,
                searched_paths=self.searched_paths(name),
                cause=e,
            ) from e
        return self._render(template, name, context)

    def render_string(
        self, content: str, context: Mapping[str, Any], name: str = "<string>"
    ) -> str:
        try:
            template = self.env.from_string(content)
        except jinja2.TemplateSyntaxError as e:
            raise TemplateSyntaxError(
                f"Syntax error in template {name} line {e.lineno}: {e.message}",
                template_name=name,
                cause=e,
            ) from e
        return self._render(template, name, context)

    def _render(
        self, template: jinja2.Template, name: str, context: Mapping[str, Any]
    ) -> str:
        try:
            return template.render(**context)
        except (
            jinja2.TemplateError, TypeError, ValueError, AttributeError, ArithmeticError
        ) as e:
            raise TemplateRenderError(
                f"Failed to render template {name}: {e}",
                template_name=name,
                cause=e,
            ) from e

    def _names_in(self, base: Path) -> List[str]:
        if not base.is_dir():
            return []
        return sorted(
            path.relative_to(base).as_posix()
            for path in base.rglob(f"*{TEMPLATE_SUFFIX}")
            if path.is_file()
        )

    def list_templates(self) -> List[Dict[str, Any]]:
        defaults = set(self._names_in(self.default_dir))
        overrides = set(self._names_in(self.user_dir))
        templates = []
        for name in sorted(defaults | overrides):
            templates.append(
                {
                    "name": name,
                    "provider": name.split("/", 1)[0] if "/" in name else None,
                    "source": USER_SOURCE if name in overrides else DEFAULT_SOURCE,
                    "has_default": name in defaults,
                    "has_user_override": name in overrides,
                }
            )
        return templates

    def save(self, name: str, content: str) -> str:
        name = validate_template_name(name)
        path = self.user_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        self._clear_cache()
        logger.info(f"💾 Saved user template {name} to {path}")
        return str(path)

    def delete(self, name: str) -> None:
        name = validate_template_name(name)
        path = self.user_dir / name
        if not path.is_file():
            raise TemplateNotFoundError(
                f"User template not found: {name}",
                template_name=name,
                searched_paths=[str(path)],
                recovery_suggestion="Bundled default templates are read-only and cannot be deleted",
            )
        path.unlink()
        self._clear_cache()
        logger.info(f"🗑️  Deleted user template {name}")

    def _clear_cache(self) -> None:
        # A new override must win over a default that is already compiled
        if self.env.cache is not None:
            self.env.cache.clear()
