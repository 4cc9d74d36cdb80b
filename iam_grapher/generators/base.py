"""Base generator class for infrastructure code generation.

This module defines the abstract base class for all code generators,
providing a common interface for different target formats.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from iam_grapher.models import Document, GenerationConfig, Selection

from .templates import FileSystemTemplateStore, TemplateStore


class CodeGenerator(ABC):
    """Abstract base class for infrastructure code generators.

    A generator turns the records of a completed scan into source files and
    an optional import script inside an output directory.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        template_store: Optional[TemplateStore] = None,
    ) -> None:
        """Initialize generator with optional configuration.

        Args:
            config: Optional generator-specific configuration
            template_store: Template lookup; the configured two-tier store when None
        """
        self.config = config or {}
        self.template_store = template_store or FileSystemTemplateStore.from_config()

    @abstractmethod
    def generate(
        self,
        document: Document,
        config: GenerationConfig,
        selection: Selection,
        out_dir: Path,
    ) -> List[str]:
        """Render the selected records into files under out_dir.

        Args:
            document: Completed scan document
            config: Output layout and naming options
            selection: Per-category allow-list
            out_dir: Output directory path

        Returns:
            Names of the written files, relative to out_dir
        """
        raise NotImplementedError("Code generation not yet implemented")

    @abstractmethod
    def generate_import_script(
        self,
        document: Document,
        config: GenerationConfig,
        selection: Selection,
        out_dir: Path,
    ) -> Optional[str]:
        """Write an import script for the selected records.

        Returns:
            Name of the written script, or None when no resource is importable
        """
        raise NotImplementedError("Import script generation not yet implemented")

    @abstractmethod
    def supported_categories(self, provider: str) -> List[str]:
        """Get the categories this generator renders for a provider."""
        raise NotImplementedError("Category enumeration not yet implemented")

    def render_readme(
        self, document: Document, files: List[str], import_script: Optional[str]
    ) -> Optional[str]:
        """Return README text for the output directory, or None for no README."""
        return None

    def get_format_name(self) -> str:
        """Get the name of the output format.

        Returns:
            Format name (e.g., 'terraform')
        """
        return self.__class__.__name__.replace("Generator", "").lower()
