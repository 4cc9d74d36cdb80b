"""
Generation Service

Renders a completed scan into infrastructure code. Every request writes into
its own directory named after a fresh generation id, so concurrent requests
never share files.
"""

import shutil
import uuid
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import structlog

from iam_grapher.config_manager import GenerationDefaults
from iam_grapher.exceptions import GenerationEmptyError, IamGrapherError
from iam_grapher.generators import CodeGenerator, get_generator
from iam_grapher.generators.templates import TemplateStore
from iam_grapher.models import Document, GenerationConfig, GenerationResult, Selection
from iam_grapher.services.scan_orchestrator import ScanOrchestrator
from iam_grapher.stores import ReadWriteLock, SelectionStore

logger = structlog.get_logger(__name__)

README_FILE = "README.md"


def truncate_preview(content: str, max_chars: int) -> str:
    if len(content) <= max_chars:
        return content
    return content[:max_chars] + "..."


class GenerationService:
    def __init__(
        self,
        orchestrator: ScanOrchestrator,
        selections: SelectionStore,
        template_store: Optional[TemplateStore] = None,
        defaults: Optional[GenerationDefaults] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.selections = selections
        self.template_store = template_store
        self.defaults = defaults or GenerationDefaults()
        self._lock = ReadWriteLock()
        self._outputs: Dict[str, Path] = {}

    def _generator(self, name: str) -> CodeGenerator:
        try:
            generator_class = get_generator(name)
        except KeyError as e:
            raise IamGrapherError(
                str(e.args[0]), error_code="UNKNOWN_GENERATOR", context={"generator": name}
            ) from e
        if self.template_store is not None:
            return generator_class(template_store=self.template_store)
        return generator_class()

    def generate(
        self,
        scan_id: str,
        config: GenerationConfig,
        selection: Optional[Selection] = None,
    ) -> GenerationResult:
        """
        Generate code for a completed scan.

        Args:
            scan_id: Completed scan
            config: Output layout and naming options
            selection: Allow-list to apply; the stored selection when None

        Raises:
            ConfigurationError: The generation config is malformed
            ScanNotFoundError / ScanNotCompletedError: No document for scan_id
            TemplateError: A template is missing or fails to render
            GenerationEmptyError: No file was produced
        """
        config.validate()
        document = self.orchestrator.get_document(scan_id)
        if selection is None:
            selection = self.selections.get(scan_id)
        return self.generate_from_document(document, config, selection, scan_id=scan_id)

    def generate_from_document(
        self,
        document: Document,
        config: GenerationConfig,
        selection: Selection,
        scan_id: Optional[str] = None,
    ) -> GenerationResult:
        config.validate()
        generator = self._generator(config.generator)
        generation_id = str(uuid.uuid4())
        out_dir = Path(config.output_path) / generation_id
        out_dir.mkdir(parents=True, exist_ok=True)

        # A failed generation leaves no partial output directory behind
        try:
            files = generator.generate(document, config, selection, out_dir)
            if not files:
                raise GenerationEmptyError(
                    "No Terraform files were generated", scan_id=scan_id
                )
            import_script = generator.generate_import_script(
                document, config, selection, out_dir
            )

            preview = {
                name: truncate_preview(
                    (out_dir / name).read_text(encoding="utf-8"),
                    self.defaults.preview_chars,
                )
                for name in files + ([import_script] if import_script else [])
            }

            readme = (
                generator.render_readme(document, files, import_script)
                if config.generate_readme
                else None
            )
            if readme:
                (out_dir / README_FILE).write_text(readme, encoding="utf-8")
                files = files + [README_FILE]
        except Exception:
            shutil.rmtree(out_dir, ignore_errors=True)
            raise

        with self._lock.write():
            self._outputs[generation_id] = out_dir

        logger.info(
            "generation_completed",
            generation_id=generation_id,
            scan_id=scan_id,
            provider=document.provider,
            file_count=len(files),
            import_script=import_script,
        )
        return GenerationResult(
            generation_id=generation_id,
            output_path=str(out_dir),
            files=files,
            import_script_path=import_script,
            preview=preview,
        )

    def register_output(self, out_dir: Path) -> str:
        """Track an existing output directory (e.g. from an earlier run) under a new generation id."""
        if not out_dir.is_dir():
            raise IamGrapherError(
                f"Generation output directory does not exist: {out_dir}",
                error_code="GENERATION_NOT_FOUND",
                context={"output_path": str(out_dir)},
            )
        generation_id = str(uuid.uuid4())
        with self._lock.write():
            self._outputs[generation_id] = out_dir
        logger.info(
            "generation_registered", generation_id=generation_id, output_path=str(out_dir)
        )
        return generation_id

    def output_dir(self, generation_id: str) -> Path:
        with self._lock.read():
            out_dir = self._outputs.get(generation_id)
        if out_dir is None:
            raise IamGrapherError(
                f"Generation output not found: {generation_id}",
                error_code="GENERATION_NOT_FOUND",
                context={"generation_id": generation_id},
                recovery_suggestion="Generate code first and use the returned generation id",
            )
        if not out_dir.is_dir():
            raise IamGrapherError(
                "Generation output directory does not exist",
                error_code="GENERATION_NOT_FOUND",
                context={"generation_id": generation_id, "output_path": str(out_dir)},
            )
        return out_dir

    def list_files(self, generation_id: str) -> List[Path]:
        out_dir = self.output_dir(generation_id)
        return sorted(p for p in out_dir.rglob("*") if p.is_file())

    def create_archive(
        self, generation_id: str, output_path: Optional[Path] = None
    ) -> Path:
        """
        Zip the output directory of a generation.

        Returns:
            Path to the archive; defaults to <generation dir>.zip
        """
        out_dir = self.output_dir(generation_id)
        zip_path = output_path or out_dir.with_suffix(".zip")
        files = self.list_files(generation_id)
        with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zf:
            for file_path in files:
                zf.write(file_path, file_path.relative_to(out_dir).as_posix())
        logger.info(
            "archive_created",
            generation_id=generation_id,
            archive=str(zip_path),
            file_count=len(files),
        )
        return zip_path
