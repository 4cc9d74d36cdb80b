"""
Validation Service

Runs the Terraform CLI over the output directory of a generation. Every
operation is keyed by generation id; the directory comes from the
GenerationService that produced (or registered) it.
"""

from typing import List, Optional

import structlog

from iam_grapher.services.generation_service import GenerationService
from iam_grapher.validators import (
    FormatResult,
    TerraformValidator,
    TerraformVersion,
    ValidationResult,
)

logger = structlog.get_logger(__name__)


class ValidationService:
    def __init__(
        self,
        generation: GenerationService,
        validator: Optional[TerraformValidator] = None,
    ) -> None:
        self.generation = generation
        self.validator = validator or TerraformValidator()

    def check_terraform(self) -> TerraformVersion:
        version = self.validator.check_terraform()
        logger.info(
            "terraform_checked", available=version.available, version=version.version
        )
        return version

    def validate_generation(self, generation_id: str) -> ValidationResult:
        """
        Run terraform init + validate on a generation's output.

        Raises:
            IamGrapherError: Unknown generation id or missing output directory
        """
        out_dir = self.generation.output_dir(generation_id)
        result = self.validator.validate(out_dir)
        logger.info(
            "generation_validated",
            generation_id=generation_id,
            valid=result.valid,
            terraform_available=result.terraform_available,
            errors=len(result.errors),
            warnings=len(result.warnings),
        )
        return result

    def check_format(self, generation_id: str) -> FormatResult:
        """
        Raises:
            IamGrapherError: Unknown generation id or missing output directory
            TerraformCommandError: Terraform is missing or fmt fails
        """
        out_dir = self.generation.output_dir(generation_id)
        result = self.validator.check_format(out_dir)
        logger.info(
            "format_checked",
            generation_id=generation_id,
            formatted=result.formatted,
            files_changed=result.files_changed,
        )
        return result

    def format_code(self, generation_id: str) -> List[str]:
        """Rewrite a generation's files with terraform fmt; returns the changed files."""
        out_dir = self.generation.output_dir(generation_id)
        files = self.validator.format_code(out_dir)
        logger.info("code_formatted", generation_id=generation_id, files=files)
        return files
