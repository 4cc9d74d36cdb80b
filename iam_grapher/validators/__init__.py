"""Validators for generated infrastructure code."""

from .terraform_validator import (
    FormatResult,
    TerraformValidator,
    TerraformVersion,
    ValidationResult,
)

__all__ = [
    "FormatResult",
    "TerraformValidator",
    "TerraformVersion",
    "ValidationResult",
]
