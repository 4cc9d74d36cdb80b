"""
Terraform CLI Validation

Checks generated Terraform with the terraform binary: version lookup,
terraform init + validate, and fmt check/rewrite. Validation degrades
gracefully when Terraform is not installed.
"""

import json
import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from iam_grapher.exceptions import TerraformCommandError

logger = logging.getLogger(__name__)

INSTALL_HINT = "Install Terraform from https://www.terraform.io/downloads"


@dataclass(frozen=True)
class TerraformVersion:
    version: str
    available: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "available": self.available}


@dataclass
class ValidationResult:
    """Result of terraform init + validate on one directory."""

    valid: bool
    """Whether the Terraform configuration is valid"""

    terraform_available: bool
    """Whether Terraform CLI is installed"""

    init_success: bool = False
    validate_success: bool = False

    errors: List[str] = field(default_factory=list)
    """Error diagnostics as 'summary: detail'"""

    warnings: List[str] = field(default_factory=list)

    error_message: Optional[str] = None
    """Why validation could not run or failed"""

    init_output: Optional[str] = None
    validate_output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "terraform_available": self.terraform_available,
            "init_success": self.init_success,
            "validate_success": self.validate_success,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "error_message": self.error_message,
        }


@dataclass
class FormatResult:
    """Result of terraform fmt -check."""

    formatted: bool
    diff: Optional[str] = None
    files_changed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formatted": self.formatted,
            "diff": self.diff,
            "files_changed": list(self.files_changed),
        }


def diagnostic_message(diagnostic: Dict[str, Any]) -> str:
    summary = diagnostic.get("summary", "")
    detail = diagnostic.get("detail", "")
    return f"{summary}: {detail}" if detail else summary


def files_in_diff(diff: str) -> List[str]:
    """File names named by the ---/+++ header lines of a fmt diff."""
    files: List[str] = []
    for line in diff.splitlines():
        if not line.startswith(("--- ", "+++ ")):
            continue
        parts = line.split()
        if len(parts) < 2:
            continue
        name = parts[1]
        for prefix in ("old/", "new/"):
            if name.startswith(prefix):
                name = name[len(prefix):]
        if name not in files:
            files.append(name)
    return files


class TerraformValidator:
    """
    Runs the Terraform CLI against a directory of generated files.

    This validator:
    1. Checks if Terraform CLI is installed
    2. Runs terraform init (no backend) and terraform validate -json
    3. Checks or rewrites formatting with terraform fmt

    If Terraform is not installed, validate() returns an unavailable result
    with a warning; the fmt operations raise TerraformCommandError.
    """

    def __init__(
        self,
        binary: str = "terraform",
        init_timeout: int = 60,
        command_timeout: int = 30,
    ) -> None:
        self.binary = binary
        self.init_timeout = init_timeout
        self.command_timeout = command_timeout

    def is_available(self) -> bool:
        return shutil.which(self.binary) is not None

    def _run(
        self, args: List[str], working_dir: Optional[Path], timeout: int
    ) -> "subprocess.CompletedProcess[str]":
        command = " ".join([self.binary] + args)
        try:
            return subprocess.run(
                [self.binary] + args,
                cwd=working_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise TerraformCommandError(
                f"{command} timed out after {timeout} seconds", command=command, cause=e
            ) from e
        except OSError as e:
            raise TerraformCommandError(
                f"Failed to run {command}: {e}",
                command=command,
                cause=e,
                recovery_suggestion=INSTALL_HINT,
            ) from e

    def _require_available(self) -> None:
        if not self.is_available():
            raise TerraformCommandError(
                "Terraform CLI not installed",
                command=self.binary,
                recovery_suggestion=INSTALL_HINT,
            )

    def check_terraform(self) -> TerraformVersion:
        """
        Report the installed Terraform version.

        Returns:
            TerraformVersion; available=False with an empty version when the
            binary is missing or does not answer
        """
        if not self.is_available():
            return TerraformVersion(version="", available=False)
        try:
            result = self._run(["version", "-json"], None, self.command_timeout)
        except TerraformCommandError as e:
            logger.warning(f"⚠️  {e.message}")
            return TerraformVersion(version="", available=False)
        if result.returncode != 0:
            return TerraformVersion(version="", available=False)
        try:
            version = json.loads(result.stdout).get("terraform_version", "")
        except ValueError:
            # Older releases have no -json; first line reads "Terraform v1.x.y"
            first_line = (result.stdout.splitlines() or [""])[0]
            version = first_line.replace("Terraform", "").strip().lstrip("v")
        return TerraformVersion(version=version, available=True)

    def validate(self, working_dir: Path) -> ValidationResult:
        """
        Validate Terraform configuration at the given path.

        Args:
            working_dir: Directory containing Terraform files

        Returns:
            ValidationResult with validation status and diagnostics
        """
        if not self.is_available():
            logger.warning(f"⚠️  Terraform CLI not found. Skipping validation. {INSTALL_HINT}")
            return ValidationResult(
                valid=False,
                terraform_available=False,
                error_message="Terraform CLI not installed",
            )

        if not working_dir.is_dir():
            return ValidationResult(
                valid=False,
                terraform_available=True,
                error_message=f"Output path does not exist: {working_dir}",
            )

        logger.info(f"Running terraform init in {working_dir}...")
        try:
            init = self._run(
                ["init", "-backend=false", "-input=false", "-no-color"],
                working_dir,
                self.init_timeout,
            )
        except TerraformCommandError as e:
            return ValidationResult(
                valid=False, terraform_available=True, error_message=e.message
            )
        if init.returncode != 0:
            error = init.stderr or init.stdout
            logger.error(f"❌ terraform init failed: {error}")
            return ValidationResult(
                valid=False,
                terraform_available=True,
                error_message=error,
                init_output=init.stdout,
            )
        logger.info("✅ terraform init succeeded")

        logger.info("Running terraform validate...")
        try:
            check = self._run(
                ["validate", "-no-color", "-json"], working_dir, self.command_timeout
            )
        except TerraformCommandError as e:
            return ValidationResult(
                valid=False,
                terraform_available=True,
                init_success=True,
                error_message=e.message,
                init_output=init.stdout,
            )

        try:
            report = json.loads(check.stdout)
        except ValueError:
            error = check.stderr or check.stdout
            logger.error(f"❌ terraform validate failed: {error}")
            return ValidationResult(
                valid=False,
                terraform_available=True,
                init_success=True,
                error_message=error,
                init_output=init.stdout,
                validate_output=check.stdout,
            )

        diagnostics = report.get("diagnostics") or []
        errors = [diagnostic_message(d) for d in diagnostics if d.get("severity") == "error"]
        warnings = [
            diagnostic_message(d) for d in diagnostics if d.get("severity") == "warning"
        ]
        valid = bool(report.get("valid")) and check.returncode == 0
        if valid:
            logger.info("✅ terraform validate succeeded - Generated Terraform is valid")
        else:
            logger.error(f"❌ terraform validate reported {len(errors)} error(s)")
        return ValidationResult(
            valid=valid,
            terraform_available=True,
            init_success=True,
            validate_success=valid,
            errors=errors,
            warnings=warnings,
            error_message=None if valid else "; ".join(errors) or check.stderr or None,
            init_output=init.stdout,
            validate_output=check.stdout,
        )

    def check_format(self, working_dir: Path) -> FormatResult:
        """
        Run terraform fmt -check without rewriting anything.

        Raises:
            TerraformCommandError: Terraform is missing or cannot parse the files
        """
        self._require_available()
        result = self._run(
            ["fmt", "-check", "-diff", "-recursive", "-no-color"],
            working_dir,
            self.command_timeout,
        )
        if result.returncode == 0:
            return FormatResult(formatted=True)
        if not result.stdout and result.stderr:
            raise TerraformCommandError(
                f"terraform fmt failed: {result.stderr.strip()}",
                command="terraform fmt -check",
                output=result.stderr,
            )
        return FormatResult(
            formatted=False,
            diff=result.stdout,
            files_changed=files_in_diff(result.stdout),
        )

    def format_code(self, working_dir: Path) -> List[str]:
        """
        Rewrite files in place with terraform fmt.

        Returns:
            Files that were reformatted, relative to working_dir

        Raises:
            TerraformCommandError: Terraform is missing or fmt fails
        """
        self._require_available()
        result = self._run(
            ["fmt", "-recursive", "-list=true", "-no-color"],
            working_dir,
            self.command_timeout,
        )
        if result.returncode != 0:
            raise TerraformCommandError(
                f"terraform fmt failed: {(result.stderr or result.stdout).strip()}",
                command="terraform fmt",
                output=result.stderr,
            )
        files = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        logger.info(f"✅ terraform fmt rewrote {len(files)} file(s)")
        return files
