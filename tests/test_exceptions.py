"""
Tests for the exception hierarchy and provider exception wrapping.
"""

from botocore.exceptions import NoCredentialsError

from iam_grapher.exceptions import (
    AuthenticationError,
    CategoryEnumerationError,
    ConfigurationError,
    GenerationEmptyError,
    IamGrapherError,
    ScanError,
    ScanNotCompletedError,
    ScanNotFoundError,
    TemplateNotFoundError,
    TerraformCommandError,
    wrap_provider_exception,
)


class TestIamGrapherError:
    def test_str_includes_code_context_and_suggestion(self):
        error = IamGrapherError(
            "Something failed",
            error_code="X",
            context={"scan_id": "s1"},
            cause=ValueError("inner"),
            recovery_suggestion="Retry",
        )
        text = str(error)
        assert text.startswith("[X] Something failed")
        assert "scan_id=s1" in text
        assert "caused by: inner" in text
        assert "suggestion: Retry" in text

    def test_to_dict(self):
        error = ConfigurationError("bad", config_section="scan")
        assert error.to_dict() == {
            "error_type": "ConfigurationError",
            "message": "bad",
            "error_code": "CONFIGURATION_ERROR",
            "context": {"config_section": "scan"},
            "cause": None,
            "recovery_suggestion": None,
        }


class TestHierarchy:
    def test_scan_errors(self):
        assert issubclass(AuthenticationError, ScanError)
        assert issubclass(CategoryEnumerationError, ScanError)

    def test_not_completed_is_a_not_found(self):
        error = ScanNotCompletedError("s1", "in_progress")
        assert isinstance(error, ScanNotFoundError)
        assert error.context == {"status": "in_progress", "scan_id": "s1"}
        assert error.error_code == "SCAN_NOT_COMPLETED"

    def test_template_not_found_context(self):
        error = TemplateNotFoundError("missing", template_name="a.j2", searched_paths=["/u/a.j2", "/d/a.j2"])
        assert error.context["searched_paths"] == "/u/a.j2, /d/a.j2"
        assert error.searched_paths == ["/u/a.j2", "/d/a.j2"]

    def test_generation_empty_lists_three_causes(self):
        error = GenerationEmptyError("nothing", scan_id="s1")
        assert len(error.causes) == 3
        assert "(3) templates failed to load" in error.recovery_suggestion

    def test_terraform_command_error_keeps_output(self):
        error = TerraformCommandError("fmt failed", command="terraform fmt", output="stderr text")
        assert error.context == {"command": "terraform fmt"}
        assert error.error_code == "TERRAFORM_COMMAND_FAILED"
        assert error.output == "stderr text"


class TestWrapProviderException:
    def test_passes_through_own_errors(self):
        error = ConfigurationError("x")
        assert wrap_provider_exception(error) is error

    def test_credentials(self):
        wrapped = wrap_provider_exception(
            NoCredentialsError(), category="users", provider="aws", context={"profile": "p"}
        )
        assert isinstance(wrapped, AuthenticationError)
        assert wrapped.context == {"profile": "p", "provider": "aws"}

    def test_listing_failure(self):
        context = {"profile": "p"}
        wrapped = wrap_provider_exception(
            RuntimeError("denied"), category="roles", provider="aws", context=context
        )
        assert isinstance(wrapped, CategoryEnumerationError)
        assert wrapped.category == "roles"
        assert "iam:List*" in wrapped.recovery_suggestion
        # Caller's context is copied
        assert context == {"profile": "p"}

    def test_azure_suggestion(self):
        wrapped = wrap_provider_exception(RuntimeError("403"), category="role_assignments", provider="azure")
        assert "Microsoft.Authorization/*/read" in wrapped.recovery_suggestion
