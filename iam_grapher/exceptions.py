"""
Custom Exception Hierarchy for IAM Grapher

This module provides the exception hierarchy shared by the scanners, the query
engine and the code generator. Every error carries structured context so the
caller can act on it (scan ids, profiles, searched template paths).
"""

from typing import Any, Dict, List, Optional, Sequence


class IamGrapherError(Exception):
    """
    Base exception class for all IAM Grapher related errors.

    Provides structured error information including context, error codes,
    and optional recovery suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with error context
            cause: Optional underlying exception that caused this error
            recovery_suggestion: Optional suggestion for error recovery
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Configuration exceptions
class ConfigurationError(IamGrapherError):
    """Raised when a scan or generation request is malformed."""

    def __init__(
        self, message: str, config_section: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if config_section:
            context["config_section"] = config_section
        kwargs["context"] = context
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        super().__init__(message, **kwargs)


# Scan exceptions
class ScanError(IamGrapherError):
    """Base class for errors raised while scanning a provider."""

    pass


class AuthenticationError(ScanError):
    """Raised when provider credentials or tokens cannot be resolved."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        profile: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if provider:
            context["provider"] = provider
        if profile:
            context["profile"] = profile
        kwargs["context"] = context
        kwargs.setdefault("error_code", "AUTHENTICATION_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Check your credentials ('aws configure' / 'az login') and retry",
        )
        super().__init__(message, **kwargs)


class CategoryEnumerationError(ScanError):
    """Raised when a whole category cannot be listed. Aborts the scan."""

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        provider: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if provider:
            context["provider"] = provider
        if category:
            context["category"] = category
        kwargs["context"] = context
        kwargs.setdefault("error_code", "CATEGORY_ENUMERATION_FAILED")
        super().__init__(message, **kwargs)
        self.category = category


class EnrichmentDegradation(ScanError):
    """
    Soft failure of a single enrichment sub-call.

    Never propagated out of a scan: the scanner logs it and omits the field.
    """

    def __init__(
        self,
        message: str,
        category: Optional[str] = None,
        field_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if category:
            context["category"] = category
        if field_name:
            context["field"] = field_name
        kwargs["context"] = context
        kwargs.setdefault("error_code", "ENRICHMENT_DEGRADED")
        super().__init__(message, **kwargs)


class ScanNotFoundError(IamGrapherError):
    """Raised when a scan id is unknown."""

    def __init__(
        self, scan_id: str, message: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        context["scan_id"] = scan_id
        kwargs["context"] = context
        kwargs.setdefault("error_code", "SCAN_NOT_FOUND")
        super().__init__(message or f"Scan not found: {scan_id}", **kwargs)
        self.scan_id = scan_id


class ScanNotCompletedError(ScanNotFoundError):
    """Raised when a scan exists but has no completed document yet."""

    def __init__(self, scan_id: str, status: str, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        context["status"] = status
        kwargs["context"] = context
        kwargs.setdefault("error_code", "SCAN_NOT_COMPLETED")
        kwargs.setdefault(
            "recovery_suggestion", "Poll the scan status until it is completed"
        )
        super().__init__(
            scan_id, message=f"Scan {scan_id} has no completed document", **kwargs
        )


class InvalidStateTransition(IamGrapherError):
    """Raised when something tries to move a scan out of a terminal state."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "INVALID_STATE_TRANSITION")
        super().__init__(message, **kwargs)


# Query exceptions
class QuerySyntaxError(IamGrapherError):
    """Raised for lexical or parse errors in a resource query. Client input error."""

    def __init__(
        self, message: str, position: Optional[int] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if position is not None:
            context["position"] = position
        kwargs["context"] = context
        kwargs.setdefault("error_code", "QUERY_SYNTAX_ERROR")
        super().__init__(message, **kwargs)
        self.position = position


# Template exceptions
class TemplateError(IamGrapherError):
    """Base class for template lookup and rendering failures."""

    def __init__(
        self,
        message: str,
        template_name: Optional[str] = None,
        searched_paths: Optional[Sequence[str]] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if template_name:
            context["template"] = template_name
        if searched_paths:
            context["searched_paths"] = ", ".join(searched_paths)
        kwargs["context"] = context
        kwargs.setdefault("error_code", "TEMPLATE_ERROR")
        super().__init__(message, **kwargs)
        self.template_name = template_name
        self.searched_paths: List[str] = list(searched_paths or [])


class TemplateNotFoundError(TemplateError):
    """Raised when a template is missing from every tier."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "TEMPLATE_NOT_FOUND")
        kwargs.setdefault(
            "recovery_suggestion",
            "Add the template to the user template directory or restore the bundled defaults",
        )
        super().__init__(message, **kwargs)


class TemplateSyntaxError(TemplateError):
    """Raised when a template cannot be compiled."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "TEMPLATE_SYNTAX_ERROR")
        super().__init__(message, **kwargs)


class TemplateRenderError(TemplateError):
    """Raised when rendering a compiled template fails."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "TEMPLATE_RENDER_ERROR")
        super().__init__(message, **kwargs)


# Generation exceptions
GENERATION_EMPTY_CAUSES = (
    "the scan document has no records in any template-mapped category",
    "the selection excludes every resource",
    "templates failed to load for every category",
)


class GenerationEmptyError(IamGrapherError):
    """Raised when a generation request produced zero files."""

    def __init__(self, message: str, scan_id: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.get("context", {})
        if scan_id:
            context["scan_id"] = scan_id
        kwargs["context"] = context
        kwargs.setdefault("error_code", "GENERATION_EMPTY")
        kwargs.setdefault(
            "recovery_suggestion",
            "Likely causes: " + "; ".join(
                f"({i}) {cause}" for i, cause in enumerate(GENERATION_EMPTY_CAUSES, 1)
            ),
        )
        super().__init__(message, **kwargs)
        self.causes = list(GENERATION_EMPTY_CAUSES)


class TerraformCommandError(IamGrapherError):
    """Raised when the Terraform CLI is missing, times out or exits non-zero."""

    def __init__(
        self,
        message: str,
        command: Optional[str] = None,
        output: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.get("context", {})
        if command:
            context["command"] = command
        kwargs["context"] = context
        kwargs.setdefault("error_code", "TERRAFORM_COMMAND_FAILED")
        super().__init__(message, **kwargs)
        self.output = output


def wrap_provider_exception(
    exc: Exception,
    category: Optional[str] = None,
    provider: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> IamGrapherError:
    """
    Wrap a provider SDK exception in the matching IAM Grapher error.

    Credential problems become AuthenticationError; anything else raised while
    listing a category becomes CategoryEnumerationError.
    """
    if isinstance(exc, IamGrapherError):
        return exc

    context = dict(context or {})
    name = type(exc).__name__
    if name in (
        "NoCredentialsError",
        "PartialCredentialsError",
        "ProfileNotFound",
        "ClientAuthenticationError",
        "CredentialUnavailableError",
    ):
        return AuthenticationError(
            f"Could not resolve credentials: {exc}",
            provider=provider,
            context=context,
            cause=exc,
        )

    if provider == "azure":
        suggestion = (
            "Ensure the identity has 'Microsoft.Authorization/*/read' "
            "(e.g. the Reader role) on the requested scope"
        )
    else:
        suggestion = "Ensure the identity has the iam:List* and iam:Get* permissions"
    return CategoryEnumerationError(
        f"Failed to enumerate {category or 'resources'}: {exc}",
        category=category,
        provider=provider,
        context=context,
        cause=exc,
        recovery_suggestion=suggestion,
    )
