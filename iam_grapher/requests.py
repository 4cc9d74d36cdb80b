"""
Request models for scan and generation requests.

These are the wire shapes accepted from callers (CLI options, JSON request
bodies). Pydantic does field parsing and validation; ``parse_request``
turns a ``ValidationError`` into a ``ConfigurationError`` so callers only
ever see the IAM Grapher error hierarchy.
"""

from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    ValidationError,
    field_validator,
    model_validator,
)

from iam_grapher.exceptions import ConfigurationError
from iam_grapher.records import PROVIDER_CATEGORIES

AZURE_SCOPE_TYPES = ("subscription", "resource_group", "management_group")
AZURE_AUTH_METHODS = ("default", "cli", "service_principal")
IMPORT_SCRIPT_FORMATS = {"sh": "sh", "bash": "sh", "ps1": "ps1", "powershell": "ps1"}

RequestModel = TypeVar("RequestModel", bound=BaseModel)


class ServicePrincipalConfig(BaseModel):
    """Nested service principal credentials, as sent by request bodies."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = Field(None, repr=False)


class ScanRequest(BaseModel):
    """
    Request to scan one provider.

    AWS requests use profile/region/assume-role; Azure requests use a
    subscription or management group scope and an auth method.
    """

    model_config = ConfigDict(extra="ignore")

    provider: str = Field(..., description="Cloud provider: aws or azure")
    profile: Optional[str] = Field(None, description="AWS named profile")
    region: Optional[str] = Field(None, description="AWS region")
    assume_role_arn: Optional[str] = None
    assume_role_session_name: Optional[str] = None
    subscription_id: Optional[str] = None
    tenant_id: Optional[str] = None
    auth_method: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = Field(None, repr=False)
    service_principal_config: Optional[ServicePrincipalConfig] = None
    scope_type: Optional[str] = None
    scope_value: Optional[str] = None
    scan_targets: Dict[str, StrictBool] = Field(
        default_factory=dict, description="Category name -> enabled flag"
    )
    filters: Dict[str, str] = Field(default_factory=dict)
    include_tags: bool = True

    @field_validator("scan_targets", "filters", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("provider", mode="before")
    @classmethod
    def validate_provider(cls, v: Any) -> str:
        provider = str(v or "").lower()
        if provider not in PROVIDER_CATEGORIES:
            raise ValueError(
                f"Unsupported provider '{provider}'. "
                f"Expected one of: {', '.join(sorted(PROVIDER_CATEGORIES))}"
            )
        return provider

    @field_validator("scope_type")
    @classmethod
    def validate_scope_type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in AZURE_SCOPE_TYPES:
            raise ValueError(
                f"Unsupported scope type '{v}'. Use one of: {', '.join(AZURE_SCOPE_TYPES)}"
            )
        return v

    @field_validator("auth_method")
    @classmethod
    def validate_auth_method(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in AZURE_AUTH_METHODS:
            raise ValueError(
                f"Unsupported auth method '{v}'. Use one of: {', '.join(AZURE_AUTH_METHODS)}"
            )
        return v

    @model_validator(mode="after")
    def check_request(self) -> "ScanRequest":
        """Fold nested credentials in, then check categories and Azure scope/auth."""
        if self.service_principal_config is not None:
            nested = self.service_principal_config
            self.tenant_id = self.tenant_id or nested.tenant_id
            self.client_id = self.client_id or nested.client_id
            self.client_secret = self.client_secret or nested.client_secret
            self.service_principal_config = None

        categories = PROVIDER_CATEGORIES[self.provider]
        unknown = sorted(set(self.scan_targets) - set(categories))
        if unknown:
            raise ValueError(
                f"Unknown {self.provider} categories: {', '.join(unknown)}. "
                f"Valid categories: {', '.join(categories)}"
            )

        if self.provider == "azure":
            scope_type = self.scope_type or "subscription"
            if scope_type in ("subscription", "resource_group") and not self.subscription_id:
                raise ValueError(f"subscription_id is required for scope type '{scope_type}'")
            if scope_type in ("resource_group", "management_group") and not self.scope_value:
                raise ValueError(f"scope_value is required for scope type '{scope_type}'")
            if self.auth_method == "service_principal" and not (
                self.tenant_id and self.client_id and self.client_secret
            ):
                raise ValueError(
                    "Service principal auth requires tenant_id, client_id and client_secret"
                )
        return self


class GenerationRequest(BaseModel):
    """Request to generate code for a completed scan."""

    model_config = ConfigDict(extra="ignore")

    output_path: str = Field(..., description="Root directory for generated output")
    file_split_rule: str = "single"
    naming_convention: str = "snake_case"
    import_script_format: str = "sh"
    generate_readme: bool = True
    generator: str = "terraform"

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        """Null options fall back to their defaults."""
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator("output_path")
    @classmethod
    def validate_output_path(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("output_path is required")
        return v

    @field_validator("import_script_format")
    @classmethod
    def validate_script_format(cls, v: str) -> str:
        if v.lower() not in IMPORT_SCRIPT_FORMATS:
            raise ValueError(f"Unsupported import script format '{v}'. Use 'sh' or 'ps1'")
        return v


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        message = item["msg"]
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {message}" if location else message)
    return "; ".join(problems)


def parse_request(
    model: Type[RequestModel], data: Mapping[str, Any], config_section: str
) -> RequestModel:
    """
    Validate a request body against ``model``.

    Raises:
        ConfigurationError: With every validation problem in the message
    """
    try:
        return model.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigurationError(
            _describe(e), config_section=config_section, cause=e
        ) from e
