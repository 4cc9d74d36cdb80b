"""Provider scanners behind the shared scan shell."""

from typing import Any, Optional

from iam_grapher.exceptions import ConfigurationError
from iam_grapher.models import ScanConfig
from iam_grapher.scanners.aws import AwsIamScanner
from iam_grapher.scanners.azure import AzureRbacScanner
from iam_grapher.scanners.base import (
    ENRICHMENT_CONCURRENCY,
    AdmissionPool,
    CachedTokenProvider,
    ProviderScanner,
)


def create_scanner(
    config: ScanConfig,
    pool: Optional[AdmissionPool] = None,
    **kwargs: Any,
) -> ProviderScanner:
    """
    Create the scanner for the configured provider.

    Extra keyword arguments (client, client_factory, page_size) are passed to
    the provider scanner.
    """
    if config.provider == "aws":
        return AwsIamScanner(config, pool=pool, **kwargs)
    if config.provider == "azure":
        kwargs.pop("page_size", None)
        return AzureRbacScanner(config, pool=pool, **kwargs)
    raise ConfigurationError(
        f"Unsupported provider '{config.provider}'", config_section="scan"
    )


__all__ = [
    "ENRICHMENT_CONCURRENCY",
    "AdmissionPool",
    "AwsIamScanner",
    "AzureRbacScanner",
    "CachedTokenProvider",
    "ProviderScanner",
    "create_scanner",
]
