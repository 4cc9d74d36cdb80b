"""
Configuration Management for IAM Grapher

This module provides centralized configuration management with validation and
environment variable handling. Request-level settings (which provider to scan,
where to write generated files) live in iam_grapher.models; this module covers
the process-wide knobs.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import colorlog
from dotenv import load_dotenv

from iam_grapher.logging_config import configure_logging

# Load environment variables
load_dotenv()

DEFAULT_TEMPLATES_DIR = Path(__file__).parent / "templates_default" / "terraform"


def _set_sdk_http_log_level(log_level: str) -> None:
    """Set log levels for SDK and HTTP loggers to reduce noise."""
    http_loggers = [
        "boto3",
        "botocore",
        "s3transfer",
        "urllib3",
        "urllib3.connectionpool",
        "azure",
        "azure.core.pipeline",
        "azure.core.pipeline.policies.http_logging_policy",
        "azure.identity",
        "httpx",
        "httpcore",
    ]
    # HTTP logging should only appear at DEBUG level
    target_level = logging.DEBUG if log_level == "DEBUG" else logging.WARNING
    for name in http_loggers:
        logging.getLogger(name).setLevel(target_level)


logger = logging.getLogger(__name__)


@dataclass
class ProcessingConfig:
    """Configuration for scan behavior."""

    page_size: int = field(
        default_factory=lambda: int(os.getenv("IAMG_PAGE_SIZE", "100"))
    )
    enrichment_concurrency: int = field(
        default_factory=lambda: int(os.getenv("IAMG_ENRICHMENT_CONCURRENCY", "10"))
    )

    def __post_init__(self) -> None:
        """Validate processing configuration."""
        if self.page_size < 1 or self.page_size > 1000:
            raise ValueError("Page size must be between 1 and 1000")
        if self.enrichment_concurrency < 1:
            raise ValueError("Enrichment concurrency must be at least 1")


@dataclass
class TemplateConfig:
    """Configuration for the two template tiers."""

    user_dir: str = field(
        default_factory=lambda: os.getenv(
            "IAMG_TEMPLATES_USER_DIR", os.path.join("templates_user", "terraform")
        )
    )
    default_dir: str = field(default_factory=lambda: str(DEFAULT_TEMPLATES_DIR))

    def __post_init__(self) -> None:
        """Validate template configuration."""
        if not self.default_dir:
            raise ValueError("Default template directory is required")


@dataclass
class GenerationDefaults:
    """Defaults applied to code generation requests."""

    output_dir: str = field(
        default_factory=lambda: os.getenv("IAMG_OUTPUT_DIR", "output")
    )
    preview_chars: int = field(
        default_factory=lambda: int(os.getenv("IAMG_PREVIEW_CHARS", "1000"))
    )

    def __post_init__(self) -> None:
        """Validate generation defaults."""
        if not self.output_dir:
            raise ValueError("Output directory is required")
        if self.preview_chars < 0:
            raise ValueError("Preview length must be non-negative")


@dataclass
class LoggingConfig:
    """Configuration for logging behavior."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(
        default_factory=lambda: os.getenv(
            "LOG_FORMAT", "%(log_color)s%(levelname)s:%(name)s:%(message)s"
        )
    )
    file_output: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))

    def __post_init__(self) -> None:
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        self.level = self.level.upper()

    def get_log_level(self) -> int:
        """Convert string log level to logging constant."""
        level_attr = getattr(logging, self.level, None)
        if level_attr is None:
            raise ValueError(f"Invalid log level: {self.level}")
        return int(level_attr)


@dataclass
class IamGrapherConfig:
    """Main configuration class that aggregates all configuration sections."""

    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    templates: TemplateConfig = field(default_factory=TemplateConfig)
    generation: GenerationDefaults = field(default_factory=GenerationDefaults)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_environment(
        cls,
        page_size: Optional[int] = None,
        output_dir: Optional[str] = None,
        templates_user_dir: Optional[str] = None,
        debug: bool = False,
    ) -> "IamGrapherConfig":
        """
        Create configuration from environment variables.

        Args:
            page_size: Optional override for listing page size
            output_dir: Optional override for the generation output root
            templates_user_dir: Optional override for the user template tier
            debug: Enable debug logging

        Returns:
            IamGrapherConfig: Configured instance
        """
        config = cls()
        if page_size is not None:
            config.processing.page_size = page_size
        if output_dir:
            config.generation.output_dir = output_dir
        if templates_user_dir:
            config.templates.user_dir = templates_user_dir
        if debug:
            config.logging.level = "DEBUG"
        return config

    def validate_all(self) -> None:
        """Validate all configuration sections."""
        try:
            self.processing.__post_init__()
            self.templates.__post_init__()
            self.generation.__post_init__()
            self.logging.__post_init__()
            logger.info("✅ Configuration validation successful")
        except Exception as e:
            logger.exception(f"❌ Configuration validation failed: {e}")
            raise

    def log_configuration_summary(self) -> None:
        """Log a summary of the current configuration."""
        logger.info("=" * 60)
        logger.info("🔧 IAM GRAPHER CONFIGURATION")
        logger.info("=" * 60)
        logger.info("⚙️  Processing:")
        logger.info(f"   - Page Size: {self.processing.page_size}")
        logger.info(
            f"   - Enrichment Concurrency: {self.processing.enrichment_concurrency}"
        )
        logger.info("📄 Templates:")
        logger.info(f"   - User Tier: {self.templates.user_dir}")
        logger.info(f"   - Default Tier: {self.templates.default_dir}")
        logger.info(f"📁 Output Directory: {self.generation.output_dir}")
        logger.info(f"📝 Logging Level: {self.logging.level}")
        if self.logging.file_output:
            logger.info(f"📄 Log File: {self.logging.file_output}")
        logger.info("=" * 60)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "processing": {
                "page_size": self.processing.page_size,
                "enrichment_concurrency": self.processing.enrichment_concurrency,
            },
            "templates": {
                "user_dir": self.templates.user_dir,
                "default_dir": self.templates.default_dir,
            },
            "generation": {
                "output_dir": self.generation.output_dir,
                "preview_chars": self.generation.preview_chars,
            },
            "logging": {
                "level": self.logging.level,
                "file_output": self.logging.file_output,
            },
        }


def setup_logging(config: LoggingConfig) -> None:
    """
    Setup logging configuration based on config.
    """
    configure_logging(config.get_log_level())
    _set_sdk_http_log_level(config.level.upper())

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()  # Remove any existing handlers
    root_logger.setLevel(config.get_log_level())

    console_handler = colorlog.StreamHandler()
    console_handler.setFormatter(colorlog.ColoredFormatter(config.format))
    root_logger.addHandler(console_handler)

    # Add file handler if file output is configured
    if config.file_output:
        file_handler = logging.FileHandler(config.file_output)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s:%(name)s:%(message)s"
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    logger.info(
        f"📝 Logging configured: level={config.level}, file={config.file_output or 'console'}"
    )


def create_config_from_env(
    page_size: Optional[int] = None,
    output_dir: Optional[str] = None,
    templates_user_dir: Optional[str] = None,
    debug: bool = False,
) -> IamGrapherConfig:
    """
    Factory function to create and validate configuration from environment.

    Raises:
        ValueError: If configuration is invalid
    """
    config = IamGrapherConfig.from_environment(
        page_size=page_size,
        output_dir=output_dir,
        templates_user_dir=templates_user_dir,
        debug=debug,
    )
    config.validate_all()
    return config
