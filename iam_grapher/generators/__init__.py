"""Code generators for different target formats.

Generators register themselves by format name on import; the generation
service looks them up with get_generator().
"""

from typing import Dict, Type

from .base import CodeGenerator

# Global generator registry
_GENERATOR_REGISTRY: Dict[str, Type[CodeGenerator]] = {}


def register_generator(format_name: str, generator_class: Type[CodeGenerator]) -> None:
    """Register a generator class for a specific format.

    Args:
        format_name: Name of the output format (e.g., 'terraform')
        generator_class: Generator class implementing CodeGenerator
    """
    _GENERATOR_REGISTRY[format_name.lower()] = generator_class


def get_generator_registry() -> Dict[str, Type[CodeGenerator]]:
    """Get a copy of the current generator registry."""
    return _GENERATOR_REGISTRY.copy()


def get_generator(format_name: str) -> Type[CodeGenerator]:
    """Get generator class for specified format.

    Raises:
        KeyError: If format is not registered
    """
    format_key = format_name.lower()
    if format_key not in _GENERATOR_REGISTRY:
        available_formats = list(_GENERATOR_REGISTRY.keys())
        raise KeyError(
            f"No generator registered for format '{format_name}'. "
            f"Available formats: {available_formats}"
        )

    return _GENERATOR_REGISTRY[format_key]


# Import generator implementations to auto-register them
from . import terraform  # noqa: E402,F401

__all__ = [
    "CodeGenerator",
    "get_generator",
    "get_generator_registry",
    "register_generator",
]
