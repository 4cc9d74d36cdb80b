"""Command registry for the iam-grapher CLI.

Command modules are imported when the CLI group is built; each module
exposes a click command named after the command.
"""

import importlib
import logging
from typing import Callable, Dict, Optional

import click

from .base import (
    CommandContext,
    async_command,
    command_context,
    exit_with_error,
)

logger = logging.getLogger(__name__)

# Registry of all available commands
_COMMAND_REGISTRY: Dict[str, Callable] = {}

# Mapping of command names to their module paths
_COMMAND_MODULES: Dict[str, str] = {
    "scan": "iam_grapher.commands.scan",
    "query": "iam_grapher.commands.query",
    "graph": "iam_grapher.commands.graph",
    "generate": "iam_grapher.commands.generate",
    "templates": "iam_grapher.commands.templates",
    "validate": "iam_grapher.commands.validate",
}


def register_command(name: str, command: Callable) -> None:
    """Register a command in the registry.

    Args:
        name: Command name (as used in CLI)
        command: Click command function
    """
    _COMMAND_REGISTRY[name] = command
    logger.debug(f"Registered command: {name}")


def get_command(name: str) -> Optional[Callable]:
    """Get a command from the registry, importing its module on first use."""
    if name in _COMMAND_REGISTRY:
        return _COMMAND_REGISTRY[name]

    module_path = _COMMAND_MODULES.get(name)
    if module_path is None:
        return None
    module = importlib.import_module(module_path)
    command = getattr(module, name.replace("-", "_"), None)
    if command is not None:
        register_command(name, command)
    return command


def register_all_commands(cli_group: click.Group) -> None:
    """Register all commands with a CLI group.

    Args:
        cli_group: Click group to register commands with
    """
    for name in _COMMAND_MODULES:
        command = get_command(name)
        if isinstance(command, click.Command):
            cli_group.add_command(command, name)
            logger.debug(f"Added command {name} to CLI")


__all__ = [
    "CommandContext",
    "async_command",
    "command_context",
    "exit_with_error",
    "get_command",
    "register_all_commands",
    "register_command",
]
