"""Base command infrastructure and shared utilities.

This module provides common utilities used across command modules:
- CommandContext for shared command execution context
- Helpers for loading and saving scan documents
- async_command for running coroutine commands under click
"""

import asyncio
import functools
import json
import sys
from pathlib import Path
from typing import Any, Callable, Coroutine, Dict, NoReturn, Optional

import click

from iam_grapher.config_manager import IamGrapherConfig, create_config_from_env, setup_logging
from iam_grapher.exceptions import IamGrapherError
from iam_grapher.grapher import IamGrapher
from iam_grapher.models import Document


class CommandContext:
    """Shared context for command execution."""

    def __init__(
        self,
        ctx: click.Context,
        debug: bool = False,
        log_level: str = "INFO",
    ):
        self.click_ctx = ctx
        self.debug = debug
        self.log_level = log_level

    def get_config(self, **kwargs: Any) -> IamGrapherConfig:
        """Get configuration from environment."""
        config = create_config_from_env(**kwargs)
        config.logging.level = self.log_level
        setup_logging(config.logging)
        if self.debug:
            config.log_configuration_summary()
        return config

    def get_grapher(self, **kwargs: Any) -> IamGrapher:
        return IamGrapher(self.get_config(**kwargs))


def command_context(ctx: click.Context) -> CommandContext:
    """Create CommandContext from click context."""
    obj = ctx.obj or {}
    return CommandContext(
        ctx=ctx,
        debug=obj.get("debug", False),
        log_level=obj.get("log_level", "INFO"),
    )


def exit_with_error(message: str, code: int = 1) -> NoReturn:
    """Exit with error message."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


def report_error(error: IamGrapherError) -> NoReturn:
    """Print a structured error with its recovery suggestion and exit."""
    click.echo(f"❌ {error.message}", err=True)
    for key, value in error.context.items():
        click.echo(f"   {key}: {value}", err=True)
    if error.recovery_suggestion:
        click.echo(f"💡 {error.recovery_suggestion}", err=True)
    sys.exit(1)


def load_document(path: str) -> Document:
    """Read a scan document written by 'iam-grapher scan --output'."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        exit_with_error(f"Cannot read scan document {path}: {e}")
    if not isinstance(data, dict) or "provider" not in data:
        exit_with_error(f"{path} is not a scan document")
    return Document.from_dict(data)


def write_json(data: Any, output: Optional[str]) -> None:
    """Write JSON to a file, or to stdout when output is None."""
    text = json.dumps(data, indent=2, default=str)
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text + "\n", encoding="utf-8")
    else:
        click.echo(text)


def load_json_file(path: Optional[str]) -> Optional[Dict[str, Any]]:
    if not path:
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        exit_with_error(f"Cannot read {path}: {e}")
    if not isinstance(data, dict):
        exit_with_error(f"{path} must contain a JSON object")
    return data


def async_command(f: Callable[..., Coroutine[Any, Any, Any]]) -> Callable[..., Any]:
    """Decorator to make Click commands async-compatible.

    Handles both running inside and outside of existing event loops.
    """

    @functools.wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            # Already in an event loop (e.g., pytest-asyncio, Jupyter)
            import nest_asyncio  # type: ignore[import-untyped]

            nest_asyncio.apply()
            task = loop.create_task(f(*args, **kwargs))
            return loop.run_until_complete(task)
        return asyncio.run(f(*args, **kwargs))

    return wrapper


__all__ = [
    "CommandContext",
    "async_command",
    "command_context",
    "exit_with_error",
    "load_document",
    "load_json_file",
    "report_error",
    "write_json",
]
