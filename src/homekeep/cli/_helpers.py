"""Shared CLI helpers for configuration, context lifetime, and output formatting."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from collections.abc import Coroutine
from typing import Any, TypeVar

import typer

from homekeep.config import HomekeepConfig
from homekeep.sync.context import SyncContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Contexts opened during a CLI command, closed before the event loop shuts
# down so aiosqlite's worker thread does not outlive the loop.
_active_contexts: list[SyncContext] = []


def configure_logging(verbose: bool = False) -> None:
    """Send log records to stderr; DEBUG with --verbose or HOMEKEEP_DEBUG."""
    debug = verbose or os.getenv("HOMEKEEP_DEBUG", "").lower() in ("1", "true", "yes")
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def get_config() -> HomekeepConfig:
    """Get configuration."""
    return HomekeepConfig.load()


async def open_context(config: HomekeepConfig, *, probe: bool = True) -> SyncContext:
    """Open a sync context that is closed when the command finishes."""
    ctx = await SyncContext.open(config, probe=probe)
    _active_contexts.append(ctx)
    return ctx


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run an async CLI command, closing open contexts before loop teardown."""

    async def _with_cleanup() -> T:
        try:
            return await coro
        finally:
            for ctx in _active_contexts:
                try:
                    await ctx.close()
                except Exception:
                    logger.debug("Failed to close sync context during cleanup", exc_info=True)
            _active_contexts.clear()
            # Let pending aiosqlite callbacks run before asyncio.run() closes the loop
            await asyncio.sleep(0)

    return asyncio.run(_with_cleanup())


def parse_json_option(raw: str | None) -> dict[str, Any]:
    """Parse a --data option into a JSON object."""
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise typer.BadParameter("Expected a JSON object")
    return data


def output_result(data: dict[str, Any], as_json: bool = False) -> None:
    """Output result in appropriate format."""
    if as_json:
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    if "error" in data:
        typer.secho(f"Error: {data['error']}", fg=typer.colors.RED)
    elif "message" in data:
        typer.secho(data["message"], fg=typer.colors.GREEN)
        if data.get("warning"):
            typer.secho(data["warning"], fg=typer.colors.YELLOW)
    else:
        typer.echo(str(data))
