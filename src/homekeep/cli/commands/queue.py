"""Commands for inspecting and resolving queued operations."""

from __future__ import annotations

import logging
from typing import Annotated, Any

import typer

from homekeep.cli._helpers import get_config, open_context, output_result, run_async
from homekeep.core.operation import OperationRecord
from homekeep.errors import InvalidTransition

logger = logging.getLogger(__name__)


def _list_records(failed_only: bool, json_output: bool) -> None:
    config = get_config()

    async def _list() -> list[OperationRecord]:
        ctx = await open_context(config, probe=False)
        if failed_only:
            return await ctx.list_failed()
        return await ctx.list_pending()

    records = run_async(_list())
    if json_output:
        output_result({"records": [r.to_dict() for r in records], "count": len(records)}, True)
        return

    from homekeep.cli.tui import render_records

    render_records(records, "Failed operations" if failed_only else "Pending operations")


def pending(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List operations waiting to reach the remote store, in replay order."""
    _list_records(failed_only=False, json_output=json_output)


def failed(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """List operations the remote store rejected.

    Examples:
        hk failed
        hk retry <id>
        hk discard <id>
    """
    _list_records(failed_only=True, json_output=json_output)


def retry(
    record_id: Annotated[str, typer.Argument(help="Id of a failed operation")],
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Put a failed operation back in the queue.

    The next sync (or reconnect) replays it with its original idempotency key.
    """
    config = get_config()

    async def _retry() -> dict[str, Any]:
        ctx = await open_context(config, probe=False)
        try:
            found = await ctx.retry(record_id)
        except InvalidTransition as e:
            return {"error": str(e)}
        if not found:
            return {"error": f"No operation {record_id}"}
        return {"message": f"Operation {record_id} queued for retry", "record_id": record_id}

    result = run_async(_retry())
    output_result(result, json_output)
    if "error" in result:
        raise typer.Exit(1)


def discard(
    record_id: Annotated[str, typer.Argument(help="Id of a failed operation")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Skip confirmation")] = False,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Drop a failed operation. The change it carried is lost."""
    if not force and not typer.confirm(f"Discard operation {record_id}?"):
        raise typer.Abort()

    config = get_config()

    async def _discard() -> dict[str, Any]:
        ctx = await open_context(config, probe=False)
        try:
            found = await ctx.discard(record_id)
        except InvalidTransition as e:
            return {"error": str(e)}
        if not found:
            return {"error": f"No operation {record_id}"}
        logger.debug("Discarded %s from the CLI", record_id)
        return {"message": f"Operation {record_id} discarded", "record_id": record_id}

    result = run_async(_discard())
    output_result(result, json_output)
    if "error" in result:
        raise typer.Exit(1)
