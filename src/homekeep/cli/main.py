"""homekeep CLI main entry point."""

from __future__ import annotations

from typing import Annotated, Any, Optional

import typer

from homekeep.cli._helpers import (
    configure_logging,
    get_config,
    open_context,
    output_result,
    parse_json_option,
    run_async,
)
from homekeep.cli.commands.config_cmd import config_app
from homekeep.cli.commands.queue import discard, failed, pending, retry
from homekeep.core.operation import OperationAction
from homekeep.errors import RemoteRejected, StorageError
from homekeep.sync.context import SyncStatus

# Main app
app = typer.Typer(
    name="hk",
    help="homekeep - offline-first write queue for household data",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")

app.command("pending")(pending)
app.command("failed")(failed)
app.command("retry")(retry)
app.command("discard")(discard)


@app.callback()
def _root(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")
    ] = False,
) -> None:
    configure_logging(verbose)


@app.command()
def status(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show connectivity and queue state.

    Examples:
        hk status
        hk status --json
    """
    from homekeep.cli.tui import render_status

    config = get_config()

    async def _status() -> SyncStatus:
        ctx = await open_context(config)
        await ctx.engine.wait_idle()
        return await ctx.status()

    try:
        current = run_async(_status())
    except StorageError as e:
        output_result({"error": f"Operation store unavailable: {e}"}, json_output)
        raise typer.Exit(1) from e

    if json_output:
        output_result(current.to_dict(), True)
    else:
        render_status(current, config.remote.base_url)


@app.command()
def perform(
    entity_type: Annotated[str, typer.Argument(help="Entity type, e.g. Task or ShoppingItem")],
    action: Annotated[OperationAction, typer.Argument(help="create, update or delete")],
    data: Annotated[
        Optional[str],
        typer.Option("--data", "-d", help="JSON payload (update/delete need an 'id')"),
    ] = None,
    offline: Annotated[
        bool, typer.Option("--offline", help="Queue without contacting the remote store")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Create, update or delete an entity through the offline queue.

    Examples:
        hk perform Task create -d '{"title": "Take out recycling"}'
        hk perform ShoppingItem update -d '{"id": "abc", "quantity": 2}'
        hk perform Bill delete -d '{"id": "abc"}' --offline
    """
    payload = parse_json_option(data)
    config = get_config()

    async def _perform() -> dict[str, Any]:
        try:
            ctx = await open_context(config, probe=not offline)
            result = await ctx.perform(entity_type, action, payload)
        except ValueError as e:
            return {"error": str(e)}
        except RemoteRejected as e:
            return {"error": f"Rejected by remote store: {e}", "status_code": e.status_code}
        except StorageError as e:
            return {"error": f"Could not queue change: {e}"}

        if result.confirmed:
            message = f"{action.value.capitalize()} {entity_type} confirmed"
        else:
            message = f"{action.value.capitalize()} {entity_type} queued ({result.record_id})"
        await ctx.engine.wait_idle()
        return {"message": message, **result.to_dict()}

    result = run_async(_perform())
    output_result(result, json_output)
    if "error" in result:
        raise typer.Exit(1)


@app.command()
def sync(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Drain the operation queue now.

    Examples:
        hk sync
    """
    config = get_config()

    async def _sync() -> dict[str, Any]:
        ctx = await open_context(config)
        if not ctx.monitor.is_online:
            pending_count = await ctx.get_pending_count()
            return {
                "error": f"Remote store unreachable, {pending_count} change(s) stay queued",
                "pending": pending_count,
            }

        # Opening the context fires the reconnect edge, which already drains
        report = await ctx.engine.wait_idle() or await ctx.sync_now()
        remaining = await ctx.get_pending_count()
        result: dict[str, Any] = {
            "message": (
                f"Synced {report.succeeded} change(s), "
                f"{report.failed} rejected, {report.collapsed} cancelled out"
            ),
            "pending": remaining,
            **report.to_dict(),
        }
        if report.interrupted:
            result["warning"] = f"Sync interrupted, {remaining} change(s) still queued"
        return result

    result = run_async(_sync())
    output_result(result, json_output)
    if "error" in result:
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    from homekeep import __version__

    typer.echo(f"homekeep v{__version__}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
