"""CLI commands for configuration management."""

from __future__ import annotations

from typing import Annotated

import typer

from homekeep.cli._helpers import get_config, output_result

config_app = typer.Typer(help="Configuration management")


@config_app.command("show")
def show_cmd(
    json_output: Annotated[bool, typer.Option("--json", "-j", help="Output as JSON")] = False,
) -> None:
    """Show the effective configuration (file plus environment overrides).

    Examples:
        hk config show
        HOMEKEEP_STORAGE=memory hk config show --json
    """
    config = get_config()
    data = config.to_dict()

    if json_output:
        output_result(data, True)
        return

    typer.secho(f"Config file: {config.config_path}", fg=typer.colors.BRIGHT_BLACK)
    for section in ("remote", "sync", "storage"):
        typer.secho(f"\n[{section}]", fg=typer.colors.CYAN, bold=True)
        for key, value in data[section].items():
            typer.echo(f"  {key} = {value}")


@config_app.command("path")
def path_cmd() -> None:
    """Print the configuration file path."""
    typer.echo(str(get_config().config_path))
