"""CLI command: transrun settings — show the stored run options."""

from __future__ import annotations

from dataclasses import fields

import click
from rich.console import Console
from rich.table import Table

from transrun.config import TransRunConfig
from transrun.options.models import EncoderChoice
from transrun.options.store import SettingsStore

console = Console(stderr=True)


def open_store(ctx: click.Context, config: TransRunConfig) -> SettingsStore:
    """Settings store chosen by --settings, falling back to the XDG default."""
    path = ctx.obj.get("settings_path") if ctx.obj else None
    return SettingsStore(path or config.settings_path)


@click.command()
@click.pass_context
def settings(ctx: click.Context) -> None:
    """Show the options `transrun run` starts from."""
    config = TransRunConfig.load()
    store = open_store(ctx, config)
    configuration = store.load()

    exists = "" if store.path.is_file() else " [dim](not saved yet — defaults)[/dim]"
    console.print(f"[bold]TransRun[/bold] settings: [cyan]{store.path}[/cyan]{exists}\n")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    for f in fields(configuration):
        if f.name == "custom_encoder" and configuration.encoder != EncoderChoice.CUSTOM:
            continue
        value = getattr(configuration, f.name)
        if hasattr(value, "value"):
            value = value.value
        table.add_row(f.name, str(value) if value != "" else "[dim]—[/dim]")

    table.add_row("worker", str(config.resolve_worker()))
    console.print(table)
