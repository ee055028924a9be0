"""CLI command: transrun run — start the encoder and stream its output."""

from __future__ import annotations

import dataclasses
import signal
import sys
import threading
import time
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from transrun.cli.settings import open_store
from transrun.config import TransRunConfig
from transrun.controller import Controller
from transrun.options.arguments import build_arguments, to_argv, validate_configuration
from transrun.options.models import (
    CompressionTier,
    Configuration,
    EncoderChoice,
    Priority,
    RunMode,
)
from transrun.session.errors import StartError
from transrun.session.models import (
    EXIT_CODE_UNKNOWN,
    SessionEnded,
    SessionHandle,
    SessionState,
)

console = Console(stderr=True)


def _choice(enum_cls: type) -> click.Choice:
    return click.Choice([m.value for m in enum_cls], case_sensitive=False)


@click.command()
@click.option("--input", "-s", "input_dir", type=click.Path(), help="Source directory.")
@click.option(
    "--output", "-o", "output_dir", type=click.Path(), help="Destination directory."
)
@click.option(
    "--ffmpeg-dir", type=click.Path(), help="Directory containing ffmpeg/ffprobe."
)
@click.option(
    "--compression", type=_choice(CompressionTier), help="Size/quality trade-off."
)
@click.option("--encoder", type=_choice(EncoderChoice), help="Preferred encoder.")
@click.option("--custom-encoder", help="Encoder name when --encoder=custom.")
@click.option("--mode", type=_choice(RunMode), help="normal, restart, or force.")
@click.option(
    "--quick/--no-quick", default=None, help="Encode in place without a temp copy."
)
@click.option("--timeout", type=int, help="Per-file timeout in seconds (0 disables).")
@click.option("--debug/--no-debug", default=None, help="Ask the worker for debug logs.")
@click.option(
    "--log-file/--no-log-file",
    "log_to_file",
    default=None,
    help="Worker also logs to a file.",
)
@click.option("--priority", type=_choice(Priority), help="Worker process priority.")
@click.option(
    "--worker",
    type=click.Path(dir_okay=False),
    help="Worker executable (default: TransAV1_CUI next to transrun).",
)
@click.option(
    "--save", is_flag=True, help="Store the effective options as the new defaults."
)
@click.option("--dry-run", is_flag=True, help="Print the worker command line and exit.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def run(
    ctx: click.Context,
    worker: str | None,
    save: bool,
    dry_run: bool,
    yes: bool,
    **overrides: object,
) -> None:
    """Run the TransAV1 encoder with the stored options plus overrides."""
    config = TransRunConfig.load()
    if worker:
        config.worker_path = Path(worker)

    store = open_store(ctx, config)
    configuration = _apply_overrides(store.load(), overrides)

    problems = validate_configuration(configuration)
    if problems:
        for problem in problems:
            console.print(f"[red]✗ {problem}[/red]")
        sys.exit(2)

    argv = [str(config.resolve_worker()), *to_argv(build_arguments(configuration))]
    if dry_run:
        click.echo(" ".join(argv))
        return

    if configuration.mode == RunMode.FORCE and not yes:
        click.confirm(
            "Force mode deletes the output directory before encoding. Continue?",
            abort=True,
            err=True,
        )

    ended: list[SessionEnded] = []
    controller = Controller(
        config,
        on_log_batch=lambda text: click.echo(text, nl=False),
        on_session_ended=ended.append,
        settings=store,
    )

    if save and not controller.save_settings(configuration):
        console.print(f"[yellow]⚠ Settings not saved to {store.path}[/yellow]")

    try:
        handle = controller.start(configuration)
    except StartError as exc:
        controller.shutdown()
        controller.dispatch()
        console.print(f"[red]✗ {exc}[/red]")
        sys.exit(1)

    console.print(
        f"[bold]TransRun[/bold] started PID {handle.pid} "
        f"([cyan]{configuration.input_dir}[/cyan] → "
        f"[cyan]{configuration.output_dir}[/cyan])\n"
        "  Press Ctrl+C to stop, twice to abort.\n"
    )

    _supervise(controller, ended)

    _print_summary(handle, ended[0] if ended else None)
    sys.exit(_exit_status(ended[0] if ended else None))


def _supervise(controller: Controller, ended: list[SessionEnded]) -> None:
    """Pump notifications on this thread until the session has ended."""
    interrupts: list[float] = []
    interrupted = threading.Event()

    def _signal_handler(signum: int, frame: object) -> None:
        interrupts.append(time.time())
        interrupted.set()

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        while not ended:
            controller.dispatch(timeout=0.2)
            if not interrupted.is_set():
                continue
            interrupted.clear()
            if len(interrupts) == 1:
                console.print("\n[dim]Stopping...[/dim]")
                controller.request_stop()
            else:
                console.print("\n[dim]Aborting...[/dim]")
                break
    finally:
        controller.shutdown()
        controller.dispatch()
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


def _apply_overrides(
    configuration: Configuration, overrides: dict[str, object]
) -> Configuration:
    enums = {
        "compression": CompressionTier,
        "encoder": EncoderChoice,
        "mode": RunMode,
        "priority": Priority,
    }
    changes: dict[str, object] = {}
    for name, value in overrides.items():
        if value is None:
            continue
        if name in enums:
            value = _enum_by_value(enums[name], str(value))
        changes[name] = value

    if "custom_encoder" in changes and "encoder" not in changes:
        changes["encoder"] = EncoderChoice.CUSTOM
    if changes.get("encoder", configuration.encoder) != EncoderChoice.CUSTOM:
        changes["custom_encoder"] = ""

    return dataclasses.replace(configuration, **changes)


def _enum_by_value(enum_cls: type, value: str):
    for member in enum_cls:
        if member.value.lower() == value.lower():
            return member
    raise click.BadParameter(value)


def _exit_status(event: SessionEnded | None) -> int:
    if event is None or event.state != SessionState.EXITED:
        return 1
    if event.exit_code == EXIT_CODE_UNKNOWN:
        return 1
    if event.exit_code < 0:
        # killed by signal N
        return 128 + (-event.exit_code)
    return event.exit_code & 0xFF


def _print_summary(handle: SessionHandle, event: SessionEnded | None) -> None:
    console.print("\n[bold]Session Summary[/bold]")
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    table.add_row("Session ID", handle.id)
    table.add_row("Command", " ".join(handle.command))
    table.add_row("PID", str(handle.pid))
    table.add_row("Status", event.state.value if event else handle.state.value)

    if event is not None and event.exit_code != EXIT_CODE_UNKNOWN:
        table.add_row("Exit Code", str(event.exit_code))
    else:
        table.add_row("Exit Code", "N/A")
    if event is not None and event.reason:
        table.add_row("Reason", event.reason)

    end = handle.ended_at or time.time()
    table.add_row("Duration", f"{end - handle.started_at:.1f}s")
    console.print(table)
