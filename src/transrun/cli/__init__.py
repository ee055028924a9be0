"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from transrun import __version__


@click.group()
@click.version_option(version=__version__, prog_name="transrun")
@click.option(
    "--settings",
    "settings_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Settings file to load and save (default: ~/.config/transrun/settings.yaml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, settings_path: str | None, verbose: bool) -> None:
    """TransRun — run and supervise TransAV1 AV1 encoding jobs."""
    ctx.ensure_object(dict)
    ctx.obj["settings_path"] = settings_path
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from transrun.cli.run import run  # noqa: F811
    from transrun.cli.settings import settings  # noqa: F811

    main.add_command(run)
    main.add_command(settings)


_register_commands()
