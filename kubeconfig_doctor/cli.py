"""CLI entry point for kubeconfig-doctor."""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Annotated

import typer
from rich.console import Console

from kubeconfig_doctor import __version__
from kubeconfig_doctor.doctor import DoctorReport, run_diagnostics
from kubeconfig_doctor.report import ConsoleReporter
from kubeconfig_doctor.settings import (
    DEFAULT_PROXY_TIMEOUT,
    DEFAULT_SERVER_TIMEOUT,
    DoctorSettings,
    load_settings,
)

logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

app = typer.Typer(
    name="kubeconfig-doctor",
    help="Find out why a kubeconfig context does not work.",
    add_completion=False,
)
err_console = Console(stderr=True)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"kubeconfig-doctor {__version__}")
        raise typer.Exit()


async def _run(settings: DoctorSettings, reporter: ConsoleReporter) -> DoctorReport:
    """Async orchestrator: environment → files → duplicates → contexts."""
    reporter.banner(__version__)
    reporter.on_environment(settings)
    return await run_diagnostics(settings, listener=reporter)


@app.command()
def main(
    kubeconfig: Annotated[
        list[str] | None,
        typer.Option(
            "--kubeconfig",
            "-k",
            help="Kubeconfig file (repeatable, lowest precedence first). Overrides KUBECONFIG.",
        ),
    ] = None,
    context: Annotated[
        list[str] | None,
        typer.Option("--context", "-c", help="Only diagnose this context (repeatable)"),
    ] = None,
    proxy_timeout: Annotated[
        float, typer.Option("--proxy-timeout", help="Proxy connect timeout in seconds")
    ] = DEFAULT_PROXY_TIMEOUT,
    server_timeout: Annotated[
        float, typer.Option("--server-timeout", help="API server timeout in seconds")
    ] = DEFAULT_SERVER_TIMEOUT,
    strict: Annotated[
        bool, typer.Option("--strict", help="Exit with status 1 when any check fails")
    ] = False,
    no_color: Annotated[bool, typer.Option("--no-color", help="Disable colored output")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable verbose logging")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Enable debug logging")] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version"),
    ] = None,
) -> None:
    """Load kubeconfig files, look for duplicates and probe every context."""
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        settings = load_settings(
            kubeconfig=kubeconfig,
            contexts=context,
            proxy_timeout=proxy_timeout,
            server_timeout=server_timeout,
            strict=strict,
        )
    except ValueError as exc:
        err_console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(2) from exc

    reporter = ConsoleReporter(Console(highlight=False, no_color=no_color))
    try:
        report = asyncio.run(_run(settings, reporter))
    except KeyboardInterrupt:
        err_console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(130)

    if settings.strict and not report.healthy:
        logger.info("Problems found, exiting with status 1")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
