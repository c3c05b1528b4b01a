"""CLI entry point for ptyredact."""

from __future__ import annotations

import asyncio
import logging

import typer
from pydantic import ValidationError

from ptyredact.config import RedactConfig
from ptyredact.pty.session import PTYStartError
from ptyredact.redact.filter import RedactionSet
from ptyredact.session.orchestrator import EXIT_FAILURE, run_session

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="ptyredact",
    help="Run a command on a pseudo-terminal and mask secrets in its output.",
    no_args_is_help=True,
    add_completion=False,
)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    # The child owns the terminal, so stay quiet unless asked.
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        filename=log_file,
    )


@app.command(
    context_settings={
        "allow_interspersed_args": False,
        "ignore_unknown_options": True,
    }
)
def run(
    redactions: str = typer.Argument(
        help="Secrets to mask, separated by newlines. May be empty.",
        show_default=False,
    ),
    command: list[str] = typer.Argument(
        help="Command to run, followed by its arguments.",
        show_default=False,
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    log_file: str | None = typer.Option(
        None, "--log-file", "-l", help="Write logs to this file instead of stderr."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run COMMAND on a PTY, replacing every secret in its output with '*'."""
    try:
        config = RedactConfig.load(config_file)
    except (ValidationError, ValueError, OSError) as e:
        typer.echo(f"Error: invalid configuration: {e}", err=True)
        raise typer.Exit(2)

    setup_logging(verbose, log_file or config.log_file)

    redaction_set = RedactionSet.parse(redactions)
    if not redaction_set:
        logger.info("No redactions given; output passes through unchanged")

    try:
        code = asyncio.run(run_session(command, redaction_set, config=config))
    except PTYStartError as e:
        typer.echo(f"Failed to start PTY: {e}", err=True)
        raise typer.Exit(EXIT_FAILURE)

    raise typer.Exit(code)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
