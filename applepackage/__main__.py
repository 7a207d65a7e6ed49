#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Main entrypoint for the ApplePackage CLI."""

import logging
from datetime import datetime
from sys import stderr
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from ._cli import account, package
from ._cli.util.app_dirs import USER_LOG_DIR
from ._cli.util.rich_console import console

app = typer.Typer()
for subcommand in (account, package):
    app.add_typer(subcommand.app)
    app.add_typer(subcommand.app, name=subcommand.__ALIAS__, hidden=True)

logger = logging.getLogger(__name__)


def _setup_logging(level: int) -> None:
    logging_file = USER_LOG_DIR / datetime.now().astimezone().strftime("%Y-%m-%d_%H-%M-%S.log")
    logging_file.parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(file=stderr),
            ),
            logging.FileHandler(logging_file),
        ],
    )

    # httpx logs every request at INFO.
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


@app.callback(no_args_is_help=True)
def main(
    *,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log errors."),
    ] = False,
    silent: Annotated[
        bool,
        typer.Option("--silent", help="Completely disable logging."),
    ] = False,
    no_color: Annotated[
        bool,
        typer.Option("--no-color", envvar="NO_COLOR", help="Disable color output."),
    ] = False,
) -> None:
    """ApplePackage - Sign in with an Apple ID and acquire App Store packages."""
    if (verbose, quiet, silent).count(True) > 1:
        typer.echo("Can only enable one of --verbose, --quiet, or --silent.", err=True)
        raise typer.Abort

    if silent:
        logging.disable(logging.CRITICAL)
    else:
        level = logging.DEBUG if verbose else logging.ERROR if quiet else logging.INFO
        _setup_logging(level)
        logger.debug(f"Logging initialized at {logging.getLevelName(level)} level.")

    if no_color:
        console.no_color = True


__entrypoint__ = app
if __name__ == "__main__":
    __entrypoint__()
