#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
from logging import getLogger
from typing import Annotated

import typer

from .._config import Configuration, country_code
from .._models import Account
from .._util.aio import run_async
from ..exceptions import ApplePackageError, TwoFactorRequiredError
from ..gsa import GSAAuthenticator
from . import CLIOptions
from .util.rich_console import console
from .util.storage import load_account, remove_account, save_account

__ALIAS__ = "acc"

app = typer.Typer(name="account", help="Manage the signed-in Apple ID.", no_args_is_help=True)
logger = getLogger(__name__)


async def _authenticate(authenticator: GSAAuthenticator, email: str, password: str, code: str) -> Account:
    try:
        return await authenticator.authenticate(email, password, code)
    except TwoFactorRequiredError as e:
        console.print(f"[yellow]{e}[/]")

    code = typer.prompt("2FA Code")
    return await authenticator.authenticate(email, password, code)


@app.command(help="Sign in with an Apple ID.")
@run_async
async def login(
    email: Annotated[
        str,
        typer.Option(
            prompt=True,
            help="The email address of the Apple ID.",
        ),
    ],
    password: Annotated[
        str,
        typer.Option(
            prompt=True,
            hide_input=True,
            help="The password of the Apple ID.",
        ),
    ],
    code: Annotated[
        str,
        typer.Option(
            help="A two-factor verification code, if one was already received.",
        ),
    ] = "",
) -> None:
    async with GSAAuthenticator(Configuration.from_env()) as authenticator:
        try:
            account = await _authenticate(authenticator, email, password, code)
        except ApplePackageError as e:
            typer.echo(f"Login failed: {e}", err=True)
            raise typer.Exit(1) from e

    save_account(CLIOptions.account_path, account)
    console.print(f"[green]Signed in as {account.name or account.email}[/]")


@app.command(help="Show the signed-in Apple ID.")
def info() -> None:
    account = load_account(CLIOptions.account_path)
    if account is None:
        typer.echo("Not signed in. Use the `account login` command first.", err=True)
        raise typer.Exit(1)

    typer.echo(
        f"Name: {account.name}\n"
        f"Apple ID: {account.apple_id}\n"
        f"DSID: {account.directory_services_identifier}\n"
        f"Store Front: {account.store} ({country_code(account.store) or 'unknown region'})\n",
    )


@app.command(help="Sign out and forget the stored Apple ID.")
def logout() -> None:
    if not remove_account(CLIOptions.account_path):
        typer.echo("Not signed in.", err=True)
        raise typer.Exit(1)

    console.print("Signed out.")
