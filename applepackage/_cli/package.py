#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
from logging import getLogger
from typing import Annotated, Optional

import typer
from rich.table import Table

from .._config import Configuration, country_code
from .._models import Account, Software
from .._util.aio import run_async
from ..commands import download as download_package
from ..commands import lookup as lookup_package
from ..commands import purchase as purchase_package
from ..downloads import action_label, available_actions
from ..exceptions import ApplePackageError, PasswordTokenExpiredError, TwoFactorRequiredError
from . import CLIOptions
from .util.rich_console import console
from .util.storage import load_account, load_registry, save_account, save_registry

__ALIAS__ = "pkg"

BundleIdArgument = Annotated[
    str,
    typer.Argument(help="The bundle identifier of the package, e.g. `com.apple.Pages`.", show_default=False),
]
RegionOption = Annotated[
    Optional[str],
    typer.Option("--region", "-r", help="The two-letter store region. Defaults to the account's region."),
]

app = typer.Typer(name="package", help="Look up, purchase and download packages.", no_args_is_help=True)
logger = getLogger(__name__)


def _require_account() -> Account:
    account = load_account(CLIOptions.account_path)
    if account is None:
        typer.echo("Not signed in. Use the `account login` command first.", err=True)
        raise typer.Exit(1)

    return account


def _resolve_region(account: Account | None, region: str | None) -> str:
    region = region or (country_code(account.store) if account is not None else None)
    if region is None:
        typer.echo("Unable to determine the store region. Specify one using `--region`.", err=True)
        raise typer.Exit(1)

    return region


def _fail(error: ApplePackageError) -> typer.Exit:
    if isinstance(error, TwoFactorRequiredError | PasswordTokenExpiredError):
        typer.echo(f"{error}\nSign in again using the `account login` command.", err=True)
    else:
        typer.echo(f"Error: {error}", err=True)

    return typer.Exit(1)


async def _lookup(configuration: Configuration, bundle_id: str, region: str) -> Software:
    try:
        return await lookup_package(bundle_id, region, configuration=configuration)
    except ApplePackageError as e:
        raise _fail(e) from e


@app.command(help="Look up the latest published version of a package.")
@run_async
async def lookup(bundle_id: BundleIdArgument, region: RegionOption = None) -> None:
    region = _resolve_region(load_account(CLIOptions.account_path), region)
    software = await _lookup(Configuration.from_env(), bundle_id, region)

    price = "Free" if not software.price else f"{software.price}"
    typer.echo(
        f"Name: {software.name}\n"
        f"Bundle ID: {software.bundle_id}\n"
        f"Track ID: {software.id}\n"
        f"Version: {software.version}\n"
        f"Price: {price}\n",
    )


@app.command(help="Acquire a license for a free package.")
@run_async
async def purchase(bundle_id: BundleIdArgument, region: RegionOption = None) -> None:
    configuration = Configuration.from_env()
    account = _require_account()
    software = await _lookup(configuration, bundle_id, _resolve_region(account, region))

    try:
        await purchase_package(account, software, configuration=configuration)
    except ApplePackageError as e:
        raise _fail(e) from e
    finally:
        save_account(CLIOptions.account_path, account)

    console.print(f"[green]Purchased {software.name} ({software.bundle_id}).[/]")


@app.command(help="Request a download ticket for a package and record it.")
@run_async
async def download(
    bundle_id: BundleIdArgument,
    region: RegionOption = None,
    external_version_id: Annotated[
        Optional[str],
        typer.Option("--external-version-id", "-e", help="The version to download. Defaults to the latest one."),
    ] = None,
) -> None:
    configuration = Configuration.from_env()
    account = _require_account()
    software = await _lookup(configuration, bundle_id, _resolve_region(account, region))

    try:
        output = await download_package(account, software, external_version_id, configuration=configuration)
    except ApplePackageError as e:
        raise _fail(e) from e
    finally:
        save_account(CLIOptions.account_path, account)

    registry = await load_registry(CLIOptions.manifests_path, CLIOptions.packages_dir)
    manifest = await registry.add(account, software, output)
    await registry.wait_for_update_checks()
    save_registry(CLIOptions.manifests_path, registry)

    typer.echo(
        f"URL: {output.download_url}\n"
        f"Version: {output.bundle_short_version_string} ({output.bundle_version})\n"
        f"Signatures: {', '.join(str(sinf.id) for sinf in output.sinfs)}\n"
        f"Target: {registry.target_location(manifest)}\n",
    )


@app.command(name="list", help="List recorded downloads.")
@app.command(name="ls", hidden=True)
@run_async
async def list_() -> None:
    registry = await load_registry(CLIOptions.manifests_path, CLIOptions.packages_dir)
    await registry.wait_for_update_checks()
    save_registry(CLIOptions.manifests_path, registry)

    if not registry.manifests:
        typer.echo("No downloads found.", err=True)
        raise typer.Exit(1)

    table = Table("Package", "Version", "Status", "Created", "Actions")
    for manifest in registry.manifests:
        table.add_row(
            manifest.package.bundle_id,
            manifest.package.version,
            manifest.hint,
            manifest.creation.astimezone().strftime("%Y-%m-%d %H:%M"),
            ", ".join(action_label(action).title for action in available_actions(manifest)),
        )

    console.print(table)
