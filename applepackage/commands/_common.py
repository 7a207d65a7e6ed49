#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Request and response handling shared by the store commands."""

from __future__ import annotations

import plistlib
from contextlib import asynccontextmanager
from http import HTTPStatus
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from .._transport import HTTPTransport, parse_plist
from ..anisette import RemoteAnisetteProvider
from ..exceptions import ApplePackageError, TwoFactorRequiredError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .._config import Configuration
    from .._models import Account
    from ..anisette import ProvidesAnisetteData

STORE_BASE_URL: Final = "https://p25-buy.itunes.apple.com/WebObjects/MZFinance.woa/wa"
DOWNLOAD_URL: Final = f"{STORE_BASE_URL}/volumeStoreDownloadProduct"
PURCHASE_URL: Final = f"{STORE_BASE_URL}/buyProduct"

TWO_FACTOR_CUSTOMER_MESSAGE: Final = "MZFinance.BadLogin.Configurator_message"
TWO_FACTOR_GUIDANCE: Final = (
    "Apple ID authentication requires verification code.\n"
    "Re-authenticate the account with a 2FA code, then retry."
)

logger = getLogger(__name__)


@asynccontextmanager
async def store_transport(
    configuration: Configuration,
    transport: HTTPTransport | None = None,
) -> AsyncIterator[HTTPTransport]:
    """Yield `transport` if given, otherwise a one-shot transport that is closed on exit."""
    if transport is not None:
        yield transport
        return

    async with HTTPTransport.from_configuration(configuration) as one_shot:
        yield one_shot


async def build_store_headers(
    account: Account,
    url: str,
    configuration: Configuration,
    anisette_provider: ProvidesAnisetteData | None = None,
) -> dict[str, str]:
    """
    Build the headers of a store request.

    Anisette headers never override the account-derived ones. The account's cookies are sent last.
    """
    headers = {
        "Content-Type": "application/x-apple-plist",
        "User-Agent": configuration.user_agent,
        "iCloud-DSID": account.directory_services_identifier,
        "X-Dsid": account.directory_services_identifier,
        "X-Apple-Store-Front": f"{account.store}-1",
        "X-Token": account.password_token,
    }

    anisette_provider = anisette_provider or RemoteAnisetteProvider.for_server(configuration.anisette_server_url)
    anisette = await anisette_provider.anisette_data()

    present = {name.lower() for name in headers}
    for name, value in anisette.generate_headers(client_info=True).items():
        if name.lower() not in present:
            headers[name] = value
            present.add(name.lower())

    if (cookie := account.build_cookie_header(url)) is not None:
        headers["Cookie"] = cookie

    return headers


async def send_store_request(
    transport: HTTPTransport,
    account: Account,
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
) -> dict[str, Any]:
    """
    POST `payload` as an XML property list and return the parsed response dictionary.

    Cookies set by any response, including redirect hops and failed requests, are merged into `account`.
    """
    response = await transport.request(
        url,
        "POST",
        headers,
        plistlib.dumps(payload, fmt=plistlib.FMT_XML),
        response_hook=account.merge_cookies,
    )

    if response.status_code != HTTPStatus.OK:
        msg = f"store request failed with status {response.status_code}"
        raise ApplePackageError(msg)

    if not response.content:
        msg = "response body is empty"
        raise ApplePackageError(msg)

    return parse_plist(response.content)


def failure_type(response: dict[str, Any]) -> str | None:
    """
    Return the `failureType` of a store response, or `None` if the request succeeded.

    Raises `TwoFactorRequiredError` when the store asks for a verification code.
    """
    failure = response.get("failureType")
    if not isinstance(failure, str):
        return None

    if not failure and response.get("customerMessage") == TWO_FACTOR_CUSTOMER_MESSAGE:
        raise TwoFactorRequiredError(TWO_FACTOR_GUIDANCE)

    logger.debug(f"Store request failed ({failure}): {response.get('customerMessage')}")
    return failure


def customer_message(response: dict[str, Any]) -> str | None:
    message = response.get("customerMessage")
    return message if isinstance(message, str) else None
