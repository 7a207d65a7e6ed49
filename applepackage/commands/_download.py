#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from .._config import Configuration
from .._models import DownloadOutput, Sinf
from ..exceptions import ApplePackageError, LicenseRequiredError, PasswordTokenExpiredError
from ._common import (
    DOWNLOAD_URL,
    build_store_headers,
    customer_message,
    failure_type,
    send_store_request,
    store_transport,
)

if TYPE_CHECKING:
    from .._models import Account, Software
    from .._transport import HTTPTransport
    from ..anisette import ProvidesAnisetteData

FAILURE_PASSWORD_TOKEN_EXPIRED: Final = "2034"
FAILURE_LICENSE_NOT_FOUND: Final = "9610"

logger = getLogger(__name__)


def _parse_sinfs(item: dict[str, Any]) -> list[Sinf]:
    sinfs = []
    for sinf in item.get("sinfs") or []:
        sinf_id = sinf.get("id") if isinstance(sinf, dict) else None
        data = sinf.get("sinf") if isinstance(sinf, dict) else None
        if not isinstance(sinf_id, int) or isinstance(sinf_id, bool) or not isinstance(data, bytes):
            msg = "invalid sinf item"
            raise ApplePackageError(msg)

        sinfs.append(Sinf(id=sinf_id, data=data))

    if not sinfs:
        msg = "no sinf found in response"
        raise ApplePackageError(msg)

    return sinfs


def parse_download_response(response: dict[str, Any]) -> DownloadOutput:
    """Turn a `volumeStoreDownloadProduct` response into a `DownloadOutput`, raising on any failure."""
    if (failure := failure_type(response)) is not None:
        if failure == FAILURE_PASSWORD_TOKEN_EXPIRED:
            raise PasswordTokenExpiredError
        if failure == FAILURE_LICENSE_NOT_FOUND:
            raise LicenseRequiredError

        msg = customer_message(response) or f"download failed: {failure}"
        raise ApplePackageError(msg)

    items = response.get("songList")
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        msg = "no items in response"
        raise ApplePackageError(msg)

    item = items[0]
    url = item.get("URL")
    if not isinstance(url, str):
        msg = "missing download URL"
        raise ApplePackageError(msg)

    metadata = item.get("metadata")
    if not isinstance(metadata, dict):
        msg = "missing metadata"
        raise ApplePackageError(msg)

    version = metadata.get("bundleShortVersionString")
    bundle_version = metadata.get("bundleVersion")
    if not isinstance(version, str) or not isinstance(bundle_version, str):
        msg = "missing required information"
        raise ApplePackageError(msg)

    return DownloadOutput(
        download_url=url,
        sinfs=_parse_sinfs(item),
        bundle_short_version_string=version,
        bundle_version=bundle_version,
    )


async def download(  # noqa: PLR0913
    account: Account,
    software: Software,
    external_version_id: str | None = None,
    *,
    configuration: Configuration | None = None,
    anisette_provider: ProvidesAnisetteData | None = None,
    transport: HTTPTransport | None = None,
) -> DownloadOutput:
    """
    Request the download ticket of a package the account holds a license for.

    The account's cookie jar is updated with the cookies set by the store.

    :param account: The authenticated account.
    :param software: The package to download.
    :param external_version_id: The version to download. Defaults to the latest one.
    :return: The download URL, the DRM signatures and the package's version strings.
    """
    configuration = configuration or Configuration()

    payload: dict[str, Any] = {
        "creditDisplay": "",
        "guid": configuration.device_identifier,
        "salableAdamId": software.id,
    }
    if external_version_id:
        payload["externalVersionId"] = external_version_id

    headers = await build_store_headers(account, DOWNLOAD_URL, configuration, anisette_provider)

    logger.info(f"Requesting download of {software.bundle_id} ({software.id})")
    async with store_transport(configuration, transport) as store:
        response = await send_store_request(store, account, DOWNLOAD_URL, headers, payload)

    output = parse_download_response(response)
    logger.info(f"Received download ticket for {software.bundle_id} {output.bundle_short_version_string}")
    return output
