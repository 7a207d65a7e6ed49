#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Final
from urllib.parse import urlencode

from .._config import Configuration
from .._models import Software
from .._transport import parse_json
from ..exceptions import ApplePackageError
from ._common import store_transport

if TYPE_CHECKING:
    from .._transport import HTTPTransport

ITUNES_LOOKUP_URL: Final = "https://itunes.apple.com/lookup"

logger = getLogger(__name__)


async def lookup(
    bundle_id: str,
    country_code: str,
    *,
    configuration: Configuration | None = None,
    transport: HTTPTransport | None = None,
) -> Software:
    """Look up the latest published metadata of a package in the given region's store."""
    configuration = configuration or Configuration()

    params = {
        "entity": "software,iPadSoftware",
        "limit": "1",
        "media": "software",
        "bundleId": bundle_id,
        "country": country_code,
    }
    url = f"{ITUNES_LOOKUP_URL}?{urlencode(params)}"

    logger.debug(f"Looking up {bundle_id} in {country_code}")
    async with store_transport(configuration, transport) as store:
        data = parse_json(await store.send(url, headers={"Accept": "application/json"}))

    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        msg = "app not found"
        raise ApplePackageError(msg)

    return Software.from_lookup(results[0])
