#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Runtime configuration and storefront lookup tables."""

from __future__ import annotations

import locale
import os
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Final, Self

DEFAULT_STORE_FRONT: Final = "143441"
DEFAULT_REGION: Final = "US"

GSA_TIMEOUT: Final = 30.0
ANISETTE_TIMEOUT: Final = 15.0

DEFAULT_USER_AGENT: Final = (
    "Configurator/2.17 (Macintosh; OS X 15.2; 24C5089c) AppleWebKit/0620.1.16.11.6"
)

STORE_FRONTS: Final[dict[str, str]] = {
    "AE": "143481",
    "AR": "143505",
    "AT": "143445",
    "AU": "143460",
    "BE": "143446",
    "BR": "143503",
    "CA": "143455",
    "CH": "143459",
    "CL": "143483",
    "CN": "143465",
    "CO": "143501",
    "CZ": "143489",
    "DE": "143443",
    "DK": "143458",
    "ES": "143454",
    "FI": "143447",
    "FR": "143442",
    "GB": "143444",
    "GR": "143448",
    "HK": "143463",
    "HU": "143482",
    "ID": "143476",
    "IE": "143449",
    "IL": "143491",
    "IN": "143467",
    "IT": "143450",
    "JP": "143462",
    "KR": "143466",
    "MX": "143468",
    "MY": "143473",
    "NL": "143452",
    "NO": "143457",
    "NZ": "143461",
    "PH": "143474",
    "PL": "143478",
    "PT": "143453",
    "RO": "143487",
    "RU": "143469",
    "SA": "143479",
    "SE": "143456",
    "SG": "143464",
    "TH": "143475",
    "TR": "143480",
    "TW": "143470",
    "UA": "143492",
    "US": "143441",
    "VN": "143471",
    "ZA": "143472",
}


class RemoteAnisetteServer(StrEnum):
    """Enum containing the URLs of public anisette servers."""

    SIDESTORE = "https://ani.sidestore.io/"


def store_id(region: str) -> str | None:
    """
    Look up the storefront identifier for a two-letter region code.

    >>> store_id("gb")
    '143444'

    >>> store_id("XX") is None
    True
    """
    return STORE_FRONTS.get(region.upper())


def country_code(store: str) -> str | None:
    """
    Look up the region code for a storefront identifier.

    Accepts bare identifiers as well as the suffixed forms sent in `X-Apple-Store-Front`.

    >>> country_code("143441-1,29")
    'US'

    >>> country_code("") is None
    True
    """
    prefix = store.split("-", 1)[0].split(",", 1)[0].strip()
    for code, value in STORE_FRONTS.items():
        if value == prefix:
            return code

    return None


def default_region() -> str | None:
    """Return the region of the process locale (e.g. `US` for `en_US`), if any."""
    language_code = locale.getlocale()[0]
    if not language_code or "_" not in language_code:
        return None

    return language_code.rsplit("_", 1)[1].upper() or None


def _default_device_identifier() -> str:
    return f"{uuid.getnode():012X}"


def _env_bool(value: str) -> bool | str:
    lowered = value.strip().lower()
    if lowered in {"0", "false", "no", "off"}:
        return False
    if lowered in {"1", "true", "yes", "on"}:
        return True

    # Anything else is treated as a CA bundle path.
    return value


@dataclass(kw_only=True)
class Configuration:
    """Settings shared by the authenticator and the store commands."""

    anisette_server_url: str = RemoteAnisetteServer.SIDESTORE
    timeout_connect: float = GSA_TIMEOUT
    timeout_read: float = GSA_TIMEOUT
    verify: bool | str = True
    device_identifier: str = field(default_factory=_default_device_identifier)
    user_agent: str = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls: type[Self]) -> Self:
        """Create a configuration, overriding defaults with `APPLEPACKAGE_*` environment variables."""
        config = cls()

        if anisette_url := os.environ.get("APPLEPACKAGE_ANISETTE_URL"):
            config.anisette_server_url = anisette_url

        if timeout_connect := os.environ.get("APPLEPACKAGE_TIMEOUT_CONNECT"):
            config.timeout_connect = float(timeout_connect)

        if timeout_read := os.environ.get("APPLEPACKAGE_TIMEOUT_READ"):
            config.timeout_read = float(timeout_read)

        if verify := os.environ.get("APPLEPACKAGE_VERIFY"):
            config.verify = _env_bool(verify)

        if device_identifier := os.environ.get("APPLEPACKAGE_DEVICE_ID"):
            config.device_identifier = device_identifier

        return config

    def resolve_store_front(self: Self, region: str | None = None) -> str:
        """Resolve the storefront for `region` (default: the locale region), falling back to the US storefront."""
        region = region or default_region() or DEFAULT_REGION
        return store_id(region) or DEFAULT_STORE_FRONT
