#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Module containing the anisette data snapshot."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Final, Self

from ..exceptions import AnisetteUnavailableError

REFRESH_AFTER: Final = timedelta(seconds=60)
VALID_FOR: Final = timedelta(seconds=90)

CLIENT_INFO_HEADER: Final = "X-Mme-Client-Info"
AUTHKIT_CLIENT_INFO: Final = "com.apple.AuthKit/1 (com.apple.dt.Xcode/3594.4.19)"

APP_INFO_HEADERS: Final = {
    "X-Apple-App-Info": "com.apple.gs.xcode.auth",
    "X-Xcode-Version": "11.2 (11B41)",
}

CPD_FLAGS: Final = {
    "bootstrap": "true",
    "icscrec": "true",
    "loc": "en_GB",
    "pbe": "false",
    "prkgen": "true",
    "svct": "iCloud",
}

_BRACKETED_SEGMENT: Final = re.compile(r"<[^>]*>")


def normalize_client_info(client_info: str) -> str:
    """
    Replace the third `<...>` segment of an `X-Mme-Client-Info` value with the AuthKit/Xcode identifier.

    Values with fewer than three segments are returned unchanged.

    >>> normalize_client_info("<MacBookPro13,2> <macOS;13.1;22C65> <com.apple.AuthKit/1 (com.apple.akd/1.0)>")
    '<MacBookPro13,2> <macOS;13.1;22C65> <com.apple.AuthKit/1 (com.apple.dt.Xcode/3594.4.19)>'
    """
    segments = list(_BRACKETED_SEGMENT.finditer(client_info))
    if len(segments) < 3:  # noqa: PLR2004
        return client_info

    third = segments[2]
    return f"{client_info[: third.start() + 1]}{AUTHKIT_CLIENT_INFO}{client_info[third.end() - 1 :]}"


def _find_key(headers: dict[str, str], name: str) -> str | None:
    if name in headers:
        return name

    lowered = name.lower()
    return next((key for key in headers if key.lower() == lowered), None)


@dataclass(frozen=True)
class AnisetteData:
    """A snapshot of device-identity headers fetched from an anisette server."""

    base_headers: dict[str, str]
    server_url: str
    generated_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def age(self: Self) -> timedelta:
        return datetime.now(tz=timezone.utc) - self.generated_at

    @property
    def needs_refresh(self: Self) -> bool:
        """Whether the snapshot is old enough that it should be fetched again."""
        return self.age > REFRESH_AFTER

    @property
    def is_valid(self: Self) -> bool:
        """Whether the snapshot is still young enough to be accepted by the server."""
        return self.age < VALID_FOR

    def header_value(self: Self, name: str) -> str | None:
        """Look up a header by case-insensitive name."""
        key = _find_key(self.base_headers, name)
        return self.base_headers[key] if key is not None else None

    def generate_headers(
        self: Self,
        *,
        cpd: bool = False,
        client_info: bool = False,
        app_info: bool = False,
    ) -> dict[str, str]:
        """
        Build a header set from this snapshot.

        The raw client-info header is always removed.

        :param cpd: Add the bootstrap, locale and protocol flags used during the SRP handshake.
        :param client_info: Re-add the client-info header, normalized to the AuthKit/Xcode identifier.
        :param app_info: Add the Xcode app-info headers.
        :return: The generated headers.
        """
        if not self.is_valid:
            msg = "stale anisette data"
            raise AnisetteUnavailableError(msg)

        headers = dict(self.base_headers)

        original_client_info = None
        if (key := _find_key(headers, CLIENT_INFO_HEADER)) is not None:
            original_client_info = headers.pop(key)

        if client_info and original_client_info is not None:
            headers[CLIENT_INFO_HEADER] = normalize_client_info(original_client_info)

        if app_info:
            headers |= APP_INFO_HEADERS

        if cpd:
            headers |= CPD_FLAGS

        return headers
