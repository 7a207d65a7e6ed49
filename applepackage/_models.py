#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Domain models shared by the authenticator, the store commands and the download manifests."""

from __future__ import annotations

import time
from base64 import b64decode, b64encode
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self
from urllib.parse import urlparse

import httpx

from .exceptions import MalformedResponseError

if TYPE_CHECKING:
    from http.cookiejar import Cookie as CookieJarCookie


@dataclass
class Cookie:
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float | None = None
    secure: bool = False

    @property
    def is_expired(self: Self) -> bool:
        return self.expires is not None and self.expires <= time.time()

    def matches(self: Self, url: str) -> bool:
        """Whether this cookie should be sent with a request to `url`."""
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        domain = self.domain.lower().lstrip(".")

        if host != domain and not host.endswith(f".{domain}"):
            return False

        path = parsed.path or "/"
        cookie_path = self.path or "/"
        if path != cookie_path and not path.startswith(cookie_path.rstrip("/") + "/"):
            return False

        if self.secure and parsed.scheme != "https":
            return False

        return not self.is_expired

    @classmethod
    def from_cookiejar(cls: type[Self], cookie: CookieJarCookie) -> Self:
        return cls(
            name=cookie.name,
            value=cookie.value or "",
            domain=cookie.domain,
            path=cookie.path or "/",
            expires=float(cookie.expires) if cookie.expires is not None else None,
            secure=bool(cookie.secure),
        )

    def to_dict(self: Self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "expires": self.expires,
            "secure": self.secure,
        }

    @classmethod
    def from_dict(cls: type[Self], data: dict[str, Any]) -> Self:
        return cls(
            name=data["name"],
            value=data.get("value", ""),
            domain=data.get("domain", ""),
            path=data.get("path", "/"),
            expires=data.get("expires"),
            secure=bool(data.get("secure", False)),
        )


@dataclass
class Account:
    """
    An authenticated Apple ID.

    The cookie jar is mutated by every store command. It is not locked, so callers must not run concurrent commands
    against the same account.
    """

    email: str
    password: str
    apple_id: str
    store: str
    first_name: str
    last_name: str
    password_token: str
    directory_services_identifier: str
    cookies: list[Cookie] = field(default_factory=list)

    @property
    def name(self: Self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def build_cookie_header(self: Self, url: str) -> str | None:
        """Build the value of the `Cookie` header for a request to `url`, or `None` if no cookie applies."""
        matching = [cookie for cookie in self.cookies if cookie.matches(url)]
        if not matching:
            return None

        return "; ".join(f"{cookie.name}={cookie.value}" for cookie in matching)

    def merge_cookies(self: Self, response: httpx.Response) -> None:
        """Merge the `Set-Cookie` headers of `response` into this account's cookie jar."""
        received = httpx.Cookies()
        received.extract_cookies(response)

        for jar_cookie in received.jar:
            cookie = Cookie.from_cookiejar(jar_cookie)
            self.cookies = [
                existing
                for existing in self.cookies
                if (existing.name, existing.domain, existing.path) != (cookie.name, cookie.domain, cookie.path)
            ]
            self.cookies.append(cookie)

        self.cookies = [cookie for cookie in self.cookies if not cookie.is_expired]

    def to_dict(self: Self) -> dict[str, Any]:
        return {
            "email": self.email,
            "password": self.password,
            "appleId": self.apple_id,
            "store": self.store,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "passwordToken": self.password_token,
            "directoryServicesIdentifier": self.directory_services_identifier,
            "cookies": [cookie.to_dict() for cookie in self.cookies],
        }

    @classmethod
    def from_dict(cls: type[Self], data: dict[str, Any]) -> Self:
        return cls(
            email=data.get("email", ""),
            password=data.get("password", ""),
            apple_id=data.get("appleId", data.get("email", "")),
            store=data.get("store", ""),
            first_name=data.get("firstName", ""),
            last_name=data.get("lastName", ""),
            password_token=data.get("passwordToken", ""),
            directory_services_identifier=data.get("directoryServicesIdentifier", ""),
            cookies=[Cookie.from_dict(cookie) for cookie in data.get("cookies", [])],
        )


@dataclass
class Software:
    """A package descriptor as returned by the iTunes lookup API."""

    id: int
    bundle_id: str
    name: str = ""
    version: str = ""
    price: float | None = None

    @classmethod
    def from_lookup(cls: type[Self], data: dict[str, Any]) -> Self:
        price = data.get("price")
        try:
            return cls(
                id=int(data.get("trackId") or data.get("id", 0)),
                bundle_id=str(data.get("bundleId", "")),
                name=str(data.get("trackName", "")),
                version=str(data.get("version", "")),
                price=float(price) if price is not None else None,
            )
        except (TypeError, ValueError) as e:
            msg = f"invalid package metadata: {e}"
            raise MalformedResponseError(msg) from e

    def to_dict(self: Self) -> dict[str, Any]:
        return {
            "trackId": self.id,
            "bundleId": self.bundle_id,
            "trackName": self.name,
            "version": self.version,
            "price": self.price,
        }

    from_dict = from_lookup


@dataclass
class Sinf:
    id: int
    data: bytes

    def to_dict(self: Self) -> dict[str, Any]:
        return {"id": self.id, "sinf": b64encode(self.data).decode()}

    @classmethod
    def from_dict(cls: type[Self], data: dict[str, Any]) -> Self:
        return cls(id=int(data["id"]), data=b64decode(data["sinf"]))


@dataclass
class DownloadOutput:
    download_url: str
    sinfs: list[Sinf]
    bundle_short_version_string: str
    bundle_version: str
