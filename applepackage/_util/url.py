#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel

from __future__ import annotations

from urllib.parse import ParseResult, urljoin, urlparse


def replace_url(url: str | ParseResult, scheme: str | None = None, path: str | None = None) -> str:
    """
    Replace the scheme and/or path of a URL.

    >>> replace_url("https://example.com/path/to/resource?q=1", path="/new/path")
    'https://example.com/new/path?q=1'

    :param url: The URL to replace the scheme and/or path of.
    :param scheme: The new scheme to use. If `None`, the scheme will not be changed.
    :param path: The new path to use. If `None`, the path will not be changed.
    :return: The URL with the new scheme and/or path.
    """
    parsed = url if isinstance(url, ParseResult) else urlparse(url)
    if scheme is not None:
        parsed = parsed._replace(scheme=scheme)
    if path is not None:
        parsed = parsed._replace(path=path)

    return parsed.geturl()


def has_trailing_slash(url: str) -> bool:
    """
    Whether the path of `url` ends with a slash.

    >>> has_trailing_slash("https://example.com/auth/verify/phone/")
    True

    >>> has_trailing_slash("https://example.com/auth")
    False
    """
    return urlparse(url).path.endswith("/")


def with_trailing_slash(url: str) -> str:
    """
    Append a trailing slash to the path of `url`, leaving the query untouched.

    >>> with_trailing_slash("https://example.com/auth/verify/phone?x=1")
    'https://example.com/auth/verify/phone/?x=1'
    """
    parsed = urlparse(url)
    if parsed.path.endswith("/"):
        return url

    return replace_url(parsed, path=f"{parsed.path}/")


def resolve_location(base: str, location: str) -> str:
    """
    Resolve a `Location` header value against the URL of the request that produced it.

    >>> resolve_location("https://gsa.apple.com/auth/verify", "/auth/other")
    'https://gsa.apple.com/auth/other'
    """
    return urljoin(base, location)
