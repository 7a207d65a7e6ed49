#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""HTTP transport with explicit redirect, method-downgrade and trailing-slash retry handling."""

from __future__ import annotations

import json
import plistlib
from http import HTTPStatus
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final, Self

import httpx

from ._config import GSA_TIMEOUT
from ._util.url import has_trailing_slash, resolve_location, with_trailing_slash
from .exceptions import HTTPStatusError, MalformedResponseError

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Mapping
    from types import TracebackType

    from ._config import Configuration

MAX_REDIRECTS: Final = 3
BODY_SNIPPET_LENGTH: Final = 200
CORRELATION_HEADER: Final = "X-Apple-Jingle-Correlation-Key"

logger = getLogger(__name__)


def _body_snippet(content: bytes) -> str | None:
    if not content:
        return None

    try:
        return content.decode()[:BODY_SNIPPET_LENGTH]
    except UnicodeDecodeError:
        return f"<{len(content)} bytes>"


def parse_plist(content: bytes) -> dict[str, Any]:
    """Parse a property list (XML or binary) that must have a dictionary at its root."""
    try:
        data = plistlib.loads(content)
    except (plistlib.InvalidFileException, ValueError) as e:
        msg = "invalid plist response"
        raise MalformedResponseError(msg) from e

    if not isinstance(data, dict):
        msg = "invalid plist response"
        raise MalformedResponseError(msg)

    return data


def parse_json(content: bytes) -> Any:  # noqa: ANN401
    try:
        return json.loads(content)
    except ValueError as e:
        msg = "invalid JSON response"
        raise MalformedResponseError(msg) from e


class HTTPTransport:
    """
    A single request primitive shared by the authenticator and the store commands.

    Redirects are never followed by the underlying client. They are followed here, for at most `MAX_REDIRECTS` hops.
    A 303 downgrades the next request to a body-less GET, every other 3xx keeps the method and body. A 405 on a path
    without a trailing slash is retried once with the slash appended.

    The transport never carries cookies between requests. Callers send them explicitly through the `Cookie` header.
    Responses, including redirect hops and error statuses, can be observed through `response_hook`.
    """

    def __init__(
        self: Self,
        *,
        timeout: httpx.Timeout | float = GSA_TIMEOUT,
        verify: bool | str = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            verify=verify,
            timeout=timeout,
            follow_redirects=False,
            http1=True,
            http2=False,
        )

    @classmethod
    def from_configuration(cls: type[Self], configuration: Configuration) -> Self:
        """Create a transport using the configured TLS verification and connect/read timeouts."""
        timeout = httpx.Timeout(
            configuration.timeout_read,
            connect=configuration.timeout_connect,
            read=configuration.timeout_read,
        )
        return cls(timeout=timeout, verify=configuration.verify)

    async def __aenter__(self: Self) -> Self:
        return self

    async def __aexit__(
        self: Self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self: Self) -> None:
        await self._client.aclose()

    async def _send_once(
        self: Self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: bytes | None,
    ) -> httpx.Response:
        request = self._client.build_request(method, url, headers=headers, content=body)
        logger.debug(f"{method} {url}")

        try:
            response = await self._client.send(request, follow_redirects=False)
        except httpx.HTTPError as e:
            msg = f"request failed for {method} {url}: {e}"
            raise MalformedResponseError(msg) from e
        finally:
            self._client.cookies.clear()

        logger.debug(f"{response.http_version} {response.status_code} {response.reason_phrase}")
        return response

    async def request(  # noqa: PLR0913
        self: Self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        acceptable_status_codes: Collection[int] = (),
        response_hook: Callable[[httpx.Response], None] | None = None,
    ) -> httpx.Response:
        """
        Send a request, applying the redirect and retry policies.

        :param url: The URL to request.
        :param method: The HTTP method.
        :param headers: The request headers. They are sent unchanged on every hop.
        :param body: The request body, if any.
        :param acceptable_status_codes: Non-2xx status codes that should be returned instead of raising.
        :param response_hook: Called with every response received, before any status handling.
        :return: The final response.
        """
        headers = dict(headers or {})
        redirect_count = 0
        slash_retried = False

        while True:
            response = await self._send_once(url, method, headers, body)
            if response_hook is not None:
                response_hook(response)

            status_code = response.status_code

            if HTTPStatus.MULTIPLE_CHOICES <= status_code < HTTPStatus.BAD_REQUEST:
                if redirect_count >= MAX_REDIRECTS:
                    msg = f"too many redirects ({status_code}) for {method} {url}"
                    raise MalformedResponseError(msg)

                location = response.headers.get("Location")
                if not location:
                    msg = f"redirect ({status_code}) without Location for {method} {url}"
                    raise MalformedResponseError(msg)

                url = resolve_location(url, location)
                if status_code == HTTPStatus.SEE_OTHER:
                    method = "GET"
                    body = None

                redirect_count += 1
                logger.debug(f"Following {status_code} redirect ({redirect_count}/{MAX_REDIRECTS}) to {url}")
                continue

            if status_code == HTTPStatus.METHOD_NOT_ALLOWED and not slash_retried and not has_trailing_slash(url):
                url = with_trailing_slash(url)
                slash_retried = True
                logger.debug(f"Retrying {method} with trailing slash: {url}")
                continue

            if not response.is_success and status_code not in acceptable_status_codes:
                raise HTTPStatusError(
                    status_code,
                    method,
                    url,
                    allow=response.headers.get("Allow"),
                    location=response.headers.get("Location"),
                    correlation_key=response.headers.get(CORRELATION_HEADER),
                    body_snippet=_body_snippet(response.content),
                )

            return response

    async def send(  # noqa: PLR0913
        self: Self,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
        acceptable_status_codes: Collection[int] = (),
        response_hook: Callable[[httpx.Response], None] | None = None,
    ) -> bytes:
        """Send a request (see `request`) and return the body of the final response."""
        response = await self.request(url, method, headers, body, acceptable_status_codes, response_hook)
        return response.content

    async def send_plist(
        self: Self,
        url: str,
        method: str,
        headers: Mapping[str, str],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        """Send `body` encoded as an XML property list and parse the response as a property list dictionary."""
        content = plistlib.dumps(body, fmt=plistlib.FMT_XML)
        return parse_plist(await self.send(url, method, headers, content))
