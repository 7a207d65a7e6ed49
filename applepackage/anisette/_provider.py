#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
import asyncio
from logging import getLogger
from typing import ClassVar, Protocol, Self
from weakref import WeakKeyDictionary

import httpx

from .._config import ANISETTE_TIMEOUT, RemoteAnisetteServer
from ..exceptions import AnisetteUnavailableError
from ._data import AnisetteData

logger = getLogger(__name__)


class ProvidesAnisetteData(Protocol):
    async def anisette_data(self: Self) -> AnisetteData: ...


class RemoteAnisetteProvider:
    """
    Fetches anisette headers from a remote server and caches the latest snapshot.

    Concurrent callers on the same event loop share a single in-flight fetch. Each fetch opens its own client, so only
    the cached snapshot outlives the event loop that produced it.
    """

    _shared: ClassVar[dict[str, "RemoteAnisetteProvider"]] = {}

    def __init__(
        self: Self,
        server_url: RemoteAnisetteServer | str = RemoteAnisetteServer.SIDESTORE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server_url = str(server_url)

        self._transport = transport
        self._cached: AnisetteData | None = None
        self._locks: WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = WeakKeyDictionary()

    @classmethod
    def for_server(cls: type[Self], server_url: RemoteAnisetteServer | str) -> Self:
        """Return the provider shared by every caller using `server_url`."""
        server_url = str(server_url)
        if server_url not in cls._shared:
            cls._shared[server_url] = cls(server_url)

        return cls._shared[server_url]

    def _lock(self: Self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if (lock := self._locks.get(loop)) is None:
            lock = self._locks[loop] = asyncio.Lock()

        return lock

    async def anisette_data(self: Self) -> AnisetteData:
        """Return the cached snapshot, fetching a fresh one if it is missing or due for a refresh."""
        if self._cached is not None and not self._cached.needs_refresh:
            return self._cached

        async with self._lock():
            # Another caller may have refreshed the cache while this one waited.
            if self._cached is not None and not self._cached.needs_refresh:
                return self._cached

            self._cached = await self._fetch()
            return self._cached

    async def _fetch(self: Self) -> AnisetteData:
        logger.debug(f"Fetching anisette data from {self.server_url}")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=ANISETTE_TIMEOUT) as client:
                response = await client.get(self.server_url, headers={"Cache-Control": "no-cache"})
        except httpx.HTTPError as e:
            msg = f"request failed: {e}"
            raise AnisetteUnavailableError(msg) from e

        if not response.is_success:
            msg = f"server returned HTTP {response.status_code}"
            raise AnisetteUnavailableError(msg)

        try:
            response_data = response.json()
        except ValueError as e:
            msg = "unexpected response"
            raise AnisetteUnavailableError(msg) from e

        if not isinstance(response_data, dict):
            msg = "unexpected response"
            raise AnisetteUnavailableError(msg)

        headers = {key: value for key, value in response_data.items() if isinstance(value, str)}
        if not headers:
            msg = "empty response"
            raise AnisetteUnavailableError(msg)

        logger.info(f"Refreshed anisette data from {self.server_url}")
        return AnisetteData(base_headers=headers, server_url=self.server_url)
