#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from applepackage.anisette import AnisetteData, RemoteAnisetteProvider, normalize_client_info
from applepackage.exceptions import AnisetteUnavailableError

from .conftest import ANISETTE_HEADERS

SERVER_URL = "https://anisette.test/"


def _snapshot(age: timedelta = timedelta()) -> AnisetteData:
    return AnisetteData(
        base_headers=dict(ANISETTE_HEADERS),
        server_url=SERVER_URL,
        generated_at=datetime.now(tz=timezone.utc) - age,
    )


def _provider(handler) -> RemoteAnisetteProvider:
    return RemoteAnisetteProvider(SERVER_URL, transport=httpx.MockTransport(handler))


def test_freshness_window():
    assert not _snapshot().needs_refresh
    assert _snapshot().is_valid

    assert _snapshot(timedelta(seconds=75)).needs_refresh
    assert _snapshot(timedelta(seconds=75)).is_valid

    assert not _snapshot(timedelta(seconds=95)).is_valid


def test_header_value_is_case_insensitive():
    assert _snapshot().header_value("x-apple-locale") == "en_US"
    assert _snapshot().header_value("X-Missing") is None


def test_generate_headers_variants():
    snapshot = _snapshot()

    plain = snapshot.generate_headers()
    assert "X-Mme-Client-Info" not in plain
    assert plain["X-Apple-I-MD"] == "md"
    assert "bootstrap" not in plain

    cpd = snapshot.generate_headers(cpd=True)
    assert cpd["bootstrap"] == "true"
    assert cpd["svct"] == "iCloud"
    assert "X-Mme-Client-Info" not in cpd

    full = snapshot.generate_headers(client_info=True, app_info=True)
    assert full["X-Mme-Client-Info"].endswith("<com.apple.AuthKit/1 (com.apple.dt.Xcode/3594.4.19)>")
    assert full["X-Apple-App-Info"] == "com.apple.gs.xcode.auth"
    assert full["X-Xcode-Version"] == "11.2 (11B41)"


def test_generate_headers_rejects_stale_snapshot():
    with pytest.raises(AnisetteUnavailableError, match="stale"):
        _snapshot(timedelta(seconds=120)).generate_headers()


def test_normalize_client_info_short_value():
    assert normalize_client_info("<only> <two>") == "<only> <two>"


@pytest.mark.asyncio()
async def test_concurrent_callers_share_one_fetch():
    fetches = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal fetches
        fetches += 1
        assert request.headers["Cache-Control"] == "no-cache"
        await asyncio.sleep(0.01)
        return httpx.Response(200, json=ANISETTE_HEADERS)

    provider = _provider(handler)
    first, second = await asyncio.gather(provider.anisette_data(), provider.anisette_data())

    assert fetches == 1
    assert first is second
    assert first.server_url == SERVER_URL


@pytest.mark.asyncio()
async def test_cached_snapshot_is_reused_until_refresh_is_due():
    fetches = 0

    def handler(_request: httpx.Request) -> httpx.Response:
        nonlocal fetches
        fetches += 1
        return httpx.Response(200, json=ANISETTE_HEADERS)

    provider = _provider(handler)
    first = await provider.anisette_data()
    assert await provider.anisette_data() is first
    assert fetches == 1

    provider._cached = _snapshot(timedelta(seconds=61))
    assert await provider.anisette_data() is not first
    assert fetches == 2


@pytest.mark.asyncio()
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json=ANISETTE_HEADERS),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={}),
        httpx.Response(200, content=b"not json"),
    ],
)
async def test_unusable_responses(response):
    provider = _provider(lambda _request: response)

    with pytest.raises(AnisetteUnavailableError):
        await provider.anisette_data()


def test_shared_provider_per_server():
    assert RemoteAnisetteProvider.for_server("https://a.test/") is RemoteAnisetteProvider.for_server("https://a.test/")
    assert RemoteAnisetteProvider.for_server("https://a.test/") is not RemoteAnisetteProvider.for_server(
        "https://b.test/",
    )


def test_shared_provider_survives_successive_event_loops():
    fetches = 0

    async def handler(_request: httpx.Request) -> httpx.Response:
        nonlocal fetches
        fetches += 1
        await asyncio.sleep(0.01)
        return httpx.Response(200, json=ANISETTE_HEADERS)

    provider = _provider(handler)

    async def fetch_concurrently() -> None:
        first, second = await asyncio.gather(provider.anisette_data(), provider.anisette_data())
        assert first is second

    asyncio.run(fetch_concurrently())
    provider._cached = _snapshot(timedelta(seconds=61))
    asyncio.run(fetch_concurrently())

    assert fetches == 2
