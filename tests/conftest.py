#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
from __future__ import annotations

import json
import plistlib
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from cryptography.hazmat.primitives.ciphers import Cipher
from cryptography.hazmat.primitives.ciphers.algorithms import AES
from cryptography.hazmat.primitives.ciphers.modes import CBC
from cryptography.hazmat.primitives.padding import PKCS7

from applepackage._config import Configuration
from applepackage._models import Account, Software
from applepackage._transport import HTTPTransport
from applepackage._util.bigint import from_bytes, pad, to_bytes
from applepackage._util.crypto import hmac_sha256, randbytes, sha256
from applepackage.anisette import AnisetteData
from applepackage.gsa import SRP_GROUP
from applepackage.gsa._client import derive_password_key

TEST_EMAIL = "user@example.com"
TEST_PASSWORD = "correct horse battery staple"  # noqa: S105
TEST_DSID = "000123456789"
TEST_IDMS_TOKEN = "idms-token"  # noqa: S105
TEST_PASSWORD_TOKEN = "pet-token"  # noqa: S105

ANISETTE_HEADERS = {
    "X-Apple-I-MD": "md",
    "X-Apple-I-MD-M": "md-m",
    "X-Apple-I-MD-RINFO": "17106176",
    "X-Apple-I-MD-LU": "lu",
    "X-Apple-I-Client-Time": "2024-01-01T00:00:00Z",
    "X-Apple-I-TimeZone": "UTC",
    "X-Apple-Locale": "en_US",
    "X-Mme-Client-Info": "<MacBookPro13,2> <macOS;13.1;22C65> <com.apple.AuthKit/1 (com.apple.akd/1.0)>",
    "X-Mme-Device-Id": "DEVICE-ID",
}


#
# -- SRP / SPD server side --
#


class SRPServer:
    """Server half of the SRP exchange, computed independently of the client."""

    def __init__(self, username: bytes, password_key: bytes, salt: bytes) -> None:
        self.username = username
        self.salt = salt

        n, g = SRP_GROUP.N, SRP_GROUP.g
        x = from_bytes(sha256(salt + sha256(b":" + password_key)))
        self.verifier = pow(g, x, n)

        self.b = from_bytes(randbytes(32))
        k = from_bytes(sha256(to_bytes(n) + pad(to_bytes(g), SRP_GROUP.width)))
        self.public_ephemeral = to_bytes((k * self.verifier + pow(g, self.b, n)) % n)

        self.key: bytes | None = None

    def verify(self, client_public_ephemeral: bytes, m1: bytes) -> bytes | None:
        """Check the client proof, returning the server proof or `None` on mismatch."""
        n, g = SRP_GROUP.N, SRP_GROUP.g

        a = from_bytes(client_public_ephemeral)
        u = from_bytes(sha256(client_public_ephemeral + self.public_ephemeral))
        premaster_secret = pow(a * pow(self.verifier, u, n), self.b, n)
        self.key = sha256(to_bytes(premaster_secret))

        prime_hash = sha256(to_bytes(n))
        generator_hash = sha256(pad(to_bytes(g), SRP_GROUP.width))
        xored = bytes(p ^ q for p, q in zip(prime_hash, generator_hash, strict=True))

        expected_m1 = sha256(
            xored + sha256(self.username) + self.salt + client_public_ephemeral + self.public_ephemeral + self.key,
        )
        if m1 != expected_m1:
            return None

        return sha256(client_public_ephemeral + m1 + self.key)


def encrypt_spd(spd: dict[str, Any], session_key: bytes, *, strip_header: bool = True) -> bytes:
    plaintext = plistlib.dumps(spd, fmt=plistlib.FMT_XML)
    if strip_header:
        plaintext = plaintext[plaintext.index(b"<plist") :]

    key = hmac_sha256(session_key, b"extra data key:")
    iv = hmac_sha256(session_key, b"extra data iv:")[:16]

    padder = PKCS7(AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(AES(key), CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def encrypt_cbc(plaintext: bytes, key: bytes, iv: bytes) -> bytes:
    padder = PKCS7(AES.block_size).padder()
    padded = padder.update(plaintext) + padder.finalize()

    encryptor = Cipher(AES(key), CBC(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def plist_response(data: dict[str, Any], status_code: int = 200, **kwargs: Any) -> httpx.Response:
    return httpx.Response(status_code, content=plistlib.dumps(data, fmt=plistlib.FMT_XML), **kwargs)


#
# -- Fake GrandSlam --
#


@dataclass
class FakeGrandSlam:
    """
    In-memory GrandSlam service.

    `second_factor` is `None`, `"trusted_device"` or `"sms"`. Once a valid code is submitted, later logins succeed
    without a second factor.
    """

    password: str = TEST_PASSWORD
    protocol: str = "s2k"
    iterations: int = 1000
    second_factor: str | None = None
    extra_step: str | None = None
    verification_code: str = "123456"
    strip_spd_header: bool = True
    spd: dict[str, Any] = field(
        default_factory=lambda: {
            "adsid": TEST_DSID,
            "GsIdmsToken": TEST_IDMS_TOKEN,
            "fn": "Jane",
            "ln": "Appleseed",
            "t": {"com.apple.gs.idms.pet": {"token": TEST_PASSWORD_TOKEN}},
        },
    )

    requests: list[httpx.Request] = field(default_factory=list)
    logins: int = 0
    verified: bool = False
    trusted_device_push_fails: bool = False
    trusted_phone_numbers: list[dict[str, Any]] = field(
        default_factory=lambda: [{"id": 1, "numberWithDialCode": "+1 (•••) •••-••55", "lastTwoDigits": "55"}],
    )

    _srp: SRPServer | None = None
    _client_public_ephemeral: bytes = b""

    def paths(self) -> list[tuple[str, str]]:
        return [(request.method, request.url.path) for request in self.requests]

    def _service(self, request: httpx.Request) -> httpx.Response:
        body = plistlib.loads(request.content)["Request"]

        if body["o"] == "init":
            assert body["ps"] == ["s2k", "s2k_fo"]
            assert body["cpd"]["bootstrap"] == "true"

            self._client_public_ephemeral = body["A2k"]
            salt = randbytes(16)
            password_key = derive_password_key(self.password, salt, self.iterations, self.protocol)
            self._srp = SRPServer(body["u"].encode(), password_key, salt)

            return plist_response(
                {
                    "Response": {
                        "Status": {"ec": 0},
                        "s": salt,
                        "B": self._srp.public_ephemeral,
                        "i": self.iterations,
                        "c": "cookie",
                        "sp": self.protocol,
                    },
                },
            )

        assert body["o"] == "complete"
        assert body["c"] == "cookie"
        assert self._srp is not None

        m2 = self._srp.verify(self._client_public_ephemeral, body["M1"])
        if m2 is None:
            failure = {"ec": -22406, "em": "Your Apple ID or password is incorrect."}
            return plist_response({"Response": {"Status": failure}})

        self.logins += 1
        status: dict[str, Any] = {"ec": 0}
        if self.extra_step is not None:
            status["au"] = self.extra_step
        elif self.second_factor == "trusted_device" and not self.verified:
            status["au"] = "trustedDeviceSecondaryAuth"
        elif self.second_factor == "sms" and not self.verified:
            status["au"] = "secondaryAuth"

        return plist_response(
            {
                "Response": {
                    "Status": status,
                    "M2": m2,
                    "spd": encrypt_spd(self.spd, self._srp.key, strip_header=self.strip_spd_header),
                },
            },
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        match request.method, request.url.path:
            case "POST", "/grandslam/GsService2":
                return self._service(request)

            case "GET", "/auth/verify/trusteddevice":
                if self.trusted_device_push_fails:
                    return httpx.Response(500, text="push failed")
                return httpx.Response(200)

            case "GET", "/grandslam/GsService2/validate":
                if request.headers.get("security-code") != self.verification_code:
                    return plist_response({"ec": -21669, "em": "Incorrect verification code."})
                self.verified = True
                return plist_response({"ec": 0})

            case "GET", "/auth":
                return httpx.Response(423, json={"trustedPhoneNumbers": self.trusted_phone_numbers})

            case "POST", "/auth/verify/phone/":
                return httpx.Response(200, json={})

            case "POST", "/auth/verify/phone/securitycode":
                body = json.loads(request.content)
                if body.get("securityCode", {}).get("code") != self.verification_code:
                    return httpx.Response(400, json={"service_errors": [{"code": "-21669"}]})
                self.verified = True
                return httpx.Response(200, json={})

        return httpx.Response(404)


#
# -- Fake anisette --
#


class FakeAnisetteProvider:
    def __init__(self, headers: dict[str, str] | None = None) -> None:
        self.headers = dict(ANISETTE_HEADERS if headers is None else headers)
        self.calls = 0

    async def anisette_data(self) -> AnisetteData:
        self.calls += 1
        return AnisetteData(base_headers=self.headers, server_url="https://anisette.test/")


def mock_transport(handler: Any) -> HTTPTransport:
    return HTTPTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


#
# -- Fixtures --
#


@pytest.fixture()
def anisette_provider() -> FakeAnisetteProvider:
    return FakeAnisetteProvider()


@pytest.fixture()
def configuration() -> Configuration:
    return Configuration(device_identifier="AABBCCDDEEFF")


@pytest.fixture()
def grandslam() -> FakeGrandSlam:
    return FakeGrandSlam()


@pytest.fixture()
def account() -> Account:
    return Account(
        email=TEST_EMAIL,
        password=TEST_PASSWORD,
        apple_id=TEST_EMAIL,
        store="143441",
        first_name="Jane",
        last_name="Appleseed",
        password_token=TEST_PASSWORD_TOKEN,
        directory_services_identifier=TEST_DSID,
    )


@pytest.fixture()
def software() -> Software:
    return Software(id=361309726, bundle_id="com.apple.Pages", name="Pages", version="13.1", price=0.0)
