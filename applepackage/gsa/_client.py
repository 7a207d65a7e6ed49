#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel

from __future__ import annotations

import json
import logging
from base64 import b64encode
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Self

from .._config import GSA_TIMEOUT, Configuration
from .._models import Account
from .._transport import HTTPTransport, parse_json, parse_plist
from .._util.crypto import aes256_cbc_decrypt_pkcs7, hmac_sha256, pbkdf2_sha256, randbytes, sha256
from ..anisette import RemoteAnisetteProvider
from ..exceptions import (
    ApplePackageError,
    GrandSlamError,
    InvalidTwoFactorCodeError,
    MalformedResponseError,
    TwoFactorRequiredError,
)
from ._srp import SRPClient
from ._types import GSASPD, LoginSession, LoginState

if TYPE_CHECKING:
    from types import TracebackType

    from ..anisette import ProvidesAnisetteData
    from ._types import TrustedPhoneNumber

GSA_BASE_URL: Final = "https://gsa.apple.com"
GSA_SERVICE_URL: Final = f"{GSA_BASE_URL}/grandslam/GsService2"
GSA_VALIDATE_2FA_URL: Final = f"{GSA_SERVICE_URL}/validate"
GSA_TRUSTED_DEVICE_URL: Final = f"{GSA_BASE_URL}/auth/verify/trusteddevice"
GSA_AUTH_URL: Final = f"{GSA_BASE_URL}/auth"
GSA_VERIFY_PHONE_URL: Final = f"{GSA_BASE_URL}/auth/verify/phone/"
GSA_VERIFY_PHONE_CODE_URL: Final = f"{GSA_BASE_URL}/auth/verify/phone/securitycode"

GSA_USER_AGENT: Final = "akd/1.0 CFNetwork/978.0.7 Darwin/18.7.0"
GSA_PROTOCOLS: Final = ["s2k", "s2k_fo"]
PRIVATE_EPHEMERAL_SIZE: Final = 32
PASSWORD_KEY_SIZE: Final = 32

APPLE_PLIST_HEADER: Final = (
    b"<?xml version='1.0' encoding='UTF-8'?>\n"
    b"<!DOCTYPE plist PUBLIC '-//Apple//DTD PLIST 1.0//EN' 'https://www.apple.com/DTDs/PropertyList-1.0.dtd'>"
)

TRUSTED_DEVICE_GUIDANCE: Final = (
    "Authentication requires verification code.\n"
    "If no verification code prompted, try logging in at https://account.apple.com to trigger the alert, "
    "then fill the 2FA Code field."
)
SMS_GUIDANCE: Final = (
    "Authentication requires SMS verification code.\n"
    "Request the code on your Apple ID sign-in prompt, then fill the 2FA Code field."
)

logger = logging.getLogger(__name__)


@dataclass
class GSAResponseStatus:
    status_code: int
    status_message: str | None

    @property
    def is_success(self: Self) -> bool:
        return self.status_code == 0


def _response_status(response: dict[str, Any]) -> GSAResponseStatus:
    status = response.get("Status", response)
    if not isinstance(status, dict):
        status = {}

    try:
        status_code = int(status.get("ec", 0))
    except (TypeError, ValueError):
        status_code = 0

    status_message = status.get("em")
    return GSAResponseStatus(status_code, status_message if isinstance(status_message, str) else None)


def check_gsa_error(response: dict[str, Any]) -> None:
    """Raise `GrandSlamError` if the response status carries a non-zero `ec`."""
    status = _response_status(response)
    if status.is_success:
        return

    logger.debug(f"{response = }")
    raise GrandSlamError(status.status_code, status.status_message or "Error message not supplied.")


def derive_password_key(password: str, salt: bytes, iterations: int, protocol: str = "s2k") -> bytes:
    """
    Derive the SRP password from the user's password.

    Both protocols run PBKDF2-SHA256 over the SHA-256 digest of the password. `s2k_fo` hex-encodes the digest first.
    """
    hashed = sha256(password.encode())
    if protocol == "s2k_fo":
        hashed = hashed.hex().encode()

    return pbkdf2_sha256(hashed, salt, iterations, PASSWORD_KEY_SIZE)


def decrypt_spd(ciphertext: bytes, session_key: bytes) -> dict[str, Any]:
    """Decrypt the "secure password data" blob of a completed login with keys derived from the SRP session key."""
    extra_data_key = hmac_sha256(session_key, b"extra data key:")
    extra_data_iv = hmac_sha256(session_key, b"extra data iv:")[:16]

    plaintext = aes256_cbc_decrypt_pkcs7(ciphertext, extra_data_key, extra_data_iv)
    if not plaintext.lstrip().startswith((b"<?xml", b"bplist")):
        plaintext = APPLE_PLIST_HEADER + plaintext

    try:
        return parse_plist(plaintext)
    except MalformedResponseError as e:
        msg = "invalid spd"
        raise MalformedResponseError(msg) from e


def _non_empty_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


def _extract_password_token(spd: dict[str, Any]) -> str | None:
    tokens = spd.get("t")
    if isinstance(tokens, dict):
        pet = tokens.get("com.apple.gs.idms.pet")
        if isinstance(pet, dict) and isinstance(pet.get("token"), str):
            return pet["token"]

    for key in ("token", "passwordToken"):
        if isinstance(spd.get(key), str):
            return spd[key]

    return None


def decode_spd(spd: dict[str, Any]) -> GSASPD:
    if (dsid := _non_empty_str(spd, "adsid")) is None:
        msg = "missing adsid"
        raise MalformedResponseError(msg)

    if (idms_token := _non_empty_str(spd, "GsIdmsToken")) is None:
        msg = "missing GsIdmsToken"
        raise MalformedResponseError(msg)

    return GSASPD(
        dsid=dsid,
        idms_token=idms_token,
        first_name=_non_empty_str(spd, "fn") or "",
        last_name=_non_empty_str(spd, "ln") or "",
        password_token=_extract_password_token(spd),
        store_front=_non_empty_str(spd, "sf") or _non_empty_str(spd, "storeFront"),
    )


def _first_trusted_phone(extras: Any) -> TrustedPhoneNumber:  # noqa: ANN401
    phone_numbers = extras.get("trustedPhoneNumbers") if isinstance(extras, dict) else None
    if not isinstance(phone_numbers, list):
        msg = "invalid authentication extras"
        raise MalformedResponseError(msg)

    for phone in phone_numbers:
        if isinstance(phone, dict) and isinstance(phone.get("id"), int):
            return phone

    msg = "no trusted phone numbers"
    raise MalformedResponseError(msg)


class GSAAuthenticator:
    """
    Client for Apple's GrandSlam Authentication (GSA) service.

    Logs in with SRP, drives trusted-device or SMS two-factor verification when GrandSlam asks for it, and turns the
    decrypted session data into an `Account`.
    """

    def __init__(
        self: Self,
        configuration: Configuration | None = None,
        anisette_provider: ProvidesAnisetteData | None = None,
        transport: HTTPTransport | None = None,
    ) -> None:
        """Initialize a new instance of the GSAAuthenticator class."""
        self.configuration = configuration or Configuration()

        self._anisette_provider = anisette_provider or RemoteAnisetteProvider.for_server(
            self.configuration.anisette_server_url,
        )

        self._owns_transport = transport is None
        self._transport = transport or HTTPTransport(timeout=GSA_TIMEOUT, verify=self.configuration.verify)

        self._srp = SRPClient()

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
        if self._owns_transport:
            await self._transport.aclose()

    async def _request(self: Self, headers: dict[str, str], data: dict[str, Any]) -> dict[str, Any]:
        """Send a request to the GrandSlam service and return its checked `Response` dictionary."""
        payload = {
            "Header": {"Version": "1.0.1"},
            "Request": data,
        }

        response = await self._transport.send_plist(GSA_SERVICE_URL, "POST", headers, payload)

        response_data = response.get("Response")
        if not isinstance(response_data, dict):
            msg = "missing Response"
            raise MalformedResponseError(msg)

        check_gsa_error(response_data)
        return response_data

    async def login_email_password(self: Self, email: str, password: str) -> LoginSession:
        """Run the two-round SRP login and decide the next step from the returned status."""
        a = randbytes(PRIVATE_EPHEMERAL_SIZE)
        public_ephemeral = self._srp.compute_public_ephemeral(a)

        anisette = await self._anisette_provider.anisette_data()

        headers = {
            "Content-Type": "text/x-xml-plist",
            "Accept": "*/*",
            "User-Agent": GSA_USER_AGENT,
        }
        if (client_info := anisette.header_value("X-Mme-Client-Info")) is not None:
            headers["X-MMe-Client-Info"] = client_info

        cpd = anisette.generate_headers(cpd=True)

        logger.info("Starting authentication with GrandSlam.")
        init_response = await self._request(
            headers,
            {
                "A2k": public_ephemeral,
                "cpd": cpd,
                "o": "init",
                "ps": GSA_PROTOCOLS,
                "u": email,
            },
        )

        salt = init_response.get("s")
        server_public_ephemeral = init_response.get("B")
        iterations = init_response.get("i")
        cookie = init_response.get("c")
        if (
            not isinstance(salt, bytes)
            or not isinstance(server_public_ephemeral, bytes)
            or not isinstance(cookie, str)
            or iterations is None
        ):
            msg = "missing init parameters"
            raise MalformedResponseError(msg)

        if not isinstance(iterations, int) or isinstance(iterations, bool) or iterations <= 0:
            msg = "invalid iterations"
            raise MalformedResponseError(msg)

        protocol = init_response.get("sp", "s2k")
        logger.debug(f"GrandSlam selected protocol {protocol} with {iterations} iterations.")

        verifier = self._srp.process_reply(
            a,
            email.encode(),
            derive_password_key(password, salt, iterations, protocol),
            salt,
            server_public_ephemeral,
        )

        logger.debug("Sending confirmation response with proof to GrandSlam.")
        complete_response = await self._request(
            headers,
            {
                "M1": verifier.m1,
                "cpd": cpd,
                "c": cookie,
                "o": "complete",
                "u": email,
            },
        )

        m2 = complete_response.get("M2")
        if not isinstance(m2, bytes):
            msg = "missing server proof"
            raise MalformedResponseError(msg)
        verifier.verify_server_proof(m2)

        encrypted_spd = complete_response.get("spd")
        if not isinstance(encrypted_spd, bytes):
            msg = "missing spd"
            raise MalformedResponseError(msg)

        spd = decode_spd(decrypt_spd(encrypted_spd, verifier.key))

        status = complete_response.get("Status")
        au = status.get("au") if isinstance(status, dict) else None
        session = LoginSession.from_au_status(spd, au if isinstance(au, str) else None)

        match session.state:
            case LoginState.NEEDS_TRUSTED_DEVICE_2FA:
                logger.warning("Trusted device secondary authentication required.")
            case LoginState.NEEDS_SMS_2FA:
                logger.warning("SMS secondary authentication required.")
            case LoginState.NEEDS_EXTRA_STEP:
                logger.warning(f"Unknown authentication step requested: {session.extra_step}")
            case LoginState.LOGGED_IN:
                logger.info("Authentication complete.")

        return session

    async def build_2fa_headers(self: Self, session: LoginSession, *, sms: bool) -> dict[str, str]:
        """Build the headers for a two-factor request from a fresh anisette snapshot."""
        identity_token = b64encode(f"{session.spd.dsid}:{session.spd.idms_token}".encode()).decode()

        anisette = await self._anisette_provider.anisette_data()
        headers = anisette.generate_headers(client_info=True, app_info=True)

        if sms:
            headers["Content-Type"] = "application/json"
        else:
            headers["Content-Type"] = "text/x-xml-plist"
            headers["Accept"] = "text/x-xml-plist"

        headers["User-Agent"] = "Xcode"
        headers["Accept-Language"] = "en-us"
        headers["X-Apple-Identity-Token"] = identity_token

        if (locale := anisette.header_value("X-Apple-Locale")) is not None:
            headers["Loc"] = locale

        return headers

    async def request_trusted_device_2fa(self: Self, session: LoginSession) -> None:
        """Ask GrandSlam to push a verification code to the account's trusted devices."""
        headers = await self.build_2fa_headers(session, sms=False)
        await self._transport.send(GSA_TRUSTED_DEVICE_URL, "GET", headers)

    async def validate_trusted_device_2fa(self: Self, session: LoginSession, code: str) -> None:
        headers = await self.build_2fa_headers(session, sms=False)
        headers["security-code"] = code

        response = parse_plist(await self._transport.send(GSA_VALIDATE_2FA_URL, "GET", headers))
        check_gsa_error(response)

    async def _fetch_trusted_phone(self: Self, session: LoginSession) -> TrustedPhoneNumber:
        headers = await self.build_2fa_headers(session, sms=True)
        headers["Accept"] = "application/json"

        # A 423 still carries the trusted phone numbers.
        content = await self._transport.send(GSA_AUTH_URL, "GET", headers, acceptable_status_codes=(201, 423))
        return _first_trusted_phone(parse_json(content))

    async def request_sms_2fa(self: Self, session: LoginSession) -> dict[str, Any]:
        """
        Ask GrandSlam to text a verification code to the first trusted phone number.

        :return: The verification body, to be sent again along with the code.
        """
        phone = await self._fetch_trusted_phone(session)
        verify_body: dict[str, Any] = {"phoneNumber": {"id": phone["id"]}, "mode": "sms"}

        headers = await self.build_2fa_headers(session, sms=True)
        # PUT is rejected here (Allow: GET, POST, OPTIONS).
        await self._transport.send(GSA_VERIFY_PHONE_URL, "POST", headers, json.dumps(verify_body).encode())

        return verify_body

    async def validate_sms_2fa(self: Self, session: LoginSession, verify_body: dict[str, Any], code: str) -> None:
        body = verify_body | {"securityCode": {"code": code}}

        headers = await self.build_2fa_headers(session, sms=True)
        headers["Accept"] = "application/json"

        try:
            await self._transport.send(GSA_VERIFY_PHONE_CODE_URL, "POST", headers, json.dumps(body).encode())
        except MalformedResponseError as e:
            logger.debug(f"SMS verification failed: {e}")
            raise InvalidTwoFactorCodeError from e

    async def authenticate(self: Self, email: str, password: str, code: str = "") -> Account:
        """
        Authenticate an Apple ID.

        When two-factor verification is required and `code` is empty, the code is requested and
        `TwoFactorRequiredError` is raised with guidance for the user. Call again with the code to finish.
        """
        session = await self.login_email_password(email, password)

        match session.state:
            case LoginState.LOGGED_IN:
                pass

            case LoginState.NEEDS_TRUSTED_DEVICE_2FA:
                try:
                    await self.request_trusted_device_2fa(session)
                except ApplePackageError as e:
                    logger.warning(f"Failed to push verification code to trusted devices: {e}")

                if not code:
                    raise TwoFactorRequiredError(TRUSTED_DEVICE_GUIDANCE)

                await self.validate_trusted_device_2fa(session, code)
                session = await self.login_email_password(email, password)

            case LoginState.NEEDS_SMS_2FA:
                verify_body = await self.request_sms_2fa(session)
                if not code:
                    raise TwoFactorRequiredError(SMS_GUIDANCE)

                await self.validate_sms_2fa(session, verify_body, code)
                session = await self.login_email_password(email, password)

            case LoginState.NEEDS_EXTRA_STEP:
                msg = f"additional authentication step required: {session.extra_step}"
                raise MalformedResponseError(msg)

        if session.state != LoginState.LOGGED_IN:
            msg = "unexpected login state"
            raise MalformedResponseError(msg)

        return self.build_account(email, password, session.spd)

    def build_account(self: Self, email: str, password: str, spd: GSASPD) -> Account:
        if not spd.password_token:
            msg = "missing token"
            raise MalformedResponseError(msg)

        return Account(
            email=email,
            password=password,
            apple_id=email,
            store=spd.store_front or self.configuration.resolve_store_front(),
            first_name=spd.first_name,
            last_name=spd.last_name,
            password_token=spd.password_token,
            directory_services_identifier=spd.dsid,
        )
