#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Self, TypedDict


class AUStatus(StrEnum):
    """Values of the `Status.au` field of a completed SRP login."""

    TRUSTED_DEVICE = "trustedDeviceSecondaryAuth"
    SMS = "secondaryAuth"


class LoginState(StrEnum):
    LOGGED_IN = "loggedIn"
    NEEDS_TRUSTED_DEVICE_2FA = "needsTrustedDevice2FA"
    NEEDS_SMS_2FA = "needsSMS2FA"
    NEEDS_EXTRA_STEP = "needsExtraStep"


@dataclass(frozen=True)
class GSASPD:
    """Decrypted "secure password data" returned by a completed SRP login."""

    dsid: str
    idms_token: str
    first_name: str = ""
    last_name: str = ""
    password_token: str | None = None
    store_front: str | None = None


@dataclass(frozen=True)
class LoginSession:
    spd: GSASPD
    state: LoginState
    extra_step: str | None = None

    @classmethod
    def from_au_status(cls: type[Self], spd: GSASPD, au: str | None) -> Self:
        """Pick the next login state from the `Status.au` value."""
        match au:
            case None | "":
                return cls(spd, LoginState.LOGGED_IN)
            case AUStatus.TRUSTED_DEVICE:
                return cls(spd, LoginState.NEEDS_TRUSTED_DEVICE_2FA)
            case AUStatus.SMS:
                return cls(spd, LoginState.NEEDS_SMS_2FA)
            case _:
                return cls(spd, LoginState.NEEDS_EXTRA_STEP, extra_step=au)


class TrustedPhoneNumber(TypedDict, total=False):
    id: int
    numberWithDialCode: str
    lastTwoDigits: str
    pushMode: str


class AuthenticationExtras(TypedDict):
    trustedPhoneNumbers: list[TrustedPhoneNumber]
