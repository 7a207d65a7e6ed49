#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Exceptions raised by ApplePackage."""

from __future__ import annotations

from typing import Self


class ApplePackageError(Exception):
    """Base exception for every error raised by ApplePackage."""


#
# -- Authentication --
#


class AuthenticationError(ApplePackageError):
    """Base exception for authentication failures."""


class LegacyForbiddenError(AuthenticationError):
    """Exception raised when the legacy authentication endpoint returns HTTP 403."""

    def __init__(self: Self, correlation_key: str | None = None) -> None:
        """Initialize the exception with the optional request correlation key."""
        self.correlation_key = correlation_key

        msg = "Legacy authentication returned HTTP 403."
        if correlation_key:
            msg = f"Legacy authentication returned HTTP 403 (correlation: {correlation_key})."

        super().__init__(msg)


class TwoFactorRequiredError(AuthenticationError):
    """
    Exception raised when a verification code is required to continue authentication.

    The message is user-facing guidance. Re-invoke authentication with the code once it has been obtained.
    """


class InvalidTwoFactorCodeError(AuthenticationError):
    """Exception raised when the server rejects a verification code."""

    def __init__(self: Self, message: str = "Invalid verification code.") -> None:
        """Initialize the exception."""
        super().__init__(message)


class GrandSlamError(AuthenticationError):
    """Exception raised when GrandSlam reports a protocol-level error code."""

    def __init__(
        self: Self,
        error_code: int,
        error_message: str = "Error message not supplied.",
    ) -> None:
        """Initialize the exception with the `ec` and `em` values from the response status."""
        self.error_code = error_code
        self.error_message = error_message

        super().__init__(f"GSA authentication failed ({error_code}: {error_message})")


class MalformedResponseError(AuthenticationError):
    """Exception raised on any structural, parsing, cryptographic or transport violation."""

    def __init__(self: Self, detail: str) -> None:
        """Initialize the exception with diagnostic text."""
        self.detail = detail
        super().__init__(f"GSA authentication failed: {detail}")


class HTTPStatusError(MalformedResponseError):
    """Exception raised when a request ends with an unexpected HTTP status."""

    def __init__(  # noqa: PLR0913
        self: Self,
        status_code: int,
        method: str,
        url: str,
        *,
        allow: str | None = None,
        location: str | None = None,
        correlation_key: str | None = None,
        body_snippet: str | None = None,
    ) -> None:
        """Initialize the exception with everything needed to diagnose the failed request."""
        self.status_code = status_code
        self.method = method
        self.url = url
        self.allow = allow
        self.location = location
        self.correlation_key = correlation_key
        self.body_snippet = body_snippet

        parts = [f"HTTP {status_code} for {method} {url}"]
        if allow:
            parts.append(f"Allow: {allow}")
        if location:
            parts.append(f"Location: {location}")
        if correlation_key:
            parts.append(f"correlation: {correlation_key}")
        if body_snippet:
            parts.append(f"body: {body_snippet}")

        super().__init__(" | ".join(parts))


class AnisetteUnavailableError(AuthenticationError):
    """Exception raised when anisette data cannot be fetched or has gone stale."""

    def __init__(self: Self, detail: str) -> None:
        """Initialize the exception with the reason anisette is unavailable."""
        self.detail = detail
        super().__init__(f"Anisette unavailable: {detail}")


#
# -- Store commands --
#


class LicenseRequiredError(ApplePackageError):
    """Exception raised when downloading a package the account has no license for."""

    def __init__(self: Self, message: str = "license required") -> None:
        """Initialize the exception."""
        super().__init__(message)


class PasswordTokenExpiredError(ApplePackageError):
    """Exception raised when the account's password token has expired. The account must log in again."""

    def __init__(self: Self, message: str = "password token is expired") -> None:
        """Initialize the exception."""
        super().__init__(message)


class TemporarilyUnavailableError(ApplePackageError):
    """Exception raised when the store reports the item as temporarily unavailable."""

    def __init__(self: Self, message: str = "item is temporarily unavailable") -> None:
        """Initialize the exception."""
        super().__init__(message)


class SubscriptionRequiredError(ApplePackageError):
    """Exception raised when the item requires a subscription."""

    def __init__(self: Self, message: str = "subscription required") -> None:
        """Initialize the exception."""
        super().__init__(message)


class PaidPurchaseNotSupportedError(ApplePackageError):
    """Exception raised when attempting to purchase an item with a non-zero price."""

    def __init__(self: Self, message: str = "purchasing paid apps is not supported") -> None:
        """Initialize the exception."""
        super().__init__(message)
