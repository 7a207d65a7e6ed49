#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel

from __future__ import annotations

from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from .._config import Configuration
from ..exceptions import (
    ApplePackageError,
    PaidPurchaseNotSupportedError,
    PasswordTokenExpiredError,
    SubscriptionRequiredError,
    TemporarilyUnavailableError,
)
from ._common import (
    PURCHASE_URL,
    build_store_headers,
    customer_message,
    failure_type,
    send_store_request,
    store_transport,
)

if TYPE_CHECKING:
    from .._models import Account, Software
    from .._transport import HTTPTransport
    from ..anisette import ProvidesAnisetteData

FAILURE_TEMPORARILY_UNAVAILABLE: Final = "2059"
FAILURE_PASSWORD_TOKEN_EXPIRED: Final = "2034"
CUSTOMER_MESSAGE_SUBSCRIPTION_REQUIRED: Final = "Subscription Required"
TEMPORARILY_UNAVAILABLE_TEXT: Final = "item is temporarily unavailable"

logger = getLogger(__name__)


class PricingParameters(StrEnum):
    APP_STORE = "STDQ"
    ARCADE = "GAME"


def _purchase_payload(software: Software, guid: str, pricing: PricingParameters) -> dict[str, Any]:
    return {
        "appExtVrsId": "0",
        "hasAskedToFulfillPreorder": "true",
        "buyWithoutAuthorization": "true",
        "hasDoneAgeCheck": "true",
        "guid": guid,
        "needDiv": "0",
        "origPage": f"Software-{software.id}",
        "origPageLocation": "Buy",
        "price": "0",
        "pricingParameters": str(pricing),
        "productType": "C",
        "salableAdamId": software.id,
    }


def check_purchase_response(response: dict[str, Any]) -> None:
    """Raise if a `buyProduct` response does not describe a successful purchase."""
    if (failure := failure_type(response)) is not None:
        message = customer_message(response)

        if failure == FAILURE_TEMPORARILY_UNAVAILABLE:
            raise TemporarilyUnavailableError(TEMPORARILY_UNAVAILABLE_TEXT)
        if failure == FAILURE_PASSWORD_TOKEN_EXPIRED:
            raise PasswordTokenExpiredError
        if message == CUSTOMER_MESSAGE_SUBSCRIPTION_REQUIRED:
            raise SubscriptionRequiredError

        msg = message or f"purchase failed: {failure}"
        raise ApplePackageError(msg)

    jingle_doc_type = response.get("jingleDocType")
    status = response.get("status")
    if not isinstance(jingle_doc_type, str) or not isinstance(status, int):
        msg = "invalid purchase response"
        raise ApplePackageError(msg)

    if jingle_doc_type != "purchaseSuccess" or status != 0:
        msg = "failed to purchase app"
        raise ApplePackageError(msg)


async def _purchase_with_params(  # noqa: PLR0913
    account: Account,
    software: Software,
    pricing: PricingParameters,
    configuration: Configuration,
    anisette_provider: ProvidesAnisetteData | None,
    transport: HTTPTransport | None,
) -> None:
    payload = _purchase_payload(software, configuration.device_identifier, pricing)
    headers = await build_store_headers(account, PURCHASE_URL, configuration, anisette_provider)

    async with store_transport(configuration, transport) as store:
        response = await send_store_request(store, account, PURCHASE_URL, headers, payload)

    check_purchase_response(response)


async def purchase(
    account: Account,
    software: Software,
    *,
    configuration: Configuration | None = None,
    anisette_provider: ProvidesAnisetteData | None = None,
    transport: HTTPTransport | None = None,
) -> None:
    """
    Acquire a license for a free package.

    Arcade titles are rejected with the regular pricing parameters, so the purchase is retried once with the Arcade
    ones when the store reports the item as temporarily unavailable.
    """
    if (software.price or 0) > 0:
        raise PaidPurchaseNotSupportedError

    configuration = configuration or Configuration()

    logger.info(f"Purchasing {software.bundle_id} ({software.id})")
    try:
        await _purchase_with_params(
            account,
            software,
            PricingParameters.APP_STORE,
            configuration,
            anisette_provider,
            transport,
        )
    except ApplePackageError as e:
        if TEMPORARILY_UNAVAILABLE_TEXT not in str(e):
            raise

        logger.info(f"Retrying purchase of {software.bundle_id} with Arcade pricing parameters")
        await _purchase_with_params(
            account,
            software,
            PricingParameters.ARCADE,
            configuration,
            anisette_provider,
            transport,
        )

    logger.info(f"Purchased {software.bundle_id}")
