#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from logging import getLogger
from typing import TYPE_CHECKING, Annotated, Self

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Hashable

logger = getLogger(__name__)


def _verify_callback(func: Callable[..., Awaitable[None]]) -> None:
    if not callable(func):
        msg = f"Listener must be a callable, got {type(func).__name__}!"
        raise TypeError(msg)

    if not inspect.iscoroutinefunction(func):
        msg = f"Listener must be a coroutine function, got {type(func).__name__}!"
        raise TypeError(msg)


def _get_identifier_name(identifier: Annotated[Hashable, "Identifier"]) -> str:
    if isinstance(identifier, (bytes, str)):
        identifier_name = f"{identifier!r}"
    elif isinstance(identifier, Enum):
        identifier_name = f"{identifier.name}"
    elif hasattr(identifier, "__qualname__"):
        identifier_name = f"{identifier.__qualname__}"
    else:
        identifier_name = f"{identifier}"

    return identifier_name


class EventListener:
    """Dispatches events to coroutine listeners registered per event identifier."""

    def __init__(self: Self) -> None:
        self._callback_map: dict[
            Annotated[Hashable, "Identifier"],
            list[Callable[..., Awaitable[None]]],
        ] = {}

    def register_event_listener(
        self: Self,
        identifier: Annotated[Hashable, "Identifier"],
    ) -> Callable[[Callable[..., Awaitable[None]]], Callable[..., Awaitable[None]]]:
        """Return a decorator registering a coroutine function as a listener for `identifier`."""

        def decorator(func: Callable[..., Awaitable[None]]) -> Callable[..., Awaitable[None]]:
            _verify_callback(func)
            logger.debug(f"Registering listener {func.__name__}() for event {_get_identifier_name(identifier)}.")

            self._callback_map.setdefault(identifier, []).append(func)
            return func

        return decorator

    def unregister_event_listener(
        self: Self,
        identifier: Annotated[Hashable, "Identifier"],
        func: Callable[..., Awaitable[None]],
    ) -> None:
        """Remove a previously registered listener. Unknown listeners are ignored."""
        listeners = self._callback_map.get(identifier, [])
        if func in listeners:
            listeners.remove(func)

    async def _trigger_event(
        self: Self,
        identifier: Annotated[Hashable, "Identifier"],
        *args: ...,
        **kwargs: ...,
    ) -> None:
        logger.debug(f"Triggering event {_get_identifier_name(identifier)}.")

        listeners = self._callback_map.get(identifier)

        if listeners:
            await asyncio.gather(*(listener(*args, **kwargs) for listener in listeners))
