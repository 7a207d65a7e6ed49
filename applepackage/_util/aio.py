#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
from __future__ import annotations

import asyncio
from functools import wraps
from typing import TYPE_CHECKING, ParamSpec, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine

_P = ParamSpec("_P")
_R = TypeVar("_R")


def run_async(func: Callable[_P, Coroutine[None, None, _R]]) -> Callable[_P, _R]:
    """Wrap a coroutine function so synchronous callers (such as typer commands) can run it to completion."""

    @wraps(func)
    def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
        return asyncio.run(func(*args, **kwargs))

    return wrapper
