#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Package containing the App Store commands run on behalf of an authenticated account."""

from ._download import download
from ._lookup import lookup
from ._purchase import purchase

__all__ = [
    "download",
    "lookup",
    "purchase",
]
