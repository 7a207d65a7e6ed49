#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Package providing anisette (device-identity) headers required by Apple's authentication services."""

from ._data import AnisetteData, normalize_client_info
from ._provider import ProvidesAnisetteData, RemoteAnisetteProvider

__all__ = [
    "AnisetteData",
    "ProvidesAnisetteData",
    "RemoteAnisetteProvider",
    "normalize_client_info",
]
