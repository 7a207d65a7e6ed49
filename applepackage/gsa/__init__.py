#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Package containing a client implementation for Apple's GrandSlam Authentication (GSA) service."""

from ._client import GSAAuthenticator
from ._srp import SRP_GROUP, SRPClient, SRPClientVerifier, SRPGroup
from ._types import GSASPD, AUStatus, LoginSession, LoginState

__all__ = [
    "GSASPD",
    "SRP_GROUP",
    "AUStatus",
    "GSAAuthenticator",
    "LoginSession",
    "LoginState",
    "SRPClient",
    "SRPClientVerifier",
    "SRPGroup",
]
