"""
Copyright (c) 2024  Cypheriel.

Secure Remote Password protocol implementation.

This module provides a client-side implementation of SRP-6a over the 2048-bit group defined in RFC 5054, as used by
Apple's GrandSlam service.
It deviates from RFC 5054 in the same places GrandSlam does:
  - The private key is derived without the username: `x = H(s, H(":", P))`.
  - Integers are hashed in their minimal big-endian encoding, except `g`, which is padded to the length of `N`.

See:
  - https://datatracker.ietf.org/doc/html/rfc5054
"""

from __future__ import annotations

import hmac
from base64 import b64decode
from dataclasses import dataclass
from typing import Final, Self

from .._util.bigint import byte_length, from_bytes, mod_pow, pad, to_bytes
from .._util.crypto import sha256
from ..exceptions import MalformedResponseError

_RFC5054_2048_PRIME: Final = (
    "rGvbQTJKmpvxZt5eE4lYL69ytmUZh+4H/DGSlD21YFCjcynLtKCZ7YGT4HV3Z6E91SMSq0sDMQ3Nf0ip2gT9UOgIOWntt2ewz2CVF5oWOrNm"
    "GgX71fqq6CkYqZYvC5O4Vfl5k+yXXuqoDXQK2/T/dHNZ0EHVwz6nHSgeRGsUdzvKl7Q6I/uAFna9IHpDbGSB8dK5B4cXRhpbnTLmiPh3SFRF"
    "I7UksNV9Xqd6J3XS7PoDLPvb9S+zeGFgJ5AE5Xrmr4dOcwPOUymczAQce8MI2CpWmPOo0MOCca41+Onb+7aUtcgD2J965DXeI21SX1R1m2Xj"
    "cvzWjvIPpxEfnkr/cw=="
)


@dataclass(frozen=True)
class SRPGroup:
    """
    SRP group parameters.

    `N` is a safe prime (`N = 2q+1`, where q is prime) and `g` is a generator modulo `N`.
    """

    N: int  # noqa: N815
    g: int

    @property
    def width(self: Self) -> int:
        """The length of `N` in bytes."""
        return byte_length(self.N)

    @property
    def multiplier(self: Self) -> int:
        """
        SRP-6a multiplier parameter.

        `k = H(N, PAD(g))`
        """
        return from_bytes(sha256(to_bytes(self.N) + pad(to_bytes(self.g), self.width)))

    @classmethod
    def rfc5054_2048(cls: type[Self]) -> Self:
        prime = b64decode(_RFC5054_2048_PRIME)
        if len(prime) != 256:  # noqa: PLR2004
            msg = "Invalid SRP group size."
            raise ValueError(msg)

        return cls(N=from_bytes(prime), g=2)


SRP_GROUP: Final = SRPGroup.rfc5054_2048()


@dataclass(frozen=True)
class SRPClientVerifier:
    """Result of processing the server's challenge. Only valid for the login attempt that produced it."""

    m1: bytes
    """
    The client proof. This value is sent to the server to verify the user.

    `M1 = H(H(N) XOR H(g), H(I), s, A, B, K)`
    """

    expected_m2: bytes
    """
    The server proof the client expects to receive.

    `M2 = H(A, M1, K)`
    """

    key: bytes
    """
    The shared session key.

    `K = H(S)`
    """

    def verify_server_proof(self: Self, m2: bytes) -> None:
        """
        Verify the server proof. This is the only authentication of the server to the client.

        :param m2: The server proof received from the server.
        """
        if not hmac.compare_digest(m2, self.expected_m2):
            msg = "server proof mismatch"
            raise MalformedResponseError(msg)


class SRPClient:
    """
    Stateless SRP-6a client.

    Every value is derived from the arguments alone, no state is kept between calls.
    """

    def __init__(self: Self, group: SRPGroup = SRP_GROUP) -> None:
        """Initialize the SRP client over `group`."""
        self.group = group

    def compute_public_ephemeral(self: Self, a: bytes) -> bytes:
        """
        Compute the user's public ephemeral value.

        `A = g^a % N`

        :param a: The user's private ephemeral value, a random number.
        :return: The public ephemeral value, sent to the server along with the username.
        """
        return to_bytes(mod_pow(self.group.g, from_bytes(a), self.group.N))

    def _xor_prime_and_generator_hashes(self: Self) -> bytes:
        """XOR each byte of the hashed safe prime with the hashed (padded) generator."""
        prime_hashed = sha256(to_bytes(self.group.N))
        generator_hashed = sha256(pad(to_bytes(self.group.g), self.group.width))

        return bytes(p_byte ^ g_byte for p_byte, g_byte in zip(prime_hashed, generator_hashed, strict=True))

    def _compute_premaster_secret(self: Self, server_public_ephemeral: int, private_key: int, a: int, u: int) -> int:
        """
        Compute the premaster secret.

        `S = (N + B - k * g^x)^(u * x + a) % N`
        """
        n = self.group.N
        kgx = (self.group.multiplier * mod_pow(self.group.g, private_key, n)) % n
        base = (n + server_public_ephemeral - kgx) % n

        return mod_pow(base, u * private_key + a, n)

    def process_reply(  # noqa: PLR0913
        self: Self,
        a: bytes,
        username: bytes,
        password: bytes,
        salt: bytes,
        server_public_ephemeral: bytes,
    ) -> SRPClientVerifier:
        """
        Process the challenge from the server and generate the client proof.

        :param a: The user's private ephemeral value.
        :param username: The user's identifying username, `I`.
        :param password: The user's (derived) password, `P`.
        :param salt: The salt provided by the server, `s`.
        :param server_public_ephemeral: The server's public ephemeral, `B`.
        :return: The client proof, the expected server proof and the session key.
        """
        private_ephemeral = from_bytes(a)
        public_ephemeral = mod_pow(self.group.g, private_ephemeral, self.group.N)

        b = from_bytes(server_public_ephemeral)
        if b % self.group.N == 0:
            msg = "illegal server ephemeral"
            raise MalformedResponseError(msg)

        a_bytes = to_bytes(public_ephemeral)
        b_bytes = to_bytes(b)

        # u = H(A, B)
        scrambling_parameter = from_bytes(sha256(a_bytes + b_bytes))

        # x = H(s, H(":", P))
        private_key = from_bytes(sha256(salt + sha256(b":" + password)))

        premaster_secret = self._compute_premaster_secret(b, private_key, private_ephemeral, scrambling_parameter)
        key = sha256(to_bytes(premaster_secret))

        m1 = sha256(self._xor_prime_and_generator_hashes() + sha256(username) + salt + a_bytes + b_bytes + key)
        m2 = sha256(a_bytes + m1 + key)

        return SRPClientVerifier(m1=m1, expected_m2=m2, key=key)
