#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Big-endian integer serialization and modular arithmetic helpers."""

from __future__ import annotations

from functools import lru_cache


@lru_cache
def byte_length(value: int) -> int:
    """
    Calculate the byte length of an integer.

    :param value: The integer to calculate the byte length of.
    :return: The length of the integer in bytes.

    >>> byte_length(255)
    1

    >>> byte_length(256)
    2
    """
    return (value.bit_length() + 7) // 8


def to_bytes(value: int) -> bytes:
    r"""
    Convert an integer to a minimally-sized big-endian bytes object.

    Zero serializes to an empty bytes object, matching the leading-zero-stripped encoding used by the server.

    :param value: The integer to convert.
    :return: The bytes object.

    >>> to_bytes(255)
    b'\xff'

    >>> to_bytes(256)
    b'\x01\x00'

    >>> to_bytes(0)
    b''
    """
    return value.to_bytes(byte_length(value), "big")


def from_bytes(data: bytes) -> int:
    """
    Interpret big-endian bytes as an unsigned integer.

    >>> from_bytes(b"\\x01\\x00")
    256
    """
    return int.from_bytes(data, "big")


def pad(data: bytes, width: int) -> bytes:
    r"""
    Left-pad `data` with zero bytes to `width` bytes.

    >>> pad(b"\x02", 4)
    b'\x00\x00\x00\x02'
    """
    return bytes(max(0, width - len(data))) + data


def mod_pow(base: int, exponent: int, modulus: int) -> int:
    """
    Compute `base^exponent mod modulus`.

    >>> mod_pow(2, 10, 1000)
    24
    """
    return pow(base, exponent, modulus)
