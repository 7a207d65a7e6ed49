#  ApplePackage - Python library for Apple ID authentication and App Store package acquisition
#  Copyright (C) 2024  Cypheriel
"""Symmetric cryptographic primitives over byte buffers."""

from __future__ import annotations

import hashlib
import hmac
from random import SystemRandom
from typing import Final

from cryptography.hazmat.primitives.ciphers import Cipher
from cryptography.hazmat.primitives.ciphers.algorithms import AES
from cryptography.hazmat.primitives.ciphers.modes import CBC
from cryptography.hazmat.primitives.padding import PKCS7

from ..exceptions import MalformedResponseError

SYSTEM_RANDOM: Final = SystemRandom()
randint: Final = SYSTEM_RANDOM.randint
randbytes: Final = SYSTEM_RANDOM.randbytes

AES_256_KEY_SIZE: Final = 32
AES_BLOCK_SIZE: Final = 16


def sha256(data: bytes) -> bytes:
    """
    Compute the SHA-256 digest of `data`.

    >>> sha256(b"abc").hex()
    'ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad'
    """
    return hashlib.sha256(data).digest()


def hmac_sha256(key: bytes, message: bytes) -> bytes:
    """Compute the HMAC-SHA256 of `message` under `key`."""
    return hmac.new(key, message, hashlib.sha256).digest()


def pbkdf2_sha256(password: bytes, salt: bytes, iterations: int, key_length: int) -> bytes:
    """
    Derive a key using PBKDF2-HMAC-SHA256.

    :param password: The password bytes.
    :param salt: The salt bytes.
    :param iterations: The iteration count, must be positive.
    :param key_length: The derived key length in bytes, must be positive.
    :return: The derived key.
    """
    if iterations <= 0:
        msg = "pbkdf2: invalid iterations"
        raise MalformedResponseError(msg)

    if key_length <= 0:
        msg = "pbkdf2: invalid key length"
        raise MalformedResponseError(msg)

    return hashlib.pbkdf2_hmac("sha256", password, salt, iterations, dklen=key_length)


def aes256_cbc_decrypt_pkcs7(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """
    Decrypt AES-256-CBC `ciphertext` and strip its PKCS7 padding.

    :param ciphertext: The encrypted data.
    :param key: The 32-byte AES key.
    :param iv: The 16-byte initialization vector.
    :return: The unpadded plaintext.
    """
    if len(key) != AES_256_KEY_SIZE:
        msg = "aes-cbc: invalid key size"
        raise MalformedResponseError(msg)

    if len(iv) != AES_BLOCK_SIZE:
        msg = "aes-cbc: invalid iv size"
        raise MalformedResponseError(msg)

    try:
        decryptor = Cipher(AES(key), CBC(iv)).decryptor()
        data = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = PKCS7(AES.block_size).unpadder()
        return unpadder.update(data) + unpadder.finalize()

    except ValueError as e:
        msg = f"aes-cbc decrypt failed: {e}"
        raise MalformedResponseError(msg) from e
