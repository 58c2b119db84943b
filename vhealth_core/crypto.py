"""
vhealth_core.crypto
-------------------
Hybrid encryption for V-Health payloads:

- AES-256-GCM: bulk encryption with a fresh key and nonce per call
- RSA-2048-OAEP (SHA-256): wraps the per-call AES key under the public key

Nonce / counter split: the 96-bit nonce is the fixed part of the counter
block and GCM appends a 32-bit block counter, so a single package can carry
up to 2^32 - 2 blocks (~64 GiB). The 16-byte authentication tag is appended
to the cipher text; any altered bit in the cipher text, nonce or wrapped key
makes decryption fail instead of yielding wrong plaintext.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import HYBRID_ALGORITHM, NONCE_BYTES, SYMMETRIC_KEY_BYTES
from .errors import DecryptionError
from .keys import KeyPair
from .logger import get_logger
from .utils import b64e, b64d, now_ts

log = get_logger("VH.Cipher")

_OAEP = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA256()), algorithm=hashes.SHA256(), label=None)


@dataclass(frozen=True)
class EncryptedPackage:
    cipher_text: bytes          # AES-GCM output, tag included
    wrapped_key: bytes          # RSA-OAEP(aes_key)
    iv: bytes                   # 96-bit nonce
    algorithm: str = HYBRID_ALGORITHM
    timestamp: str = field(default_factory=now_ts)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for k in ("cipher_text", "wrapped_key", "iv"):
            d[k] = b64e(d[k])
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedPackage":
        try:
            return cls(
                cipher_text=b64d(data["cipher_text"]),
                wrapped_key=b64d(data["wrapped_key"]),
                iv=b64d(data["iv"]),
                algorithm=data.get("algorithm", HYBRID_ALGORITHM),
                timestamp=data.get("timestamp") or now_ts(),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise DecryptionError(f"Malformed encrypted package: {e}") from e


# --------- AES-GCM primitives ----------
def aead_encrypt(key: bytes, plaintext: bytes, aad: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    aes = AESGCM(key)
    nonce = os.urandom(NONCE_BYTES)
    ct = aes.encrypt(nonce, plaintext, aad)
    return nonce, ct

def aead_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, aad: Optional[bytes] = None) -> bytes:
    aes = AESGCM(key)
    return aes.decrypt(nonce, ciphertext, aad)


# --------- RSA-OAEP key wrapping ----------
def wrap_key(keys: KeyPair, key: bytes) -> bytes:
    return keys.public_key.encrypt(key, _OAEP)

def unwrap_key(keys: KeyPair, wrapped: bytes) -> bytes:
    return keys.private_key.decrypt(wrapped, _OAEP)


class HybridCipher:
    """Encrypts arbitrary bytes for the holder of ``keys.private_key``."""

    algorithm = HYBRID_ALGORITHM

    def __init__(self, keys: KeyPair):
        self.keys = keys

    def encrypt(self, plaintext: bytes) -> EncryptedPackage:
        if not isinstance(plaintext, (bytes, bytearray)):
            raise TypeError(f"encrypt expects bytes, got {type(plaintext).__name__}")

        key = AESGCM.generate_key(bit_length=SYMMETRIC_KEY_BYTES * 8)
        nonce, ct = aead_encrypt(key, bytes(plaintext), aad=self.algorithm.encode("ascii"))
        pkg = EncryptedPackage(cipher_text=ct, wrapped_key=wrap_key(self.keys, key), iv=nonce)
        log.debug(f"[ENCRYPT] {len(plaintext)} bytes -> {len(ct)} bytes ({self.algorithm})")
        return pkg

    def decrypt(self, pkg: EncryptedPackage) -> bytes:
        if pkg.algorithm != self.algorithm:
            raise DecryptionError(f"Unsupported algorithm: {pkg.algorithm}")
        if len(pkg.iv) != NONCE_BYTES:
            raise DecryptionError(f"Invalid nonce length: {len(pkg.iv)} bytes (expected {NONCE_BYTES})")

        try:
            key = unwrap_key(self.keys, pkg.wrapped_key)
        except ValueError as e:
            log.warning("[DECRYPT] key unwrap failed (wrong or rotated key pair, or altered wrapped key)")
            raise DecryptionError("Unable to unwrap symmetric key") from e

        if len(key) != SYMMETRIC_KEY_BYTES:
            raise DecryptionError(f"Unwrapped key has wrong length: {len(key)} bytes")

        try:
            return aead_decrypt(key, pkg.iv, pkg.cipher_text, aad=pkg.algorithm.encode("ascii"))
        except InvalidTag as e:
            log.warning("[DECRYPT] authentication failed (cipher text altered or truncated)")
            raise DecryptionError("Cipher text failed authentication") from e
