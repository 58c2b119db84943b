"""
vhealth_core.keys
-----------------
RSA-2048 key pair management.

The key pair is loaded once and kept for the life of the process. There is
no regeneration on demand: a missing key pair is a deployment error, since
regenerating would silently orphan everything already encrypted or signed.
Generation is a separate, explicit step (``generate_keypair``).
"""

from __future__ import annotations
import os, threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .constants import (
    DEFAULT_KEYS_DIR, PRIVATE_KEY_FILE, PUBLIC_KEY_FILE,
    RSA_KEY_SIZE, RSA_PUBLIC_EXPONENT,
)
from .errors import KeyMaterialMissing
from .logger import get_logger
from .utils import sha256

log = get_logger("VH.Keys")


@dataclass(frozen=True)
class KeyPair:
    public_key: rsa.RSAPublicKey
    private_key: rsa.RSAPrivateKey

    def public_key_pem(self) -> str:
        """SubjectPublicKeyInfo PEM, safe to hand to external verifiers."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("ascii")

    def fingerprint(self) -> str:
        der = self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return sha256(der)[:32]

    @property
    def key_size(self) -> int:
        return self.public_key.key_size


class KeyManager:
    """
    Loads the process-wide key pair from ``keys_dir``.

    Key files:
    - private_key.pem: PKCS#8 (or traditional PKCS#1) RSA private key
    - public_key.pem:  SubjectPublicKeyInfo RSA public key
    """

    def __init__(self, keys_dir: str | os.PathLike | None = None):
        self.keys_dir = Path(keys_dir or os.getenv("VHEALTH_KEYS_DIR", DEFAULT_KEYS_DIR))
        self.private_path = self.keys_dir / PRIVATE_KEY_FILE
        self.public_path = self.keys_dir / PUBLIC_KEY_FILE
        self._pair: Optional[KeyPair] = None
        self._lock = threading.Lock()

    def load(self) -> KeyPair:
        if self._pair is not None:
            return self._pair
        with self._lock:
            if self._pair is None:
                self._pair = self._read()
                log.info(f"[KEYS] loaded RSA-{self._pair.key_size} pair fpr={self._pair.fingerprint()}")
        return self._pair

    def _read(self) -> KeyPair:
        for path in (self.private_path, self.public_path):
            if not path.exists():
                log.critical(f"[KEYS] key material missing: {path}")
                raise KeyMaterialMissing(
                    f"RSA key file not found at {path}. Run the key generation step first."
                )

        try:
            private_key = serialization.load_pem_private_key(self.private_path.read_bytes(), password=None)
            public_key = serialization.load_pem_public_key(self.public_path.read_bytes())
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            log.critical(f"[KEYS] unreadable key material in {self.keys_dir}: {e}")
            raise KeyMaterialMissing(f"Failed to load key material from {self.keys_dir}: {e}") from e

        if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(public_key, rsa.RSAPublicKey):
            raise KeyMaterialMissing(f"Key material in {self.keys_dir} is not RSA")

        if private_key.public_key().public_numbers() != public_key.public_numbers():
            raise KeyMaterialMissing(f"Public key in {self.public_path} does not match the private key")

        if private_key.key_size < RSA_KEY_SIZE:
            raise KeyMaterialMissing(
                f"RSA-{private_key.key_size} key in {self.keys_dir} is below the RSA-{RSA_KEY_SIZE} minimum"
            )

        return KeyPair(public_key=public_key, private_key=private_key)


def generate_keypair(
    keys_dir: str | os.PathLike,
    key_size: int = RSA_KEY_SIZE,
    overwrite: bool = False,
) -> KeyPair:
    """
    Generate and persist a new RSA key pair.

    Creates two files in ``keys_dir``:
    - private_key.pem (PKCS#8, owner read/write only)
    - public_key.pem  (SubjectPublicKeyInfo)

    Raises:
        FileExistsError: if keys already exist and ``overwrite`` is False
        ValueError: if ``key_size`` is below 2048 bits
    """
    if key_size < RSA_KEY_SIZE:
        raise ValueError(f"key_size must be at least {RSA_KEY_SIZE} bits")
    keys_dir = Path(keys_dir)
    keys_dir.mkdir(parents=True, exist_ok=True)
    private_path = keys_dir / PRIVATE_KEY_FILE
    public_path = keys_dir / PUBLIC_KEY_FILE

    if not overwrite and (private_path.exists() or public_path.exists()):
        raise FileExistsError(f"Key material already present in {keys_dir}")

    private_key = rsa.generate_private_key(public_exponent=RSA_PUBLIC_EXPONENT, key_size=key_size)
    public_key = private_key.public_key()

    private_path.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    os.chmod(private_path, 0o600)
    public_path.write_bytes(public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ))

    pair = KeyPair(public_key=public_key, private_key=private_key)
    log.info(f"[KEYS] generated RSA-{key_size} pair in {keys_dir} fpr={pair.fingerprint()}")
    return pair
