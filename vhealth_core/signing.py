"""
vhealth_core.signing
--------------------
Detached RSA-PSS signatures over SHA-256 digests.

Verification is two-phase: the digest carried in the package is compared to
a fresh digest of the payload first, and only a matching digest goes on to
signature math. This separates "data was altered" from "signature is wrong".
"""

from __future__ import annotations
import hmac
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, utils as asym_utils

from .constants import SIGNATURE_ALGORITHM
from .keys import KeyPair
from .logger import get_logger
from .utils import b64e, b64d, now_ts, sha256

log = get_logger("VH.Signer")

_PSS = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.MAX_LENGTH)


class Reason(str, Enum):
    VERIFIED = "verified"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    INVALID_SIGNATURE = "invalid_signature"


@dataclass(frozen=True)
class Verdict:
    valid: bool
    reason: Reason

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "reason": self.reason.value}


@dataclass(frozen=True)
class SignedPackage:
    payload: bytes
    digest: str                 # hex SHA-256 of payload
    signature: bytes
    algorithm: str = SIGNATURE_ALGORITHM
    timestamp: str = field(default_factory=now_ts)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["payload"] = b64e(self.payload)
        d["signature"] = b64e(self.signature)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedPackage":
        return cls(
            payload=b64d(data["payload"]),
            digest=data["digest"],
            signature=b64d(data["signature"]),
            algorithm=data.get("algorithm", SIGNATURE_ALGORITHM),
            timestamp=data.get("timestamp") or now_ts(),
        )


class DigitalSigner:
    algorithm = SIGNATURE_ALGORITHM

    def __init__(self, keys: KeyPair):
        self.keys = keys

    def sign(self, payload: bytes) -> SignedPackage:
        if not isinstance(payload, (bytes, bytearray)):
            raise TypeError(f"sign expects bytes, got {type(payload).__name__}")
        payload = bytes(payload)
        digest = sha256(payload)
        signature = self.keys.private_key.sign(
            bytes.fromhex(digest), _PSS, asym_utils.Prehashed(hashes.SHA256())
        )
        log.debug(f"[SIGN] digest={digest[:16]}... ({len(payload)} bytes)")
        return SignedPackage(payload=payload, digest=digest, signature=signature)

    def verify(self, pkg: SignedPackage) -> Verdict:
        actual = sha256(pkg.payload)
        claimed = pkg.digest.lower() if isinstance(pkg.digest, str) and pkg.digest.isascii() else ""
        if not hmac.compare_digest(actual, claimed):
            log.warning(f"[VERIFY] integrity mismatch digest={actual[:16]}...")
            return Verdict(False, Reason.INTEGRITY_MISMATCH)

        if pkg.algorithm != self.algorithm:
            log.warning(f"[VERIFY] unsupported algorithm {pkg.algorithm}")
            return Verdict(False, Reason.INVALID_SIGNATURE)

        try:
            self.keys.public_key.verify(
                pkg.signature, bytes.fromhex(actual), _PSS, asym_utils.Prehashed(hashes.SHA256())
            )
        except InvalidSignature:
            log.warning(f"[VERIFY] invalid signature digest={actual[:16]}...")
            return Verdict(False, Reason.INVALID_SIGNATURE)

        return Verdict(True, Reason.VERIFIED)
