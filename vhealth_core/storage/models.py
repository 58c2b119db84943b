# vhealth_core/storage/models.py
from __future__ import annotations
from dataclasses import dataclass, asdict, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from vhealth_core.signing import SignedPackage
from vhealth_core.utils import now_ts, parse_ts


class RecordStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    REVOKED = "revoked"


class AuditAction(str, Enum):
    SIGNATURE_STORED = "SIGNATURE_STORED"
    SIGNATURE_VERIFIED = "SIGNATURE_VERIFIED"
    STATUS_CHANGED = "STATUS_CHANGED"


@dataclass(frozen=True)
class SignatureRecord:
    """
    One archived signature.

    Everything except ``status`` is fixed at sign time. Status changes go
    through ``dataclasses.replace`` so the stored digest, signature and
    timestamps can never be rewritten in place.
    """
    internal_id: str
    document_id: str
    document_title: str
    document_type: str
    signed_at: str
    stored_at: str
    location: str               # "<YYYY-MM-DD>/<type>/<internal_id>"
    digest_prefix: str
    content_digest: str
    signed: SignedPackage
    status: RecordStatus = RecordStatus.ACTIVE

    @property
    def signed_date(self) -> date:
        return parse_ts(self.signed_at).date()

    def summary(self) -> Dict[str, Any]:
        """Listing view, without the signed package."""
        return {
            "internalId": self.internal_id,
            "documentId": self.document_id,
            "documentTitle": self.document_title,
            "documentType": self.document_type,
            "signedAt": self.signed_at,
            "storedAt": self.stored_at,
            "location": self.location,
            "hash": self.digest_prefix,
            "status": self.status.value,
        }

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["signed"] = self.signed.to_dict()
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignatureRecord":
        return cls(
            internal_id=data["internal_id"],
            document_id=data["document_id"],
            document_title=data["document_title"],
            document_type=data["document_type"],
            signed_at=data["signed_at"],
            stored_at=data["stored_at"],
            location=data["location"],
            digest_prefix=data["digest_prefix"],
            content_digest=data["content_digest"],
            signed=SignedPackage.from_dict(data["signed"]),
            status=RecordStatus(data.get("status", RecordStatus.ACTIVE.value)),
        )


@dataclass(frozen=True)
class DocumentMetadata:
    """Summary record kept beside each signature record for fast listing."""
    internal_id: str
    document_id: str
    title: str
    type: str
    signed_at: str
    location: str
    content_digest: str
    algorithm: str
    authority: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AuditLogEntry:
    action: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=now_ts)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class IndexSnapshot:
    total_count: int
    last_updated: Optional[str]
