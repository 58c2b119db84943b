# vhealth_core/payloads.py
"""
Caller-side payload shapes.

The encryption core only ever sees bytes; ``encode_payload`` and
``decode_payload`` translate between the typed variants and those bytes.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Tuple, Union


class PayloadCategory(str, Enum):
    GENERAL = "general"
    MEDICAL = "medical"


@dataclass(frozen=True)
class GeneralPayload:
    """Opaque bytes, text, or any JSON-serializable value."""
    data: Any


@dataclass(frozen=True)
class MedicalRecord:
    """A medical consultation snapshot (plants consulted, symptoms, advice)."""
    plants: List[str] = field(default_factory=list)
    symptoms: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    duration: int = 0                  # seconds
    pages_visited: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MedicalRecord":
        return cls(
            plants=list(data.get("plants", [])),
            symptoms=list(data.get("symptoms", [])),
            recommendations=list(data.get("recommendations", [])),
            duration=int(data.get("duration", 0)),
            pages_visited=list(data.get("pages_visited", [])),
        )


Payload = Union[GeneralPayload, MedicalRecord]

# first byte of an encoded general payload: how to rebuild ``data``
KIND_BYTES = b"b"
KIND_TEXT = b"t"
KIND_JSON = b"j"


def encode_payload(payload: Payload) -> Tuple[PayloadCategory, bytes]:
    if isinstance(payload, MedicalRecord):
        body = json.dumps(payload.to_dict(), ensure_ascii=False, sort_keys=True)
        return PayloadCategory.MEDICAL, body.encode("utf-8")

    if isinstance(payload, GeneralPayload):
        data = payload.data
        if isinstance(data, (bytes, bytearray)):
            return PayloadCategory.GENERAL, KIND_BYTES + bytes(data)
        if isinstance(data, str):
            return PayloadCategory.GENERAL, KIND_TEXT + data.encode("utf-8")
        return PayloadCategory.GENERAL, KIND_JSON + json.dumps(data, ensure_ascii=False).encode("utf-8")

    raise TypeError(f"Unsupported payload type: {type(payload).__name__}")


def decode_payload(category: PayloadCategory, raw: bytes) -> Payload:
    """
    Rebuild a payload variant from decrypted bytes.

    General payloads carry a one-byte kind tag, so bytes come back as bytes,
    text as text and JSON structures as parsed JSON.

    Raises:
        ValueError: bytes that are not a valid encoding for ``category``
    """
    category = PayloadCategory(category)
    if category is PayloadCategory.MEDICAL:
        data = json.loads(raw.decode("utf-8"))
        if not isinstance(data, dict):
            raise ValueError("medical payload must be a JSON object")
        return MedicalRecord.from_dict(data)

    kind, body = bytes(raw[:1]), bytes(raw[1:])
    if kind == KIND_BYTES:
        return GeneralPayload(body)
    if kind == KIND_TEXT:
        return GeneralPayload(body.decode("utf-8"))
    if kind == KIND_JSON:
        return GeneralPayload(json.loads(body.decode("utf-8")))
    raise ValueError(f"unknown general payload kind: {kind!r}")
