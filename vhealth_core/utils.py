"""
vhealth_core.utils
------------------
Small helpers for identifiers, timestamps, base64 and canonical JSON.
Canonical JSON keeps signed document descriptions byte-stable across runs.
"""

from __future__ import annotations
import base64, json, hashlib, secrets, uuid
from datetime import datetime, timezone
from typing import Any, Dict


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")

def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode("ascii"), validate=True)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def iso_ts(dt: datetime) -> str:
    # RFC3339 / ISO 8601 in UTC, millisecond precision
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def parse_ts(s: str) -> datetime:
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt

def now_ts() -> str:
    return iso_ts(utcnow())

def new_id() -> str:
    return uuid.uuid4().hex

def new_token(nbytes: int = 12) -> str:
    return secrets.token_urlsafe(nbytes)

def canonical_json(obj: Dict[str, Any]) -> bytes:
    # Deterministic, minimal JSON for signing
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")

def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
