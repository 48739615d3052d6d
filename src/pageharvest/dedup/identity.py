"""
Record identity.

A record is keyed by the provider's lot identifier when present, falling back to
a structural hash of the payload. Identical payloads always hash identically
because the canonical form sorts keys and uses compact separators.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Sequence

IDENTITY_FIELDS: Sequence[str] = ("lotId", "id", "objectID")


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def payload_hash(payload: Any) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def record_identity(payload: Mapping[str, Any], fields: Sequence[str] = IDENTITY_FIELDS) -> str:
    """Return the dedup key for a raw record payload."""
    if isinstance(payload, Mapping):
        for name in fields:
            value = payload.get(name)
            if value is not None and value != "":
                return str(value)
    return payload_hash(payload)
