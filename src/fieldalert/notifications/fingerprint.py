"""Identity fingerprints and content digests for notification requests.

Both digests are SHA-256 over a canonical JSON rendering of normalized
inputs: strings are trimmed, ``None`` becomes ``""`` and mappings are
serialized with sorted keys, so equivalent payloads hash identically
regardless of how the caller built them. ``source`` and ``metadata`` never
take part in either digest.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def normalize(value: Any) -> Any:
    """Return a JSON-safe, whitespace-normalized copy of ``value``."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return {str(k).strip(): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    if isinstance(value, (bool, int, float)):
        return value
    return str(value).strip()


def _digest(payload: Any) -> str:
    canonical = json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def fingerprint(event_type: str | None, entity_id: str | None, recipient_id: str | None) -> str:
    """Identity of "this event, about this entity, for this recipient"."""
    return _digest(
        {
            "event_type": normalize(event_type),
            "entity_id": normalize(entity_id),
            "recipient_id": normalize(recipient_id),
        }
    )


def content_hash(
    title: str | None,
    body: str | None,
    data: dict[str, Any] | None = None,
) -> str:
    """Digest of the displayed content, independent of identity."""
    return _digest(
        {
            "title": normalize(title),
            "body": normalize(body),
            "data": normalize(data or {}),
        }
    )
