"""Tagged envelope wrapped around every value written to the remote tier.

The envelope lets a reader reject rows written by a different cache kind or
an older schema instead of handing malformed objects downstream.
"""

from typing import Any

from polaris.exceptions import CacheSerializationError

ENVELOPE_SCHEMA = 1


def wrap(kind: str, payload: Any, stored_at: int, ttl_ms: int) -> dict:
    return {
        "kind": kind,
        "schema": ENVELOPE_SCHEMA,
        "stored_at": stored_at,
        "expires_at": stored_at + ttl_ms,
        "payload": payload,
    }


def unwrap(raw: Any, kind: str) -> dict:
    """Validate *raw* as an envelope of this *kind* and return it.

    Raises:
        CacheSerializationError: If *raw* is not an envelope, or was written
            by another cache kind or envelope schema.
    """
    if not isinstance(raw, dict) or "payload" not in raw:
        raise CacheSerializationError("Remote value is not a cache envelope")
    if raw.get("kind") != kind:
        raise CacheSerializationError(
            f"Envelope kind mismatch: expected '{kind}', got '{raw.get('kind')}'"
        )
    if raw.get("schema") != ENVELOPE_SCHEMA:
        raise CacheSerializationError(f"Unsupported envelope schema: {raw.get('schema')!r}")
    return raw


def is_expired(envelope: dict, now: int) -> bool:
    """Remote expiry has second granularity; the envelope keeps the exact deadline."""
    expires_at = envelope.get("expires_at")
    return isinstance(expires_at, int) and now >= expires_at
