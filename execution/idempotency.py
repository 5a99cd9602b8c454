"""Deterministic idempotency keys for settlement calls."""
import hashlib
import json
from typing import Optional


def build_idempotency_key(strategy_id: str, action: str, suffix: Optional[str] = None) -> str:
    """Same (strategy_id, action[, suffix]) always yields the same key.

    The backend stores the response for a key and replays it, failures
    included, so callers pass a per-attempt ``suffix`` when a failed call is
    to be retried as a fresh request.
    """
    base = {"strategy_id": strategy_id, "action": action}
    if suffix:
        base["suffix"] = suffix
    raw = json.dumps(base, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
