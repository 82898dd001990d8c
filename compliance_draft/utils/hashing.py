"""
Hashing utilities for change detection of persisted payloads.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any


def sha256_hash(content: str | bytes) -> str:
    """Return the SHA-256 hex digest of the given content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def payload_fingerprint(payload: dict[str, Any]) -> str:
    """Stable digest of a JSON-compatible payload (key order independent)."""
    return sha256_hash(json.dumps(payload, sort_keys=True, ensure_ascii=False))
