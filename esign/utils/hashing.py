"""Content hashing and integrity helpers.

SHA-256 digests identify document versions; HMAC-SHA256 over canonical
JSON links audit entries into a per-recipient chain.
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any, Dict, Optional


def sha256_hex(data: bytes) -> str:
    """Lowercase hex SHA-256 digest of a byte sequence."""
    return hashlib.sha256(data).hexdigest()


def verify_hash(data: bytes, expected_hex: str) -> bool:
    """Check ``data`` against a previously recorded digest in constant time."""
    if not expected_hex:
        return False
    return hmac.compare_digest(sha256_hex(data), expected_hex.lower())


def hash_token(token: str) -> str:
    """Digest stored in place of a plaintext access token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    return str(value)


def canonical_json(data: Dict[str, Any]) -> str:
    """Stable JSON encoding: sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_json_default)


class IntegrityVerifier:
    """
    Keyed checksums for append-only records.

    Each checksum covers the record content and the checksum of the record
    before it, so removing or rewriting any entry breaks every later link.
    """

    def __init__(self, secret_key: str):
        self.secret_key = secret_key.encode("utf-8")

    def compute_checksum(
        self,
        data: Dict[str, Any],
        previous_hash: Optional[str] = None,
    ) -> str:
        """HMAC-SHA256 over the canonical form of ``data`` plus the previous link."""
        payload = dict(data)
        payload["previous_hash"] = previous_hash or ""
        return hmac.new(
            self.secret_key,
            canonical_json(payload).encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def verify_checksum(
        self,
        data: Dict[str, Any],
        checksum: str,
        previous_hash: Optional[str] = None,
    ) -> bool:
        expected = self.compute_checksum(data, previous_hash)
        return hmac.compare_digest(expected, checksum or "")
