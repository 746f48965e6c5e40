"""Continuation tokens for keyset pagination.

A token is URL-safe base64 of a small JSON document:

    {"v": 1, "s": "<scope fingerprint>", "k": [timestamp_us, fact_id, sequence]}

``k`` is the SortKey of the last fact returned; the next page starts strictly
after it. ``s`` fingerprints the query (partition, time bounds, direction) so a
token cannot silently resume a different query. Any decoding problem raises
InvalidPaginationTokenError rather than restarting from the beginning.
"""

import base64
import binascii
import hashlib
import json
from typing import Any

from notably.common.errors import InvalidPaginationTokenError
from notably.models import SortKey

TOKEN_VERSION = 1


def scope_fingerprint(*parts: Any) -> str:
    """Stable short hash of the values that define a query."""
    payload = json.dumps(list(parts), separators=(",", ":"), default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def encode_token(position: SortKey, fingerprint: str) -> str:
    payload = {"v": TOKEN_VERSION, "s": fingerprint, "k": position.to_list()}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_token(token: str, fingerprint: str) -> SortKey:
    """Decode a token issued for the query identified by ``fingerprint``.

    Raises:
        InvalidPaginationTokenError: If the token is malformed, from another
            token version, or was issued for a different query
    """
    if not isinstance(token, str) or not token:
        raise InvalidPaginationTokenError("continuation token must be a non-empty string")

    try:
        raw = base64.urlsafe_b64decode(token.encode("ascii"))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise InvalidPaginationTokenError("continuation token is malformed") from e

    if not isinstance(payload, dict) or payload.get("v") != TOKEN_VERSION:
        raise InvalidPaginationTokenError("continuation token version is not supported")

    if payload.get("s") != fingerprint:
        raise InvalidPaginationTokenError("continuation token belongs to a different query")

    try:
        return SortKey.from_list(payload["k"])
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidPaginationTokenError("continuation token position is malformed") from e
