"""
Cursor Codec

A cursor is the position of the last item of a page under the active
ordering: its ranking key and its id. On the wire it is urlsafe base64 of
`{"key": "<decimal string>", "id": "<item id>"}`.

Decoding never fails a request: anything that does not parse back into a
(key, id) pair means "no cursor" and pagination restarts at page 1.

A cursor is only meaningful for the filter/sort combination that produced
it; it is not checked against the current one.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.core.exceptions import MalformedCursor
from app.services.pricing import format_amount

logger = logging.getLogger(__name__)

# Guard against absurd payloads before base64-decoding them
MAX_CURSOR_LENGTH = 512


@dataclass(frozen=True)
class Cursor:
    key: Decimal
    id: str


def _key_to_str(key: Any) -> str:
    if isinstance(key, Decimal):
        return format_amount(key)
    if isinstance(key, float):
        return repr(key)
    return str(key)


def encode(key: Any, item_id: str) -> str:
    payload = json.dumps({"key": _key_to_str(key), "id": str(item_id)}, separators=(",", ":"))
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def _parse(token: str) -> Cursor:
    if len(token) > MAX_CURSOR_LENGTH:
        raise MalformedCursor("cursor too long")

    padded = token + "=" * (-len(token) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        data = json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise MalformedCursor(f"undecodable cursor: {e}") from e

    if not isinstance(data, dict):
        raise MalformedCursor("cursor payload is not an object")

    key, item_id = data.get("key"), data.get("id")
    if not isinstance(key, str) or not isinstance(item_id, str) or not item_id:
        raise MalformedCursor("cursor fields have wrong types")

    try:
        key_value = Decimal(key)
    except InvalidOperation as e:
        raise MalformedCursor(f"cursor key is not numeric: {key!r}") from e
    if not key_value.is_finite():
        raise MalformedCursor("cursor key is not finite")

    return Cursor(key=key_value, id=item_id)


def decode(token: Optional[str]) -> Optional[Cursor]:
    """Decode a cursor, or return None (start from page 1) if it is absent or malformed."""
    if not token or not token.strip():
        return None
    try:
        return _parse(token.strip())
    except MalformedCursor as e:
        logger.debug(f"[Cursor] Ignoring malformed cursor: {e.message}")
        return None


def clamp_limit(limit: Optional[int], default: int, maximum: int, minimum: int = 1) -> int:
    """Clamp a requested page size into [minimum, maximum]; None means default."""
    if limit is None:
        return default
    return max(minimum, min(int(limit), maximum))
