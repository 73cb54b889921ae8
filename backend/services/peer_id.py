# services/peer_id.py
from __future__ import annotations

import base64
import binascii
from typing import Optional

import base58


class PeerIDError(ValueError):
    pass


# unsigned varints in multihash framing are at most 9 bytes (63 bits)
_MAX_VARINT_LEN = 9


def _read_uvarint(buf: bytes, offset: int) -> tuple[int, int]:
    value = 0
    shift = 0
    for i in range(_MAX_VARINT_LEN):
        pos = offset + i
        if pos >= len(buf):
            raise PeerIDError("varint truncated")
        b = buf[pos]
        value |= (b & 0x7F) << shift
        if b & 0x80 == 0:
            if b == 0 and i > 0:
                raise PeerIDError("varint not minimally encoded")
            return value, pos + 1
        shift += 7
    raise PeerIDError("varint too long")


def validate_multihash(raw: bytes) -> None:
    """
    A peer identifier is a multihash: <varint code><varint length><digest>.
    Only the framing is checked; the digest length must match exactly.
    """
    if len(raw) < 2:
        raise PeerIDError("multihash too short")
    _code, pos = _read_uvarint(raw, 0)
    length, pos = _read_uvarint(raw, pos)
    if len(raw) - pos != length:
        raise PeerIDError(
            f"multihash length mismatch: header says {length}, got {len(raw) - pos}"
        )


def peer_id_from_bytes(raw: Optional[bytes]) -> str:
    """Raw peer identifier bytes -> canonical base58btc string."""
    if not raw:
        raise PeerIDError("empty peer id")
    raw = bytes(raw)
    validate_multihash(raw)
    return base58.b58encode(raw).decode("ascii")


def peer_id_from_bytes_lenient(raw: Optional[bytes]) -> str:
    """
    Like peer_id_from_bytes, but retries after a base64 decode.

    Some tracers put an already base64 encoded id into the byte field, so it
    ends up encoded twice on the wire.
    """
    try:
        return peer_id_from_bytes(raw)
    except PeerIDError as first:
        if not raw:
            raise
        try:
            decoded = base64.b64decode(bytes(raw), validate=True)
        except (binascii.Error, ValueError) as e:
            raise PeerIDError(f"guessing peer id encoding: {e}") from first
        return peer_id_from_bytes(decoded)
