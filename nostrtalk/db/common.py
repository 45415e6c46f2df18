"""Decoding helpers shared by the database models."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlsplit, urlunsplit

from nostrtalk.errors import NostrTalkError

_EPOCH = datetime(1970, 1, 1)
_ONE_MILLI = timedelta(milliseconds=1)

_HEX32_RE = re.compile(r"[0-9a-fA-F]{64}")
_SCHEME_RE = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*")
_SPECIAL_SCHEMES = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

# secp256k1 field prime
_FIELD_P = 2**256 - 2**32 - 977

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GEN = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_NPUB_HRP = "npub"


class RowDecodeError(NostrTalkError, ValueError):
    """A stored value could not be decoded into its Python form."""

    def __init__(self, column: str, reason: str) -> None:
        self.column = column
        self.reason = reason
        super().__init__(f"Error decoding column {column!r}: {reason}")


def channel_id_from_tags(tags: Iterable[Sequence[str]]) -> str | None:
    """Return the channel id referenced by the "e" tags, preferring the root marker."""
    e_tags = [list(tag) for tag in tags if len(tag) >= 2 and tag[0] == "e"]
    ordered = [t for t in e_tags if len(t) >= 4 and t[3] == "root"] + e_tags
    for tag in ordered:
        if _HEX32_RE.fullmatch(tag[1]):
            return tag[1].lower()
    return None


def millis_to_datetime(millis: int) -> datetime:
    """Convert milliseconds since the epoch to a naive UTC datetime."""
    try:
        return _EPOCH + timedelta(milliseconds=millis)
    except OverflowError as exc:
        raise ValueError(f"timestamp out of range: {millis}") from exc


def datetime_to_millis(value: datetime) -> int:
    """Convert a datetime (naive values are UTC) to milliseconds since the epoch."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return (value - _EPOCH) // _ONE_MILLI


def parse_url(value: Any, column: str) -> str:
    """Validate a URL and return it in normalised form."""
    text = value.strip() if isinstance(value, str) else ""
    if not text or any(ch.isspace() for ch in text) or ":" not in text:
        raise RowDecodeError(column, f"invalid url: {value!r}")
    try:
        parts = urlsplit(text)
        port = parts.port
    except ValueError as exc:
        raise RowDecodeError(column, f"invalid url: {value!r}") from exc

    scheme = parts.scheme.lower()
    if not scheme or not _SCHEME_RE.fullmatch(scheme):
        raise RowDecodeError(column, f"invalid url: {value!r}")

    if scheme not in _SPECIAL_SCHEMES:
        return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))

    host = parts.hostname
    if not host:
        raise RowDecodeError(column, f"url without host: {value!r}")
    netloc = f"[{host}]" if ":" in host else host
    if port is not None and port != _SPECIAL_SCHEMES[scheme]:
        netloc = f"{netloc}:{port}"
    userinfo = parts.netloc.rpartition("@")[0]
    if userinfo:
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit((scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def parse_event_hash(value: Any, column: str) -> str:
    """Validate a 32-byte hex event id and return it lower-cased."""
    if not isinstance(value, str) or not _HEX32_RE.fullmatch(value):
        raise RowDecodeError(column, f"invalid event hash: {value!r}")
    return value.lower()


def parse_public_key(value: Any, column: str) -> str:
    """Validate an x-only secp256k1 public key in hex and return it lower-cased."""
    if not isinstance(value, str) or not _HEX32_RE.fullmatch(value):
        raise RowDecodeError(column, f"invalid public key: {value!r}")
    x = int(value, 16)
    if x >= _FIELD_P:
        raise RowDecodeError(column, f"public key out of range: {value!r}")
    y_squared = (pow(x, 3, _FIELD_P) + 7) % _FIELD_P
    if pow(y_squared, (_FIELD_P - 1) // 2, _FIELD_P) not in (0, 1):
        raise RowDecodeError(column, f"public key not on curve: {value!r}")
    return value.lower()


def _bech32_polymod(values: Iterable[int]) -> int:
    checksum = 1
    for value in values:
        top = checksum >> 25
        checksum = (checksum & 0x1FFFFFF) << 5 ^ value
        for bit, gen in enumerate(_BECH32_GEN):
            if (top >> bit) & 1:
                checksum ^= gen
    return checksum


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value >> from_bits:
            raise ValueError("invalid data value for bit conversion")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & max_value)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or (acc << (to_bits - bits)) & max_value:
        raise ValueError("invalid padding in bech32 data")
    return out


def encode_npub(public_key: str) -> str:
    """Encode a hex public key as a bech32 "npub" string."""
    key = parse_public_key(public_key, "public_key")
    data = _convert_bits(bytes.fromhex(key), 8, 5, pad=True)
    polymod = _bech32_polymod(_hrp_expand(_NPUB_HRP) + data + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return _NPUB_HRP + "1" + "".join(_BECH32_CHARSET[d] for d in data + checksum)


def decode_npub(value: str) -> str:
    """Decode a bech32 "npub" string into a hex public key."""
    if value.lower() != value and value.upper() != value:
        raise ValueError("mixed case bech32 string")
    text = value.lower()
    hrp, sep, payload = text.rpartition("1")
    if not sep or hrp != _NPUB_HRP or len(payload) < 6:
        raise ValueError(f"not an npub string: {value!r}")
    try:
        data = [_BECH32_CHARSET.index(c) for c in payload]
    except ValueError as exc:
        raise ValueError(f"invalid bech32 character in {value!r}") from exc
    if _bech32_polymod(_hrp_expand(hrp) + data) != 1:
        raise ValueError(f"invalid bech32 checksum in {value!r}")
    raw = bytes(_convert_bits(data[:-6], 5, 8, pad=False))
    if len(raw) != 32:
        raise ValueError(f"npub payload must be 32 bytes, got {len(raw)}")
    return parse_public_key(raw.hex(), "public_key")


async def _fetch_all(conn, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
    async with conn.execute(sql, params) as cursor:
        names = [column[0] for column in cursor.description]
        return [dict(zip(names, row)) for row in await cursor.fetchall()]


async def _fetch_one(conn, sql: str, params: Sequence[Any] = ()) -> dict[str, Any] | None:
    rows = await _fetch_all(conn, sql, params)
    return rows[0] if rows else None