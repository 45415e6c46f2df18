"""Nostr events stored in the main database."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from nostrtalk.db.common import (
    RowDecodeError,
    _fetch_all,
    _fetch_one,
    datetime_to_millis,
    millis_to_datetime,
    parse_event_hash,
    parse_public_key,
    parse_url,
)
from nostrtalk.db.relay_response import DbRelayResponse
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)

_FETCH_QUERY = "SELECT * FROM event"
_SIG_RE = re.compile(r"[0-9a-fA-F]{128}")


class EventError(NostrTalkError):
    """Failure while working with stored events."""


class EventNotInDatabase(EventError):
    """An event expected in the database is missing."""

    def __init__(self, event_hash: str) -> None:
        self.event_hash = event_hash
        super().__init__(f"Event not in database: {event_hash}")


def _parse_signature(value: Any, column: str) -> str:
    if not isinstance(value, str) or not _SIG_RE.fullmatch(value):
        raise RowDecodeError(column, f"invalid signature: {value!r}")
    return value.lower()


def _parse_tags(value: Any, column: str) -> list[list[str]]:
    try:
        tags = json.loads(value)
    except (TypeError, ValueError) as exc:
        raise RowDecodeError(column, f"invalid tags json: {exc}") from exc
    if not isinstance(tags, list) or not all(
        isinstance(tag, list) and tag and all(isinstance(part, str) for part in tag)
        for tag in tags
    ):
        raise RowDecodeError(column, f"invalid tags: {value!r}")
    return tags


@dataclass
class NostrEvent:
    """A signed Nostr event as it travels on the wire."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: list[list[str]] = field(default_factory=list)
    content: str = ""
    sig: str = ""


@dataclass
class DbEvent:
    """An event row in the database."""

    event_id: int
    event_hash: str
    pubkey: str
    created_at: datetime
    relay_url: str
    tags: list[list[str]]
    kind: int
    content: str
    sig: str

    def to_nostr_event(self) -> NostrEvent:
        return NostrEvent(
            id=self.event_hash,
            pubkey=self.pubkey,
            created_at=datetime_to_millis(self.created_at) // 1000,
            kind=self.kind,
            tags=[list(tag) for tag in self.tags],
            content=self.content,
            sig=self.sig,
        )

    @classmethod
    async def _fetch_many(cls, conn, sql: str, params=()) -> list[DbEvent]:
        return [cls.from_row(row) for row in await _fetch_all(conn, sql, params)]

    @classmethod
    async def _fetch_optional(cls, conn, sql: str, params=()) -> DbEvent | None:
        row = await _fetch_one(conn, sql, params)
        return cls.from_row(row) if row is not None else None

    @classmethod
    async def fetch(cls, conn) -> list[DbEvent]:
        return await cls._fetch_many(conn, _FETCH_QUERY)

    @classmethod
    async def fetch_kind(cls, conn, kind: int) -> list[DbEvent]:
        return await cls._fetch_many(conn, f"{_FETCH_QUERY} WHERE kind = ?", (int(kind),))

    @classmethod
    async def fetch_id(cls, conn, event_id: int) -> DbEvent | None:
        return await cls._fetch_optional(
            conn, f"{_FETCH_QUERY} WHERE event_id = ?", (event_id,)
        )

    @classmethod
    async def fetch_hash(cls, conn, event_hash: str) -> DbEvent | None:
        return await cls._fetch_optional(
            conn,
            f"{_FETCH_QUERY} WHERE event_hash = ?",
            (parse_event_hash(event_hash, "event_hash"),),
        )

    @classmethod
    async def has_event(cls, conn, event_hash: str) -> bool:
        return await cls.fetch_hash(conn, event_hash) is not None

    @classmethod
    async def fetch_last(cls, conn) -> DbEvent | None:
        return await cls._fetch_optional(
            conn, f"{_FETCH_QUERY} ORDER BY event_id DESC LIMIT 1"
        )

    @classmethod
    async def fetch_last_url(cls, conn, url: str) -> DbEvent | None:
        return await cls._fetch_optional(
            conn,
            f"{_FETCH_QUERY} WHERE relay_url = ? ORDER BY event_id DESC LIMIT 1",
            (parse_url(url, "relay_url"),),
        )

    @classmethod
    async def fetch_last_kind(cls, conn, kind: int) -> DbEvent | None:
        return await cls._fetch_optional(
            conn,
            f"{_FETCH_QUERY} WHERE kind = ? ORDER BY event_id DESC LIMIT 1",
            (int(kind),),
        )

    @classmethod
    async def fetch_last_kind_pubkey(cls, conn, kind: int, pubkey: str) -> DbEvent | None:
        return await cls._fetch_optional(
            conn,
            f"{_FETCH_QUERY} WHERE kind = ? AND pubkey = ? ORDER BY event_id DESC LIMIT 1",
            (int(kind), parse_public_key(pubkey, "pubkey")),
        )

    @classmethod
    async def insert(cls, conn, relay_url: str, event: NostrEvent) -> DbEvent | None:
        """Store an event; return None when it is already in the database."""
        event_hash = parse_event_hash(event.id, "event_hash")
        if await cls.has_event(conn, event_hash):
            return None

        logger.debug("inserting event id: %s", event_hash)
        url = parse_url(relay_url, "relay_url")
        cursor = await conn.execute(
            "INSERT INTO event "
            "(event_hash, pubkey, kind, content, sig, tags, relay_url, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                event_hash,
                parse_public_key(event.pubkey, "pubkey"),
                int(event.kind),
                event.content,
                _parse_signature(event.sig, "sig"),
                json.dumps([list(tag) for tag in event.tags]),
                url,
                int(event.created_at) * 1000,
            ),
        )
        await conn.commit()

        db_event = await cls.fetch_id(conn, cursor.lastrowid)
        if db_event is None:
            raise EventNotInDatabase(event_hash)
        await DbRelayResponse.insert_ok(conn, url, db_event)
        return db_event

    @staticmethod
    async def delete(conn, event_id: int) -> None:
        logger.info("Deleting event with id %s", event_id)
        await conn.execute("DELETE FROM event WHERE event_id = ?", (event_id,))
        await conn.commit()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbEvent:
        try:
            created_at = millis_to_datetime(int(row["created_at"]))
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("created_at", str(exc)) from exc
        return cls(
            event_id=int(row["event_id"]),
            event_hash=parse_event_hash(row["event_hash"], "event_hash"),
            pubkey=parse_public_key(row["pubkey"], "pubkey"),
            created_at=created_at,
            relay_url=parse_url(row["relay_url"], "relay_url"),
            tags=_parse_tags(row["tags"], "tags"),
            kind=int(row["kind"]),
            content=row["content"],
            sig=_parse_signature(row["sig"], "sig"),
        )