"""Messages posted to public channels."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from nostrtalk.db.common import (
    RowDecodeError,
    _fetch_all,
    _fetch_one,
    channel_id_from_tags,
    datetime_to_millis,
    encode_npub,
    millis_to_datetime,
    parse_event_hash,
    parse_public_key,
    parse_url,
)
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)


class ChannelMessageError(NostrTalkError):
    """Failure while working with channel messages."""


@dataclass
class DbChannelMessage:
    """A channel message row."""

    event_id: int
    channel_id: str
    author: str
    is_users: bool
    created_at: datetime
    relay_url: str
    content: str

    def display_name(self) -> str:
        """The author's npub, or the hex key if it cannot be encoded."""
        try:
            return encode_npub(self.author)
        except ValueError:
            return self.author

    @classmethod
    async def fetch_one(cls, conn, event_id: int) -> DbChannelMessage | None:
        row = await _fetch_one(
            conn, "SELECT * FROM channel_message WHERE event_id = ?;", (event_id,)
        )
        return cls.from_row(row) if row is not None else None

    @classmethod
    async def fetch(cls, conn, channel_id: str) -> list[DbChannelMessage]:
        rows = await _fetch_all(
            conn,
            "SELECT * FROM channel_message WHERE channel_id = ? "
            "ORDER BY created_at ASC LIMIT 100;",
            (parse_event_hash(channel_id, "channel_id"),),
        )
        return [cls.from_row(row) for row in rows]

    @classmethod
    async def insert_confirmed(cls, conn, db_event: Any, is_users: bool) -> DbChannelMessage:
        """Store a message for a channel event, or return the one already stored."""
        existing = await cls.fetch_one(conn, db_event.event_id)
        if existing is not None:
            logger.debug("Message already in database. %r", existing)
            return existing

        channel_id = channel_id_from_tags(db_event.tags)
        if channel_id is None:
            raise ChannelMessageError(
                f"Not found channel id inside event tags: event_hash: {db_event.event_hash}"
            )

        await conn.execute(
            "INSERT INTO channel_message "
            "(event_id, channel_id, author, is_users, created_at, relay_url, content) "
            "VALUES (?, ?, ?, ?, ?, ?, ?);",
            (
                db_event.event_id,
                channel_id,
                parse_public_key(db_event.pubkey, "author"),
                bool(is_users),
                datetime_to_millis(db_event.created_at),
                parse_url(db_event.relay_url, "relay_url"),
                db_event.content,
            ),
        )
        await conn.commit()

        message = await cls.fetch_one(conn, db_event.event_id)
        if message is None:
            raise ChannelMessageError(
                f"Not found channel message: event_hash: {db_event.event_hash}"
            )
        return message

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbChannelMessage:
        try:
            created_at = millis_to_datetime(int(row["created_at"]))
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("created_at", str(exc)) from exc
        return cls(
            event_id=int(row["event_id"]),
            channel_id=parse_event_hash(row["channel_id"], "channel_id"),
            author=parse_public_key(row["author"], "author"),
            is_users=bool(row["is_users"]),
            created_at=created_at,
            relay_url=parse_url(row["relay_url"], "relay_url"),
            content=row["content"],
        )