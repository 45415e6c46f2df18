"""Channels the user has subscribed to."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from nostrtalk.db.common import (
    RowDecodeError,
    _fetch_all,
    _fetch_one,
    datetime_to_millis,
    millis_to_datetime,
    parse_event_hash,
)
from nostrtalk.db.user_config import UserConfig
from nostrtalk.errors import NostrTalkError


class ChannelSubscriptionError(NostrTalkError):
    """Failure while working with channel subscriptions."""


@dataclass
class ChannelSubscription:
    """A subscription to a public channel."""

    id: int
    channel_id: str
    subscribed_at: datetime

    @classmethod
    async def fetch(cls, conn) -> list[ChannelSubscription]:
        rows = await _fetch_all(conn, "SELECT * FROM channel_subscription;")
        return [cls.from_row(row) for row in rows]

    @classmethod
    async def insert(cls, conn, channel_id: str) -> ChannelSubscription:
        channel_id = parse_event_hash(channel_id, "channel_id")
        try:
            now = await UserConfig.get_corrected_time(conn)
        except (NostrTalkError, sqlite3.Error):
            now = datetime.now(timezone.utc).replace(tzinfo=None)

        cursor = await conn.execute(
            "INSERT INTO channel_subscription (channel_id, subscribed_at) VALUES (?, ?);",
            (channel_id, datetime_to_millis(now)),
        )
        await conn.commit()

        row = await _fetch_one(
            conn, "SELECT * FROM channel_subscription WHERE id = ?", (cursor.lastrowid,)
        )
        if row is None:
            raise ChannelSubscriptionError(
                f"Not found channel subscription: ID: {channel_id}"
            )
        return cls.from_row(row)

    @staticmethod
    async def delete(conn, channel_id: str) -> None:
        await conn.execute(
            "DELETE FROM channel_subscription WHERE channel_id = ?;",
            (parse_event_hash(channel_id, "channel_id"),),
        )
        await conn.commit()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ChannelSubscription:
        try:
            subscribed_at = millis_to_datetime(int(row["subscribed_at"]))
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("subscribed_at", str(exc)) from exc
        return cls(
            id=int(row["id"]),
            channel_id=parse_event_hash(row["channel_id"], "channel_id"),
            subscribed_at=subscribed_at,
        )