"""Cached public channels, their metadata and members, kept in the cache database."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Mapping

from nostrtalk.db.common import (
    RowDecodeError,
    _fetch_all,
    _fetch_one,
    channel_id_from_tags,
    millis_to_datetime,
    parse_event_hash,
    parse_public_key,
)
from nostrtalk.db.image_cache import ImageDownloaded, ImageKind
from nostrtalk.errors import NostrTalkError


class ChannelCacheError(NostrTalkError):
    """Failure while working with the channel cache."""


@dataclass
class ChannelMetadata:
    """Metadata of a public channel, carried in kind 40 and 41 events."""

    name: str | None = None
    about: str | None = None
    picture: str | None = None
    custom: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def _known(cls) -> list[str]:
        return [f.name for f in fields(cls) if f.name != "custom"]

    @classmethod
    def from_json(cls, text: str) -> ChannelMetadata:
        """Parse metadata JSON; raise ValueError when it is not a valid object."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("channel metadata must be a JSON object")
        known = cls._known()
        values: dict[str, Any] = {}
        for key in known:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"channel metadata field {key!r} must be a string")
            values[key] = value
        custom = {k: v for k, v in data.items() if k not in known}
        return cls(**values, custom=custom)

    def as_json(self) -> str:
        data = {k: getattr(self, k) for k in self._known() if getattr(self, k) is not None}
        data.update(self.custom)
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def _metadata_or_error(content: str) -> ChannelMetadata:
    try:
        return ChannelMetadata.from_json(content)
    except (TypeError, ValueError) as exc:
        raise ChannelCacheError(
            f"Error parsing JSON content into nostr::Metadata: {content}"
        ) from exc


def _millis_column(value: Any, column: str) -> datetime:
    try:
        return millis_to_datetime(int(value))
    except (TypeError, ValueError) as exc:
        raise RowDecodeError(column, str(exc)) from exc


@dataclass
class ChannelCache:
    """A public channel as last seen, with its image and known members."""

    channel_id: str
    creator_pubkey: str
    created_at: datetime
    updated_event_hash: str | None
    updated_at: datetime | None
    metadata: ChannelMetadata
    image_cache: ImageDownloaded | None = None
    members: list[str] = field(default_factory=list)

    def last_event_hash(self) -> str:
        """The hash of the latest metadata event, or the creation event."""
        return self.updated_event_hash or self.channel_id

    @classmethod
    async def insert_member_from_event(cls, conn, db_event: Any) -> int:
        """Record the event's author as a member of the channel it refers to."""
        channel_id = channel_id_from_tags(db_event.tags)
        if channel_id is None:
            raise ChannelCacheError(
                f"Not found channel id inside event tags: event_hash: {db_event.event_hash}"
            )
        return await cls.insert_member(conn, channel_id, db_event.pubkey)

    @staticmethod
    async def insert_member(conn, channel_id: str, member: str) -> int:
        """Add a member to a channel; return the number of rows added."""
        cursor = await conn.execute(
            "INSERT OR IGNORE INTO channel_member_map (channel_id, public_key) VALUES (?, ?)",
            (
                parse_event_hash(channel_id, "channel_id"),
                parse_public_key(member, "public_key"),
            ),
        )
        await conn.commit()
        return cursor.rowcount

    async def _complete(self, conn) -> ChannelCache:
        if self.metadata.picture is not None:
            self.image_cache = await ImageDownloaded.fetch(
                conn, self.last_event_hash(), ImageKind.CHANNEL
            )
        rows = await _fetch_all(
            conn,
            "SELECT public_key FROM channel_member_map WHERE channel_id = ?;",
            (self.channel_id,),
        )
        self.members = [parse_public_key(row["public_key"], "public_key") for row in rows]
        return self

    @classmethod
    async def fetch_by_creator(cls, conn, creator_pubkey: str) -> list[ChannelCache]:
        rows = await _fetch_all(
            conn,
            "SELECT * FROM channel_cache WHERE creator_pubkey = ?;",
            (parse_public_key(creator_pubkey, "creator_pubkey"),),
        )
        return [await cls.from_row(row)._complete(conn) for row in rows]

    @classmethod
    async def fetch_by_channel_id(cls, conn, channel_id: str) -> ChannelCache | None:
        row = await _fetch_one(
            conn,
            "SELECT * FROM channel_cache WHERE creation_event_hash = ?;",
            (parse_event_hash(channel_id, "channel_id"),),
        )
        if row is None:
            return None
        return await cls.from_row(row)._complete(conn)

    @classmethod
    async def fetch_insert(cls, conn, event: Any) -> ChannelCache:
        """Return the channel created by the event, storing it first if it is new."""
        metadata = _metadata_or_error(event.content)
        channel_id = parse_event_hash(event.id, "creation_event_hash")
        creator_pubkey = parse_public_key(event.pubkey, "creator_pubkey")
        created_at_millis = int(event.created_at) * 1000

        existing = await cls.fetch_by_channel_id(conn, channel_id)
        if existing is not None:
            return existing

        await conn.execute(
            "INSERT INTO channel_cache "
            "(creation_event_hash, creator_pubkey, created_at, metadata) "
            "VALUES (?, ?, ?, ?)",
            (channel_id, creator_pubkey, created_at_millis, metadata.as_json()),
        )
        await conn.commit()

        cache = await cls.fetch_by_channel_id(conn, channel_id)
        if cache is None:
            raise ChannelCacheError("Can't update channel without id")
        return cache

    @classmethod
    async def update(cls, conn, event: Any) -> ChannelCache:
        """Apply a channel metadata event to a channel already in the cache."""
        channel_id = channel_id_from_tags(event.tags)
        if channel_id is None:
            raise ChannelCacheError(
                f"Not found channel id inside event tags: event_hash: {event.id}"
            )
        if await cls.fetch_by_channel_id(conn, channel_id) is None:
            raise ChannelCacheError(
                f"Not found channel to update: channel_id: {channel_id}"
            )

        metadata = _metadata_or_error(event.content)
        updated_event_hash = parse_event_hash(event.id, "updated_event_hash")
        updated_at_millis = int(event.created_at) * 1000

        await conn.execute(
            "UPDATE channel_cache "
            "SET metadata = ?, updated_event_hash = ?, updated_at = ? "
            "WHERE creation_event_hash = ?",
            (metadata.as_json(), updated_event_hash, updated_at_millis, channel_id),
        )
        await conn.commit()

        cache = await cls.fetch_by_channel_id(conn, channel_id)
        if cache is None:
            raise ChannelCacheError("Can't update channel without id")
        return cache

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ChannelCache:
        try:
            metadata = ChannelMetadata.from_json(row["metadata"])
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("metadata", str(exc)) from exc

        updated_hash = row.get("updated_event_hash")
        updated_at = row.get("updated_at")
        return cls(
            channel_id=parse_event_hash(row["creation_event_hash"], "creation_event_hash"),
            creator_pubkey=parse_public_key(row["creator_pubkey"], "creator_pubkey"),
            created_at=_millis_column(row["created_at"], "created_at"),
            updated_event_hash=(
                parse_event_hash(updated_hash, "updated_event_hash")
                if updated_hash is not None
                else None
            ),
            updated_at=(
                _millis_column(updated_at, "updated_at") if updated_at is not None else None
            ),
            metadata=metadata,
        )