"""Cached profile metadata of other users, kept in the cache database."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Mapping

from nostrtalk.db.common import (
    RowDecodeError,
    _fetch_one,
    datetime_to_millis,
    millis_to_datetime,
    parse_event_hash,
    parse_public_key,
    parse_url,
)
from nostrtalk.db.image_cache import ImageDownloaded, ImageKind
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)


class ProfileCacheError(NostrTalkError):
    """Failure while working with the profile cache."""


@dataclass
class ProfileMetadata:
    """Profile metadata carried in a kind 0 event."""

    name: str | None = None
    display_name: str | None = None
    about: str | None = None
    website: str | None = None
    picture: str | None = None
    banner: str | None = None
    nip05: str | None = None
    lud06: str | None = None
    lud16: str | None = None
    custom: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def _known(cls) -> list[str]:
        return [f.name for f in fields(cls) if f.name != "custom"]

    @classmethod
    def from_json(cls, text: str) -> ProfileMetadata:
        """Parse metadata JSON; raise ValueError when it is not a valid object."""
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("metadata must be a JSON object")
        known = cls._known()
        values: dict[str, Any] = {}
        for key in known:
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"metadata field {key!r} must be a string")
            values[key] = value
        custom = {k: v for k, v in data.items() if k not in known}
        return cls(**values, custom=custom)

    def as_json(self) -> str:
        data = {k: getattr(self, k) for k in self._known() if getattr(self, k) is not None}
        data.update(self.custom)
        return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def _metadata_or_error(content: str) -> ProfileMetadata:
    try:
        return ProfileMetadata.from_json(content)
    except (TypeError, ValueError) as exc:
        raise ProfileCacheError(
            f"Error parsing JSON content into nostr::Metadata: {content}"
        ) from exc


@dataclass
class ProfileCache:
    """The latest known profile of a public key."""

    public_key: str
    updated_at: datetime
    event_hash: str
    from_relay: str
    metadata: ProfileMetadata
    profile_pic_cache: ImageDownloaded | None = None
    banner_pic_cache: ImageDownloaded | None = None

    @classmethod
    async def fetch_by_public_key(cls, conn, public_key: str) -> ProfileCache | None:
        row = await _fetch_one(
            conn,
            "SELECT * FROM profile_meta_cache WHERE public_key = ?;",
            (parse_public_key(public_key, "public_key"),),
        )
        if row is None:
            return None
        cache = cls.from_row(row)
        cache.profile_pic_cache = await ImageDownloaded.fetch(
            conn, cache.event_hash, ImageKind.PROFILE
        )
        cache.banner_pic_cache = await ImageDownloaded.fetch(
            conn, cache.event_hash, ImageKind.BANNER
        )
        return cache

    @classmethod
    async def insert(cls, conn, relay_url: str, event: Any) -> int:
        """Store the profile from a metadata event; return the number of rows changed."""
        metadata = _metadata_or_error(event.content)
        public_key = parse_public_key(event.pubkey, "public_key")
        event_hash = parse_event_hash(event.id, "event_hash")
        try:
            event_date = millis_to_datetime(int(event.created_at) * 1000)
        except (TypeError, ValueError) as exc:
            raise ProfileCacheError(f"Invalid timestamp: {event.created_at}") from exc
        relay = parse_url(relay_url, "from_relay")

        last = await cls.fetch_by_public_key(conn, public_key)
        if last is not None:
            if last.event_hash == event_hash:
                logger.debug("Skipping update. Same event id for pubkey: %s", public_key)
                return 0
            if last.updated_at > event_date:
                logger.debug(
                    "Skipping update. Outdated event for pubkey: %s - cache: %s - event: %s",
                    public_key,
                    last.updated_at,
                    event_date,
                )
                return 0

        millis = datetime_to_millis(event_date)
        metadata_json = metadata.as_json()
        try:
            cursor = await conn.execute(
                "UPDATE profile_meta_cache "
                "SET updated_at = ?, event_hash = ?, metadata = ?, from_relay = ? "
                "WHERE public_key = ?",
                (millis, event_hash, metadata_json, relay, public_key),
            )
            rows_affected = cursor.rowcount
            if rows_affected == 0:
                cursor = await conn.execute(
                    "INSERT INTO profile_meta_cache "
                    "(public_key, updated_at, event_hash, metadata, from_relay) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (public_key, millis, event_hash, metadata_json, relay),
                )
                rows_affected = cursor.rowcount
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise
        return rows_affected

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ProfileCache:
        try:
            metadata = ProfileMetadata.from_json(row["metadata"])
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("metadata", str(exc)) from exc
        try:
            updated_at = millis_to_datetime(int(row["updated_at"]))
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("updated_at", str(exc)) from exc
        return cls(
            public_key=parse_public_key(row["public_key"], "public_key"),
            updated_at=updated_at,
            event_hash=parse_event_hash(row["event_hash"], "event_hash"),
            from_relay=parse_url(row["from_relay"], "from_relay"),
            metadata=metadata,
        )