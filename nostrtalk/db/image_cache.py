"""Records of images downloaded to disk, kept in the cache database."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Mapping

from nostrtalk.db.common import RowDecodeError, _fetch_one, parse_event_hash
from nostrtalk.errors import NostrTalkError


class ImageKind(IntEnum):
    """What a downloaded image is used for."""

    PROFILE = 1
    BANNER = 2
    CHANNEL = 3


class ImageCacheError(NostrTalkError):
    """Failure while working with the image cache."""


class ImageCacheNotFound(ImageCacheError):
    """No cached image of the given kind exists for an event."""

    def __init__(self, event_hash: str, kind: ImageKind) -> None:
        self.event_hash = event_hash
        self.kind = kind
        super().__init__(f"{kind.name.title()} cache not found for event_id: {event_hash}")


@dataclass
class ImageDownloaded:
    """An image stored on disk for an event."""

    path: Path
    kind: ImageKind
    event_hash: str

    @classmethod
    async def fetch(cls, conn, event_hash: str, kind: ImageKind) -> ImageDownloaded | None:
        row = await _fetch_one(
            conn,
            "SELECT * FROM image_cache WHERE event_hash = ? AND kind = ?",
            (parse_event_hash(event_hash, "event_hash"), int(kind)),
        )
        return cls.from_row(row) if row is not None else None

    @classmethod
    async def insert(cls, conn, image: ImageDownloaded) -> ImageDownloaded:
        """Record an image, returning the existing record if there is one."""
        existing = await cls.fetch(conn, image.event_hash, image.kind)
        if existing is not None:
            return existing

        await conn.execute(
            "INSERT INTO image_cache (path, kind, event_hash) VALUES (?, ?, ?)",
            (
                os.fsdecode(image.path),
                int(image.kind),
                parse_event_hash(image.event_hash, "event_hash"),
            ),
        )
        await conn.commit()

        cache = await cls.fetch(conn, image.event_hash, image.kind)
        if cache is None:
            raise ImageCacheNotFound(image.event_hash, ImageKind(image.kind))
        return cache

    @classmethod
    async def delete(cls, conn, event_hash: str, kind: ImageKind) -> None:
        """Remove the image file and its record."""
        cache = await cls.fetch(conn, event_hash, kind)
        if cache is None:
            raise ImageCacheNotFound(event_hash, ImageKind(kind))

        try:
            await asyncio.to_thread(os.remove, cache.path)
        except OSError as exc:
            raise ImageCacheError(f"I/O Error: {exc}") from exc

        await conn.execute(
            "DELETE FROM image_cache WHERE event_hash = ? AND kind = ?",
            (cache.event_hash, int(kind)),
        )
        await conn.commit()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ImageDownloaded:
        try:
            kind = ImageKind(int(row["kind"]))
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("kind", f"unknown image kind: {row['kind']!r}") from exc
        return cls(
            path=Path(row["path"]),
            kind=kind,
            event_hash=parse_event_hash(row["event_hash"], "event_hash"),
        )