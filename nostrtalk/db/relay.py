"""Relays the user has configured."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from nostrtalk.db.common import RowDecodeError, _fetch_all, _fetch_one, parse_url
from nostrtalk.errors import NostrTalkError

_FETCH_QUERY = "SELECT * FROM relay"


class RelayError(NostrTalkError):
    """Failure while working with stored relays."""


class RelayNotFound(RelayError):
    """A relay expected in the database is missing."""

    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f"Relay not found: {url}")


def _normalise(url: str) -> str:
    try:
        return parse_url(url, "url")
    except RowDecodeError as exc:
        raise RelayError(f'Invalid URL: "{url}"') from exc


@dataclass
class DbRelay:
    """A relay row together with optionally fetched relay information."""

    id: int
    url: str
    read: bool
    write: bool
    advertise: bool
    information: Any = None

    @classmethod
    async def fetch(cls, conn) -> list[DbRelay]:
        return [cls.from_row(row) for row in await _fetch_all(conn, _FETCH_QUERY)]

    @classmethod
    async def fetch_by_url(cls, conn, url: str) -> DbRelay | None:
        row = await _fetch_one(conn, f"{_FETCH_QUERY} WHERE url = ?", (_normalise(url),))
        return cls.from_row(row) if row is not None else None

    @classmethod
    async def insert(cls, conn, url: str) -> DbRelay:
        normalised = _normalise(url)
        await conn.execute("INSERT INTO relay (url) VALUES (?)", (normalised,))
        await conn.commit()
        relay = await cls.fetch_by_url(conn, normalised)
        if relay is None:
            raise RelayNotFound(normalised)
        return relay

    @staticmethod
    async def update(conn, relay: DbRelay) -> None:
        await conn.execute(
            "UPDATE relay SET read=?, write=?, advertise=? WHERE id=?",
            (relay.read, relay.write, relay.advertise, relay.id),
        )
        await conn.commit()

    @staticmethod
    async def delete(conn, url: str) -> None:
        await conn.execute("DELETE FROM relay WHERE url=?", (_normalise(url),))
        await conn.commit()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbRelay:
        return cls(
            id=int(row["id"]),
            url=parse_url(row["url"], "url"),
            read=bool(row["read"]),
            write=bool(row["write"]),
            advertise=bool(row["advertise"]),
        )