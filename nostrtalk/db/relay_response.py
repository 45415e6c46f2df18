"""Responses relays gave to the events the user published."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from nostrtalk.db.common import _fetch_all, _fetch_one, parse_event_hash, parse_url
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)

_DEFAULT_ERROR = "Relay Error Status: No error message"


class RelayResponseError(NostrTalkError):
    """Failure while working with stored relay responses."""


@dataclass(frozen=True)
class ResponseStatus:
    """Outcome reported by a relay: accepted, or refused with a message."""

    error_message: str | None = None

    @property
    def is_ok(self) -> bool:
        return self.error_message is None

    @classmethod
    def from_bool(cls, value: bool, error_message: str | None = None) -> ResponseStatus:
        """Build a status from the stored flag and optional error message."""
        if value:
            return cls()
        return cls(error_message if error_message is not None else _DEFAULT_ERROR)

    def to_bool(self) -> tuple[bool, str | None]:
        """Return the flag and error message as they are stored."""
        return (self.is_ok, self.error_message)


@dataclass
class DbRelayResponse:
    """A relay's response to one stored event."""

    event_id: int
    event_hash: str
    relay_url: str
    status: ResponseStatus = field(default_factory=ResponseStatus)

    @classmethod
    def ok(cls, event_id: int, event_hash: str, relay_url: str) -> DbRelayResponse:
        return cls(
            event_id=event_id,
            event_hash=parse_event_hash(event_hash, "event_hash"),
            relay_url=parse_url(relay_url, "relay_url"),
            status=ResponseStatus.from_bool(True),
        )

    @classmethod
    def error(
        cls, event_id: int, event_hash: str, relay_url: str, error_message: str
    ) -> DbRelayResponse:
        return cls(
            event_id=event_id,
            event_hash=parse_event_hash(event_hash, "event_hash"),
            relay_url=parse_url(relay_url, "relay_url"),
            status=ResponseStatus.from_bool(False, error_message),
        )

    @classmethod
    async def fetch_by_event(cls, conn, event_id: int) -> list[DbRelayResponse]:
        rows = await _fetch_all(
            conn, "SELECT * FROM relay_response WHERE event_id = ?", (event_id,)
        )
        return [cls.from_row(row) for row in rows]

    @classmethod
    async def fetch_one(cls, conn, response: DbRelayResponse) -> DbRelayResponse | None:
        row = await _fetch_one(
            conn,
            "SELECT * FROM relay_response WHERE event_id = ? AND relay_url = ?",
            (response.event_id, parse_url(response.relay_url, "relay_url")),
        )
        return cls.from_row(row) if row is not None else None

    @classmethod
    async def _insert(cls, conn, response: DbRelayResponse) -> None:
        logger.debug("Inserting relay response: %r", response)
        if await cls.fetch_one(conn, response) is not None:
            return
        status, error_message = response.status.to_bool()
        await conn.execute(
            "INSERT INTO relay_response "
            "(event_id, event_hash, relay_url, status, error_message) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                response.event_id,
                response.event_hash,
                parse_url(response.relay_url, "relay_url"),
                status,
                error_message,
            ),
        )
        await conn.commit()

    @classmethod
    async def insert_ok(cls, conn, relay_url: str, db_event: Any) -> None:
        """Record that the relay accepted the given stored event."""
        response = cls.ok(db_event.event_id, db_event.event_hash, relay_url)
        await cls._insert(conn, response)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbRelayResponse:
        return cls(
            event_id=int(row["event_id"]),
            event_hash=parse_event_hash(row["event_hash"], "event_hash"),
            relay_url=parse_url(row["relay_url"], "relay_url"),
            status=ResponseStatus.from_bool(bool(row["status"]), row.get("error_message")),
        )