"""The user's contacts, stored in the main database."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Mapping, Sequence

from nostrtalk.db.common import (
    RowDecodeError,
    _fetch_all,
    _fetch_one,
    datetime_to_millis,
    decode_npub,
    encode_npub,
    millis_to_datetime,
    parse_public_key,
    parse_url,
)
from nostrtalk.db.profile_cache import ProfileCache
from nostrtalk.db.user_config import UserConfig
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)

_FETCH_QUERY = "SELECT * FROM contact"


class ContactError(NostrTalkError):
    """Failure while working with contacts."""


class InvalidPublicKey(ContactError):
    """A public key could not be parsed as hex or npub."""

    def __init__(self) -> None:
        super().__init__("Invalid Public Key")


class ContactStatus(IntEnum):
    """Whether the contact is known to the user."""

    UNKNOWN = 0
    KNOWN = 1

    @classmethod
    def _missing_(cls, value: object) -> ContactStatus | None:
        if isinstance(value, int):
            return cls.KNOWN
        return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def _corrected_now(conn) -> datetime:
    try:
        return await UserConfig.get_corrected_time(conn)
    except (NostrTalkError, sqlite3.Error):
        return _utc_now()


def _millis(row: Mapping[str, Any], column: str) -> datetime:
    try:
        return millis_to_datetime(int(row[column]))
    except (TypeError, ValueError) as exc:
        raise RowDecodeError(column, str(exc)) from exc


def _non_blank(value: str | None) -> str | None:
    return value if value is not None and value.strip() else None


@dataclass(eq=False)
class DbContact:
    """A contact of the user; two contacts are equal when their keys are."""

    pubkey: str
    relay_url: str | None = None
    petname: str | None = None
    created_at: datetime = field(default_factory=_utc_now)
    updated_at: datetime = field(default_factory=_utc_now)
    status: ContactStatus = ContactStatus.UNKNOWN
    profile_cache: ProfileCache | None = None

    def __post_init__(self) -> None:
        try:
            self.pubkey = parse_public_key(self.pubkey, "pubkey")
        except RowDecodeError as exc:
            raise InvalidPublicKey() from exc
        self.status = ContactStatus(self.status)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DbContact):
            return NotImplemented
        return self.pubkey == other.pubkey

    @classmethod
    def from_tag(cls, tag: Sequence[str]) -> DbContact:
        """Build a contact from a "p" tag: pubkey, optional relay and petname."""
        if len(tag) < 2 or tag[0] != "p":
            raise ContactError("Other type of Tag")
        contact = cls(pubkey=tag[1])
        if len(tag) > 2 and tag[2]:
            contact = contact.with_relay_url(tag[2])
        if len(tag) > 3:
            contact = contact.with_petname(tag[3])
        return contact

    @classmethod
    def from_pubkey(cls, pubkey: str) -> DbContact:
        """Build a contact from an npub string or a hex public key."""
        try:
            return cls(pubkey=decode_npub(pubkey))
        except ValueError:
            return cls(pubkey=pubkey)

    @classmethod
    def new_from_submit(cls, pubkey: str, petname: str, relay_url: str) -> DbContact:
        return cls.edit_contact(cls.from_pubkey(pubkey), petname, relay_url)

    @staticmethod
    def edit_contact(contact: DbContact, petname: str, relay_url: str) -> DbContact:
        """Return the contact with a new petname and relay; an empty relay clears it."""
        url: str | None = None
        if relay_url:
            try:
                url = parse_url(relay_url, "relay_url")
            except RowDecodeError as exc:
                raise ContactError(f"Error parsing url: {relay_url}") from exc
        return replace(contact, petname=petname, relay_url=url)

    def to_tag(self) -> list[str]:
        """The contact as a contact-list "p" tag."""
        tag = ["p", self.pubkey, self.relay_url or ""]
        if self.petname is not None:
            tag.append(self.petname)
        return tag

    def with_profile_cache(self, cache: ProfileCache) -> DbContact:
        return replace(self, profile_cache=cache)

    def with_relay_url(self, relay_url: str) -> DbContact:
        """Return the contact with the relay set, or cleared if it does not parse."""
        try:
            url: str | None = parse_url(relay_url, "relay_url")
        except RowDecodeError:
            url = None
        return replace(self, relay_url=url)

    def with_petname(self, petname: str) -> DbContact:
        return replace(self, petname=petname)

    def select_name(self) -> str:
        """Petname, then profile display name, then profile name, then the npub."""
        metadata = self.profile_cache.metadata if self.profile_cache else None
        candidates = [
            self.petname,
            metadata.display_name if metadata else None,
            metadata.name if metadata else None,
        ]
        for candidate in candidates:
            if _non_blank(candidate) is not None:
                return candidate
        try:
            return encode_npub(self.pubkey)
        except ValueError:
            return self.pubkey

    async def _attach_profile(self, cache_conn) -> DbContact:
        cache = await ProfileCache.fetch_by_public_key(cache_conn, self.pubkey)
        return self.with_profile_cache(cache) if cache is not None else self

    @classmethod
    async def fetch_basic(cls, conn) -> list[DbContact]:
        return [cls.from_row(row) for row in await _fetch_all(conn, _FETCH_QUERY)]

    @classmethod
    async def fetch(cls, conn, cache_conn) -> list[DbContact]:
        """All contacts, each with its cached profile when there is one."""
        return [await contact._attach_profile(cache_conn) for contact in await cls.fetch_basic(conn)]

    @staticmethod
    async def insert(conn, pubkey: str) -> int:
        """Insert a bare contact and return its row id."""
        key = parse_public_key(pubkey, "pubkey")
        millis = datetime_to_millis(await _corrected_now(conn))
        cursor = await conn.execute(
            "INSERT INTO contact (pubkey, created_at, updated_at) VALUES (?, ?, ?);",
            (key, millis, millis),
        )
        await conn.commit()
        return cursor.lastrowid

    @classmethod
    async def fetch_insert(cls, conn, cache_conn, pubkey: str) -> DbContact:
        """Return the contact for the key, inserting it first if it is missing."""
        key = parse_public_key(pubkey, "pubkey")
        row = await _fetch_one(conn, f"{_FETCH_QUERY} WHERE pubkey = ?", (key,))
        if row is None:
            row_id = await cls.insert(conn, key)
            row = await _fetch_one(conn, f"{_FETCH_QUERY} WHERE id = ?", (row_id,))
            if row is None:
                raise ContactError(f"Not found contact with pubkey: {key}")
        return await cls.from_row(row)._attach_profile(cache_conn)

    @classmethod
    async def fetch_one(cls, conn, cache_conn, pubkey: str) -> DbContact | None:
        key = parse_public_key(pubkey, "pubkey")
        row = await _fetch_one(conn, f"{_FETCH_QUERY} WHERE pubkey = ?", (key,))
        if row is None:
            return None
        return await cls.from_row(row)._attach_profile(cache_conn)

    @staticmethod
    async def upsert_contact(conn, contact: DbContact) -> None:
        """Update the contact's relay and petname, inserting it if absent."""
        logger.debug("Upserting Contact %s", contact.pubkey)
        now = datetime_to_millis(await _corrected_now(conn))
        try:
            cursor = await conn.execute(
                "UPDATE contact SET relay_url = ?, petname = ?, updated_at = ? "
                "WHERE pubkey = ?",
                (contact.relay_url, contact.petname, now, contact.pubkey),
            )
            if cursor.rowcount == 0:
                await conn.execute(
                    "INSERT INTO contact "
                    "(pubkey, relay_url, petname, status, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        contact.pubkey,
                        contact.relay_url,
                        contact.petname,
                        int(contact.status),
                        datetime_to_millis(contact.created_at),
                        datetime_to_millis(contact.updated_at),
                    ),
                )
            await conn.commit()
        except BaseException:
            logger.error("Error upserting contact %s", contact.pubkey)
            await conn.rollback()
            raise

    @staticmethod
    async def update(conn, contact: DbContact) -> None:
        logger.info("Updating Contact %s", contact.pubkey)
        now = datetime_to_millis(await _corrected_now(conn))
        await conn.execute(
            "UPDATE contact SET relay_url = ?, petname = ?, status = ?, updated_at = ? "
            "WHERE pubkey = ?",
            (contact.relay_url, contact.petname, int(contact.status), now, contact.pubkey),
        )
        await conn.commit()

    @staticmethod
    async def delete(conn, contact: DbContact) -> None:
        await conn.execute("DELETE FROM contact WHERE pubkey = ?", (contact.pubkey,))
        await conn.commit()

    @staticmethod
    async def delete_all(conn) -> None:
        await conn.execute("DELETE FROM contact;")
        await conn.commit()

    @staticmethod
    async def has_contact(conn, pubkey: str) -> bool:
        row = await _fetch_one(
            conn,
            "SELECT EXISTS(SELECT 1 FROM contact WHERE pubkey = ?) AS present",
            (parse_public_key(pubkey, "pubkey"),),
        )
        return bool(row and row["present"])

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbContact:
        pubkey = parse_public_key(row["pubkey"], "pubkey")
        relay = row.get("relay_url")
        relay_url = parse_url(relay, "relay_url") if relay else None
        try:
            status = ContactStatus(int(row.get("status") or 0))
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("status", str(exc)) from exc
        return cls(
            pubkey=pubkey,
            relay_url=relay_url,
            petname=row.get("petname"),
            created_at=_millis(row, "created_at"),
            updated_at=_millis(row, "updated_at"),
            status=status,
        )