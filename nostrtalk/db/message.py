"""Encrypted direct messages stored in the main database."""

from __future__ import annotations

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Any, Mapping, Sequence

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from nostrtalk.db.common import (
    RowDecodeError,
    _fetch_all,
    _fetch_one,
    datetime_to_millis,
    millis_to_datetime,
    parse_public_key,
    parse_url,
)
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)

_FETCH_QUERY = "SELECT * FROM message"
_IV_SEPARATOR = "?iv="


class MessageError(NostrTalkError):
    """Failure while working with direct messages."""


def _shared_secret(secret_key: str, public_key: str) -> bytes:
    try:
        raw_secret = bytes.fromhex(secret_key)
        if len(raw_secret) != 32:
            raise ValueError("secret key must be 32 bytes")
        private = ec.derive_private_key(int.from_bytes(raw_secret, "big"), ec.SECP256K1())
        x_only = bytes.fromhex(parse_public_key(public_key, "public_key"))
        peer = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), b"\x02" + x_only)
        return private.exchange(ec.ECDH(), peer)
    except (TypeError, ValueError) as exc:
        raise MessageError(f"Invalid key: {exc}") from exc


def nip04_encrypt(secret_key: str, public_key: str, text: str) -> str:
    """Encrypt text for a peer with the NIP-04 scheme (AES-256-CBC over ECDH)."""
    key = _shared_secret(secret_key, public_key)
    iv = os.urandom(16)
    padder = padding.PKCS7(128).padder()
    padded = padder.update(text.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return (
        base64.b64encode(ciphertext).decode("ascii")
        + _IV_SEPARATOR
        + base64.b64encode(iv).decode("ascii")
    )


def nip04_decrypt(secret_key: str, public_key: str, content: str) -> str:
    """Decrypt NIP-04 content sent between the key holder and the peer."""
    key = _shared_secret(secret_key, public_key)
    try:
        body, sep, iv_text = content.partition(_IV_SEPARATOR)
        if not sep:
            raise ValueError("missing iv")
        ciphertext = base64.b64decode(body, validate=True)
        iv = base64.b64decode(iv_text, validate=True)
        if len(iv) != 16:
            raise ValueError("iv must be 16 bytes")
        if not ciphertext or len(ciphertext) % 16:
            raise ValueError("ciphertext length is not a multiple of the block size")
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        plain = unpadder.update(padded) + unpadder.finalize()
        return plain.decode("utf-8")
    except (ValueError, binascii.Error) as exc:
        raise MessageError(f"Decryption Error: {exc}") from exc


class MessageStatus(IntEnum):
    """Delivery state of a message."""

    PENDING = 0
    DELIVERED = 1
    SEEN = 2

    @classmethod
    def from_int(cls, value: int) -> MessageStatus:
        try:
            return cls(int(value))
        except ValueError as exc:
            raise MessageError(f"Unknown message status: {value}") from exc

    def to_int(self) -> int:
        return int(self)

    def is_unseen(self) -> bool:
        return self is MessageStatus.DELIVERED


@dataclass(frozen=True)
class MessageTagInfo:
    """Sender and receiver of a direct message."""

    from_pubkey: str
    to_pubkey: str

    @classmethod
    def from_event_tags(
        cls, event_hash: str, event_pubkey: str, tags: Sequence[Sequence[str]]
    ) -> MessageTagInfo:
        """Take the receiver from the first valid "p" tag."""
        for tag in tags:
            if len(tag) >= 2 and tag[0] == "p":
                try:
                    to_pubkey = parse_public_key(tag[1], "p")
                except RowDecodeError:
                    continue
                return cls(from_pubkey=event_pubkey.lower(), to_pubkey=to_pubkey)
        raise MessageError(f"Not found tag. ID: {event_hash}")

    def chat_pubkey(self, user_pubkey: str) -> str | None:
        """Return the other party of the chat, or None if the user is not in it."""
        user = user_pubkey.lower()
        if user == self.from_pubkey:
            return self.to_pubkey
        if user == self.to_pubkey:
            return self.from_pubkey
        return None


@dataclass
class DbMessage:
    """A direct message row."""

    event_id: int
    encrypted_content: str
    chat_pubkey: str
    is_users: bool
    created_at: datetime
    status: MessageStatus
    relay_url: str

    def is_unseen(self) -> bool:
        return self.status.is_unseen()

    def decrypt_message(self, secret_key: str, tag_info: MessageTagInfo) -> str:
        peer = tag_info.to_pubkey if self.is_users else tag_info.from_pubkey
        return nip04_decrypt(secret_key, peer, self.encrypted_content)

    @classmethod
    async def _many(cls, conn, sql: str, params=()) -> list[DbMessage]:
        return [cls.from_row(row) for row in await _fetch_all(conn, sql, params)]

    @classmethod
    async def _optional(cls, conn, sql: str, params=()) -> DbMessage | None:
        row = await _fetch_one(conn, sql, params)
        return cls.from_row(row) if row is not None else None

    @classmethod
    async def fetch(cls, conn) -> list[DbMessage]:
        return await cls._many(conn, _FETCH_QUERY)

    @classmethod
    async def fetch_by_event(cls, conn, event_id: int) -> DbMessage | None:
        return await cls._optional(conn, f"{_FETCH_QUERY} WHERE event_id = ?", (event_id,))

    @staticmethod
    async def fetch_unseen_chat_count(conn, chat_pubkey: str) -> int:
        row = await _fetch_one(
            conn,
            "SELECT COUNT(*) AS count FROM message WHERE chat_pubkey = ? AND status = ?",
            (parse_public_key(chat_pubkey, "chat_pubkey"), MessageStatus.DELIVERED.to_int()),
        )
        return int(row["count"]) if row is not None else 0

    @classmethod
    async def fetch_chat(cls, conn, chat_pubkey: str) -> list[DbMessage]:
        return await cls._many(
            conn,
            "SELECT * FROM message WHERE chat_pubkey = ? ORDER BY created_at DESC LIMIT 100",
            (parse_public_key(chat_pubkey, "chat_pubkey"),),
        )

    @classmethod
    async def fetch_chat_more(
        cls, conn, chat_pubkey: str, first_msg_date: datetime
    ) -> list[DbMessage]:
        return await cls._many(
            conn,
            "SELECT * FROM message WHERE chat_pubkey = ? AND created_at < ? "
            "ORDER BY created_at DESC LIMIT 100",
            (parse_public_key(chat_pubkey, "chat_pubkey"), datetime_to_millis(first_msg_date)),
        )

    @classmethod
    async def fetch_chat_last(cls, conn, chat_pubkey: str) -> DbMessage | None:
        return await cls._optional(
            conn,
            "SELECT * FROM message WHERE chat_pubkey = ? ORDER BY created_at DESC LIMIT 1",
            (parse_public_key(chat_pubkey, "chat_pubkey"),),
        )

    @classmethod
    async def insert_confirmed(
        cls, conn, db_event: Any, chat_pubkey: str, is_users: bool
    ) -> DbMessage:
        """Store a delivered message for an event, or return the one already stored."""
        logger.debug("Insert confirmed message. ID: %s", db_event.event_hash)
        existing = await cls.fetch_by_event(conn, db_event.event_id)
        if existing is not None:
            logger.debug("Message already in database. %r", existing)
            return existing

        await conn.execute(
            "INSERT INTO message "
            "(event_id, content, chat_pubkey, is_users, created_at, status, relay_url) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                db_event.event_id,
                db_event.content,
                parse_public_key(chat_pubkey, "chat_pubkey"),
                bool(is_users),
                datetime_to_millis(db_event.created_at),
                MessageStatus.DELIVERED.to_int(),
                parse_url(db_event.relay_url, "relay_url"),
            ),
        )
        await conn.commit()

        message = await cls.fetch_by_event(conn, db_event.event_id)
        if message is None:
            raise MessageError(f"Not found confirmed message: {db_event.event_hash}")
        return message

    @staticmethod
    async def message_seen(conn, db_message: DbMessage) -> None:
        """Mark the message as seen, in the database and on the object."""
        await conn.execute(
            "UPDATE message SET status = ? WHERE event_id = ?",
            (MessageStatus.SEEN.to_int(), db_message.event_id),
        )
        await conn.commit()
        db_message.status = MessageStatus.SEEN

    @staticmethod
    async def reset_unseen(conn, chat_pubkey: str) -> None:
        await conn.execute(
            "UPDATE message SET status = ? WHERE chat_pubkey = ? AND status = ?",
            (
                MessageStatus.SEEN.to_int(),
                parse_public_key(chat_pubkey, "chat_pubkey"),
                MessageStatus.DELIVERED.to_int(),
            ),
        )
        await conn.commit()

    @staticmethod
    async def mark_seen(conn, event_id: int) -> None:
        await conn.execute(
            "UPDATE message SET status = ? WHERE event_id = ?",
            (MessageStatus.SEEN.to_int(), event_id),
        )
        await conn.commit()

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> DbMessage:
        try:
            created_at = millis_to_datetime(int(row["created_at"]))
        except (TypeError, ValueError) as exc:
            raise RowDecodeError("created_at", str(exc)) from exc
        try:
            status = MessageStatus.from_int(row["status"])
        except (MessageError, TypeError) as exc:
            raise RowDecodeError("status", str(exc)) from exc
        return cls(
            event_id=int(row["event_id"]),
            encrypted_content=row["content"],
            chat_pubkey=parse_public_key(row["chat_pubkey"], "chat_pubkey"),
            is_users=bool(row["is_users"]),
            created_at=created_at,
            status=status,
            relay_url=parse_url(row["relay_url"], "relay_url"),
        )