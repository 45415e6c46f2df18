"""Opening, creating and upgrading the SQLite databases."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import aiosqlite
import platformdirs

from nostrtalk.db.user_config import UserConfig
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)

DB_VERSION = 1
"""Latest schema version of the main database."""

_APP_NAME = "nostrtalk"
_APP_AUTHOR = "nostrtalk"

_INITIAL_SETUP = """
CREATE TABLE IF NOT EXISTS event (
    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_hash TEXT NOT NULL UNIQUE,
    pubkey TEXT NOT NULL,
    kind INTEGER NOT NULL,
    content TEXT NOT NULL,
    sig TEXT NOT NULL,
    tags TEXT NOT NULL,
    relay_url TEXT NOT NULL,
    created_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS event_kind_idx ON event(kind);
CREATE INDEX IF NOT EXISTS event_pubkey_idx ON event(pubkey);

CREATE TABLE IF NOT EXISTS relay (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL UNIQUE,
    read INTEGER NOT NULL DEFAULT 1,
    write INTEGER NOT NULL DEFAULT 1,
    advertise INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS contact (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pubkey TEXT NOT NULL UNIQUE,
    relay_url TEXT,
    petname TEXT,
    status INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS message (
    event_id INTEGER PRIMARY KEY,
    content TEXT NOT NULL,
    chat_pubkey TEXT NOT NULL,
    is_users INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    status INTEGER NOT NULL,
    relay_url TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS message_chat_idx ON message(chat_pubkey, created_at);

CREATE TABLE IF NOT EXISTS user_config (
    id INTEGER PRIMARY KEY,
    has_logged_in INTEGER NOT NULL DEFAULT 0,
    ntp_offset INTEGER NOT NULL DEFAULT 0,
    recommended_relay TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS relay_response (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    event_hash TEXT NOT NULL,
    relay_url TEXT NOT NULL,
    status INTEGER NOT NULL,
    error_message TEXT,
    UNIQUE (event_id, relay_url)
);

CREATE TABLE IF NOT EXISTS channel_message (
    event_id INTEGER PRIMARY KEY,
    channel_id TEXT NOT NULL,
    author TEXT NOT NULL,
    is_users INTEGER NOT NULL,
    created_at INTEGER NOT NULL,
    relay_url TEXT NOT NULL,
    content TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS channel_message_channel_idx
    ON channel_message(channel_id, created_at);

CREATE TABLE IF NOT EXISTS channel_subscription (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel_id TEXT NOT NULL,
    subscribed_at INTEGER NOT NULL
);
"""

_CACHE_SETUP = """
CREATE TABLE IF NOT EXISTS profile_meta_cache (
    public_key TEXT PRIMARY KEY,
    updated_at INTEGER NOT NULL,
    event_hash TEXT NOT NULL,
    metadata TEXT NOT NULL,
    from_relay TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS channel_cache (
    creation_event_hash TEXT PRIMARY KEY,
    creator_pubkey TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    updated_event_hash TEXT,
    updated_at INTEGER,
    metadata TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS channel_cache_creator_idx ON channel_cache(creator_pubkey);

CREATE TABLE IF NOT EXISTS image_cache (
    path TEXT NOT NULL,
    kind INTEGER NOT NULL,
    event_hash TEXT NOT NULL,
    PRIMARY KEY (event_hash, kind)
);

CREATE TABLE IF NOT EXISTS channel_member_map (
    channel_id TEXT NOT NULL,
    public_key TEXT NOT NULL,
    PRIMARY KEY (channel_id, public_key)
);
"""


class DatabaseError(NostrTalkError):
    """Failure while opening or upgrading a database."""


class NewerDbVersion(DatabaseError):
    """The database was written by a newer version of the application."""

    def __init__(self, current: int, db_ver: int) -> None:
        self.current = current
        self.db_ver = db_ver
        super().__init__(
            "Database version is newer than supported by this executable "
            f"(v{current} > v{db_ver})"
        )


@dataclass
class Database:
    """The user's main database and the shared cache database."""

    conn: aiosqlite.Connection
    cache_conn: aiosqlite.Connection

    @classmethod
    async def open(cls, pubkey: str) -> Database:
        """Open (creating if needed) the databases for the given public key."""
        try:
            data_dir = Path(platformdirs.user_data_dir(_APP_NAME, _APP_AUTHOR))
            cache_dir = Path(platformdirs.user_cache_dir(_APP_NAME, _APP_AUTHOR))
            data_dir.mkdir(parents=True, exist_ok=True)
            cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DatabaseError(f"I/O Error: {exc}") from exc

        logger.info("Connecting database")
        conn = await aiosqlite.connect(data_dir / f"{pubkey}.db3")
        try:
            await upgrade_db(conn)
            logger.info("Connecting to cache database")
            cache_conn = await aiosqlite.connect(Path(f"{cache_dir}.db3"))
        except BaseException:
            await conn.close()
            raise
        try:
            logger.info("Cache setup")
            await upgrade_cache_db(cache_conn)
        except BaseException:
            await conn.close()
            await cache_conn.close()
            raise
        return cls(conn=conn, cache_conn=cache_conn)

    async def close(self) -> None:
        await self.conn.close()
        await self.cache_conn.close()

    async def __aenter__(self) -> Database:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


async def curr_db_version(conn) -> int:
    """Return the schema version recorded in the database."""
    async with conn.execute("PRAGMA user_version;") as cursor:
        row = await cursor.fetchone()
    return int(row[0])


async def _initial_setup(conn) -> int:
    logger.info("Database initial setup")
    await conn.executescript(_INITIAL_SETUP)
    await UserConfig.setup_user_config(conn)
    await conn.execute(f"PRAGMA user_version = {DB_VERSION};")
    await conn.commit()
    logger.info("Database schema initialized to v1")
    return 1


async def upgrade_db(conn) -> None:
    """Bring the main database up to the latest schema version."""
    version = await curr_db_version(conn)
    logger.info("DB version = %s", version)

    if version > DB_VERSION:
        raise NewerDbVersion(current=version, db_ver=DB_VERSION)
    if version == DB_VERSION:
        logger.debug("Database version was already current (v%s)", DB_VERSION)
        return
    if version == 0:
        version = await _initial_setup(conn)
    if version == DB_VERSION:
        logger.info("All migration scripts completed successfully (v%s)", DB_VERSION)


async def upgrade_cache_db(conn) -> None:
    """Create any missing cache tables."""
    await conn.executescript(_CACHE_SETUP)
    await conn.commit()