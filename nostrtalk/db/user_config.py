"""Per-user configuration row stored in the main database."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

from nostrtalk.db.common import RowDecodeError, _fetch_one, parse_url
from nostrtalk.errors import NostrTalkError

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)


class UserConfigError(NostrTalkError):
    """Failure while reading or writing the user configuration."""


def system_now_microseconds() -> int:
    """Return the system clock as microseconds since the Unix epoch."""
    micros = time.time_ns() // 1000
    if micros < 0:
        raise UserConfigError("System time before unix epoch")
    return micros


async def _scalar(conn, sql: str) -> Any:
    row = await _fetch_one(conn, sql)
    if row is None:
        raise UserConfigError("user configuration row not found")
    return next(iter(row.values()))


@dataclass
class UserConfig:
    """The stored user configuration."""

    recommended_relay: str | None
    has_logged_in: bool
    ntp_offset: int

    @staticmethod
    async def setup_user_config(conn) -> None:
        """Insert the single default configuration row."""
        logger.debug("setup_user_config")
        await conn.execute(
            "INSERT INTO user_config (id, has_logged_in, ntp_offset, recommended_relay) "
            "VALUES (1, 0, 0, '');"
        )
        await conn.commit()

    @staticmethod
    async def store_first_login(conn) -> None:
        logger.debug("store_first_login")
        await conn.execute("UPDATE user_config SET has_logged_in = 1 WHERE id = 1;")
        await conn.commit()

    @staticmethod
    async def query_has_logged_in(conn) -> bool:
        logger.debug("query_has_logged_in")
        row = await _fetch_one(conn, "SELECT has_logged_in FROM user_config;")
        value = row["has_logged_in"] if row is not None else 0
        return (value or 0) != 0

    @staticmethod
    async def update_ntp_offset(conn, ntp_time: int) -> int:
        """Store the difference between NTP time and the system clock, in microseconds."""
        logger.debug("update_ntp_offset")
        offset = int(ntp_time) - system_now_microseconds()
        await conn.execute("UPDATE user_config SET ntp_offset = ? WHERE id = 1;", (offset,))
        await conn.commit()
        return offset

    @staticmethod
    async def get_corrected_time(conn) -> datetime:
        """Return the current UTC time corrected with the stored NTP offset."""
        logger.debug("get_corrected_time")
        offset = await UserConfig.get_ntp_offset(conn)
        corrected = system_now_microseconds() + offset
        try:
            return _EPOCH + timedelta(microseconds=corrected)
        except OverflowError as exc:
            raise UserConfigError(
                f"Error converting to NaiveDateTime UTC: {corrected}"
            ) from exc

    @staticmethod
    async def get_ntp_offset(conn) -> int:
        return int(await _scalar(conn, "SELECT ntp_offset FROM user_config WHERE id = 1;"))

    @staticmethod
    async def set_relay(conn, recommended_relay: str) -> None:
        url = parse_url(recommended_relay, "recommended_relay")
        await conn.execute(
            "UPDATE user_config SET recommended_relay = ? WHERE id = 1;", (url,)
        )
        await conn.commit()

    @staticmethod
    async def get_relay(conn) -> str | None:
        value = await _scalar(conn, "SELECT recommended_relay FROM user_config WHERE id = 1;")
        try:
            return parse_url(value, "recommended_relay")
        except RowDecodeError:
            return None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> UserConfig:
        try:
            relay = parse_url(row["recommended_relay"], "recommended_relay")
        except RowDecodeError:
            relay = None
        return cls(
            recommended_relay=relay,
            has_logged_in=bool(row["has_logged_in"]),
            ntp_offset=int(row["ntp_offset"]),
        )