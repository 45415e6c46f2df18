import base64
import hashlib
from datetime import datetime

import aiosqlite
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import ec

from nostrtalk.db.common import RowDecodeError
from nostrtalk.db.database import upgrade_db
from nostrtalk.db.event import DbEvent, NostrEvent
from nostrtalk.db.message import (
    DbMessage,
    MessageError,
    MessageStatus,
    MessageTagInfo,
    nip04_decrypt,
    nip04_encrypt,
)

URL = "ws://192.168.15.15:8080"
_SIG = "ab" * 64


def _keypair(n: int) -> tuple[str, str]:
    priv = ec.derive_private_key(n, ec.SECP256K1())
    x = priv.public_key().public_numbers().x
    return f"{n:064x}", f"{x:064x}"


USER_SK, USER_PK = _keypair(11)
OTHER_SK, OTHER_PK = _keypair(22)
THIRD_SK, THIRD_PK = _keypair(33)


def _dm_event(sender_sk, sender_pk, receiver_pk, text, created_at=1_700_000_000):
    content = nip04_encrypt(sender_sk, receiver_pk, text)
    event_hash = hashlib.sha256(f"{content}{created_at}".encode()).hexdigest()
    return NostrEvent(
        id=event_hash,
        pubkey=sender_pk,
        created_at=created_at,
        kind=4,
        tags=[["p", receiver_pk]],
        content=content,
        sig=_SIG,
    )


@pytest_asyncio.fixture
async def conn():
    async with aiosqlite.connect(":memory:") as db:
        await upgrade_db(db)
        yield db


async def _store_dm(conn, event, chat_pubkey, is_users):
    db_event = await DbEvent.insert(conn, URL, event)
    message = await DbMessage.insert_confirmed(conn, db_event, chat_pubkey, is_users)
    return db_event, message


def test_nip04_round_trip_between_peers():
    content = nip04_encrypt(USER_SK, OTHER_PK, "hey man")
    assert nip04_decrypt(OTHER_SK, USER_PK, content) == "hey man"
    assert nip04_decrypt(USER_SK, OTHER_PK, content) == "hey man"


def test_nip04_wire_format():
    content = nip04_encrypt(USER_SK, OTHER_PK, "yo jonas")
    body, sep, iv = content.partition("?iv=")
    assert sep == "?iv="
    assert len(base64.b64decode(iv)) == 16
    assert len(base64.b64decode(body)) % 16 == 0


def test_nip04_random_iv():
    first = nip04_encrypt(USER_SK, OTHER_PK, "same")
    second = nip04_encrypt(USER_SK, OTHER_PK, "same")
    first_iv = first.partition("?iv=")[2]
    second_iv = second.partition("?iv=")[2]
    assert len(base64.b64decode(first_iv)) == 16
    assert len(base64.b64decode(second_iv)) == 16
    assert first_iv != second_iv
    assert nip04_decrypt(OTHER_SK, USER_PK, first) == "same"
    assert nip04_decrypt(OTHER_SK, USER_PK, second) == "same"


@pytest.mark.parametrize("content", ["no-iv-here", "!!!?iv=AAAAAAAAAAAAAAAAAAAAAA==", "AAAA?iv=AAAA"])
def test_nip04_malformed_content(content):
    with pytest.raises(MessageError):
        nip04_decrypt(USER_SK, OTHER_PK, content)


def test_nip04_invalid_public_key():
    with pytest.raises(MessageError):
        nip04_encrypt(USER_SK, "zz", "text")


@pytest.mark.parametrize("value,status", [(0, MessageStatus.PENDING), (1, MessageStatus.DELIVERED), (2, MessageStatus.SEEN)])
def test_status_from_int(value, status):
    assert MessageStatus.from_int(value) is status
    assert status.to_int() == value


def test_status_unknown():
    with pytest.raises(MessageError):
        MessageStatus.from_int(3)


@pytest.mark.parametrize("value,expected", [(0, False), (1, True), (2, False)])
def test_status_is_unseen(value, expected):
    assert MessageStatus.from_int(value).is_unseen() is expected


def test_tag_info_from_tags_and_chat_pubkey():
    info = MessageTagInfo.from_event_tags("00" * 32, USER_PK, [["e", "11" * 32], ["p", OTHER_PK]])
    assert info.from_pubkey == USER_PK
    assert info.to_pubkey == OTHER_PK
    assert info.chat_pubkey(USER_PK) == OTHER_PK
    assert info.chat_pubkey(OTHER_PK) == USER_PK
    assert info.chat_pubkey(THIRD_PK) is None


def test_tag_info_missing_tag():
    with pytest.raises(MessageError):
        MessageTagInfo.from_event_tags("00" * 32, USER_PK, [["e", "11" * 32]])


@pytest.mark.asyncio
async def test_dm_user_to_another_in_database(conn):
    event = _dm_event(USER_SK, USER_PK, OTHER_PK, "hey man")
    db_event, _ = await _store_dm(conn, event, OTHER_PK, True)

    assert await DbEvent.fetch_hash(conn, event.id) is not None
    messages = await DbMessage.fetch(conn)
    assert len(messages) == 1
    first = messages[0]
    assert first.event_id == db_event.event_id
    assert first.encrypted_content == db_event.content
    assert first.status is MessageStatus.DELIVERED

    tag_info = MessageTagInfo.from_event_tags(db_event.event_hash, db_event.pubkey, db_event.tags)
    assert first.decrypt_message(USER_SK, tag_info) == "hey man"


@pytest.mark.asyncio
async def test_dm_anyone_to_user_in_database(conn):
    event = _dm_event(OTHER_SK, OTHER_PK, USER_PK, "yo jonas")
    db_event, message = await _store_dm(conn, event, OTHER_PK, False)

    tag_info = MessageTagInfo.from_event_tags(db_event.event_hash, db_event.pubkey, db_event.tags)
    assert tag_info.chat_pubkey(USER_PK) == OTHER_PK
    assert message.decrypt_message(USER_SK, tag_info) == "yo jonas"
    assert message.is_users is False


@pytest.mark.asyncio
async def test_insert_confirmed_is_idempotent(conn):
    event = _dm_event(USER_SK, USER_PK, OTHER_PK, "once")
    db_event, first = await _store_dm(conn, event, OTHER_PK, True)
    again = await DbMessage.insert_confirmed(conn, db_event, OTHER_PK, True)
    assert again == first
    assert len(await DbMessage.fetch(conn)) == 1


@pytest.mark.asyncio
async def test_no_messages_stored_initially(conn):
    assert await DbMessage.fetch(conn) == []
    assert await DbMessage.fetch_chat_last(conn, OTHER_PK) is None


@pytest.mark.asyncio
async def test_chat_queries_and_seen(conn):
    times = [1_700_000_000, 1_700_000_100, 1_700_000_200]
    for t in times:
        await _store_dm(conn, _dm_event(OTHER_SK, OTHER_PK, USER_PK, f"m{t}", t), OTHER_PK, False)
    await _store_dm(conn, _dm_event(THIRD_SK, THIRD_PK, USER_PK, "other chat"), THIRD_PK, False)

    chat = await DbMessage.fetch_chat(conn, OTHER_PK)
    assert len(chat) == 3
    assert [m.created_at for m in chat] == sorted((m.created_at for m in chat), reverse=True)

    last = await DbMessage.fetch_chat_last(conn, OTHER_PK)
    assert last.event_id == chat[0].event_id

    more = await DbMessage.fetch_chat_more(conn, OTHER_PK, chat[0].created_at)
    assert [m.event_id for m in more] == [m.event_id for m in chat[1:]]

    assert await DbMessage.fetch_unseen_chat_count(conn, OTHER_PK) == 3
    assert last.is_unseen()
    await DbMessage.message_seen(conn, last)
    assert last.status is MessageStatus.SEEN
    assert await DbMessage.fetch_unseen_chat_count(conn, OTHER_PK) == 2

    await DbMessage.mark_seen(conn, chat[1].event_id)
    assert await DbMessage.fetch_unseen_chat_count(conn, OTHER_PK) == 1

    await DbMessage.reset_unseen(conn, OTHER_PK)
    assert await DbMessage.fetch_unseen_chat_count(conn, OTHER_PK) == 0
    assert await DbMessage.fetch_unseen_chat_count(conn, THIRD_PK) == 1


def test_from_row_unknown_status():
    row = {
        "event_id": 1,
        "content": "x",
        "chat_pubkey": OTHER_PK,
        "is_users": 0,
        "created_at": 0,
        "status": 7,
        "relay_url": URL,
    }
    with pytest.raises(RowDecodeError):
        DbMessage.from_row(row)


def test_from_row_decodes_values():
    row = {
        "event_id": 5,
        "content": "abc",
        "chat_pubkey": OTHER_PK,
        "is_users": 1,
        "created_at": 0,
        "status": 2,
        "relay_url": URL,
    }
    message = DbMessage.from_row(row)
    assert message.created_at == datetime(1970, 1, 1)
    assert message.status is MessageStatus.SEEN
    assert message.relay_url == "ws://192.168.15.15:8080/"
    assert message.is_users is True