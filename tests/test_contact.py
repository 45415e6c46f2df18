import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime

import aiosqlite
import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from nostrtalk.db.common import RowDecodeError, encode_npub
from nostrtalk.db.contact import (
    ContactError,
    ContactStatus,
    DbContact,
    InvalidPublicKey,
)
from nostrtalk.db.database import upgrade_cache_db, upgrade_db
from nostrtalk.db.event import NostrEvent
from nostrtalk.db.profile_cache import ProfileCache, ProfileMetadata

VADER = "9e45b5e573adfb70be9f81e6f19e3df334fa24b3a7273859104d399ccbf64e94"
FRIEND = "dafb7c5a8d3a061a8254eb9ffb132cceec0b5080357531006e127263121e3adc"


def _random_pubkey() -> str:
    x = ec.generate_private_key(ec.SECP256K1()).public_key().public_numbers().x
    return format(x, "064x")


@asynccontextmanager
async def _databases():
    conn = await aiosqlite.connect(":memory:")
    cache_conn = await aiosqlite.connect(":memory:")
    try:
        await upgrade_db(conn)
        await upgrade_cache_db(cache_conn)
        yield conn, cache_conn
    finally:
        await conn.close()
        await cache_conn.close()


def _profile(pubkey: str, name=None, display_name=None) -> ProfileCache:
    return ProfileCache(
        public_key=pubkey,
        updated_at=datetime(2023, 1, 1),
        event_hash="ab" * 32,
        from_relay="wss://relay.example.com/",
        metadata=ProfileMetadata(name=name, display_name=display_name),
    )


def test_equality_by_pubkey_only():
    first = DbContact(pubkey=VADER, petname="a")
    second = DbContact(pubkey=VADER.upper(), petname="b")
    assert first == second
    assert first != DbContact(pubkey=FRIEND)


def test_invalid_pubkey_rejected():
    with pytest.raises(InvalidPublicKey):
        DbContact(pubkey="zz")


def test_from_pubkey_hex_and_npub():
    assert DbContact.from_pubkey(VADER).pubkey == VADER
    assert DbContact.from_pubkey(encode_npub(FRIEND)).pubkey == FRIEND


def test_from_pubkey_garbage():
    with pytest.raises(InvalidPublicKey):
        DbContact.from_pubkey("not-a-key")


def test_edit_contact_sets_fields():
    contact = DbContact.edit_contact(DbContact(pubkey=VADER), "Myfriendz", "ws://192.168.15.15")
    assert contact.petname == "Myfriendz"
    assert contact.relay_url == "ws://192.168.15.15/"


def test_edit_contact_empty_relay_clears():
    contact = DbContact(pubkey=VADER, relay_url="wss://relay.example.com/")
    edited = DbContact.edit_contact(contact, "x", "")
    assert edited.relay_url is None
    assert contact.relay_url == "wss://relay.example.com/"


def test_edit_contact_bad_relay():
    with pytest.raises(ContactError):
        DbContact.edit_contact(DbContact(pubkey=VADER), "x", "not a url")


def test_new_from_submit():
    contact = DbContact.new_from_submit(encode_npub(VADER), "Vaderzzz", "wss://relay.example.com")
    assert contact.pubkey == VADER
    assert contact.petname == "Vaderzzz"
    assert contact.relay_url == "wss://relay.example.com/"


def test_with_relay_url_invalid_becomes_none():
    assert DbContact(pubkey=VADER).with_relay_url("bad url").relay_url is None


def test_tag_round_trip():
    contact = DbContact(pubkey=VADER, relay_url="wss://relay.example.com/", petname="Vaderzzz")
    tag = contact.to_tag()
    assert tag == ["p", VADER, "wss://relay.example.com/", "Vaderzzz"]
    back = DbContact.from_tag(tag)
    assert back.pubkey == VADER
    assert back.relay_url == "wss://relay.example.com/"
    assert back.petname == "Vaderzzz"


def test_from_tag_without_relay():
    contact = DbContact.from_tag(["p", FRIEND])
    assert contact.relay_url is None
    assert contact.petname is None


def test_from_tag_other_kind():
    with pytest.raises(ContactError):
        DbContact.from_tag(["e", "ab" * 32])


def test_select_name_order():
    contact = DbContact(pubkey=VADER)
    assert contact.select_name() == encode_npub(VADER)
    with_name = contact.with_profile_cache(_profile(VADER, name="vader"))
    assert with_name.select_name() == "vader"
    with_display = contact.with_profile_cache(_profile(VADER, name="vader", display_name="Lord"))
    assert with_display.select_name() == "Lord"
    assert with_display.with_petname("   ").select_name() == "Lord"
    assert with_display.with_petname("Dad").select_name() == "Dad"


def test_contact_status_nonzero_is_known():
    assert ContactStatus(0) is ContactStatus.UNKNOWN
    assert ContactStatus(7) is ContactStatus.KNOWN


def test_from_row_bad_pubkey():
    row = {"pubkey": "nope", "relay_url": None, "petname": None,
           "status": 0, "created_at": 0, "updated_at": 0}
    with pytest.raises(RowDecodeError):
        DbContact.from_row(row)


def test_from_row_empty_relay_is_none():
    row = {"pubkey": VADER, "relay_url": "", "petname": "p",
           "status": 1, "created_at": 1000, "updated_at": 2000}
    contact = DbContact.from_row(row)
    assert contact.relay_url is None
    assert contact.status is ContactStatus.KNOWN
    assert contact.created_at == datetime(1970, 1, 1, 0, 0, 1)


@pytest.mark.asyncio
async def test_add_new_contact():
    async with _databases() as (conn, cache_conn):
        pubkey = _random_pubkey()
        await DbContact.insert(conn, pubkey)
        contacts = await DbContact.fetch(conn, cache_conn)
        assert [c.pubkey for c in contacts] == [pubkey]


@pytest.mark.asyncio
async def test_contact_must_be_unique():
    async with _databases() as (conn, cache_conn):
        pubkey = _random_pubkey()
        await DbContact.insert(conn, pubkey)
        with pytest.raises(sqlite3.IntegrityError):
            await DbContact.insert(conn, pubkey)
        assert len(await DbContact.fetch(conn, cache_conn)) == 1


@pytest.mark.asyncio
async def test_add_and_update_contact():
    async with _databases() as (conn, cache_conn):
        pubkey = _random_pubkey()
        await DbContact.upsert_contact(conn, DbContact(pubkey=pubkey))
        update = DbContact.edit_contact(DbContact(pubkey=pubkey), "Myfriendz", "ws://192.168.15.15")
        await DbContact.upsert_contact(conn, update)
        contacts = await DbContact.fetch(conn, cache_conn)
        assert len(contacts) == 1
        assert contacts[0].petname == update.petname
        assert contacts[0].relay_url == update.relay_url


@pytest.mark.asyncio
async def test_update_contact():
    async with _databases() as (conn, cache_conn):
        pubkey = _random_pubkey()
        await DbContact.insert(conn, pubkey)
        update = DbContact.edit_contact(DbContact(pubkey=pubkey), "Myfriendz", "ws://192.168.15.15")
        update.status = ContactStatus.KNOWN
        await DbContact.update(conn, update)
        stored = await DbContact.fetch_one(conn, cache_conn, pubkey)
        assert stored.petname == "Myfriendz"
        assert stored.relay_url == "ws://192.168.15.15/"
        assert stored.status is ContactStatus.KNOWN


@pytest.mark.asyncio
async def test_delete_contact():
    async with _databases() as (conn, cache_conn):
        pubkey = _random_pubkey()
        await DbContact.insert(conn, pubkey)
        await DbContact.delete(conn, DbContact(pubkey=pubkey))
        assert await DbContact.fetch(conn, cache_conn) == []
        assert await DbContact.has_contact(conn, pubkey) is False


@pytest.mark.asyncio
async def test_delete_all_and_has_contact():
    async with _databases() as (conn, _cache_conn):
        await DbContact.insert(conn, VADER)
        await DbContact.insert(conn, FRIEND)
        assert await DbContact.has_contact(conn, VADER) is True
        await DbContact.delete_all(conn)
        assert await DbContact.fetch_basic(conn) == []


@pytest.mark.asyncio
async def test_fetch_insert_creates_once():
    async with _databases() as (conn, cache_conn):
        first = await DbContact.fetch_insert(conn, cache_conn, VADER)
        second = await DbContact.fetch_insert(conn, cache_conn, VADER)
        assert first.pubkey == second.pubkey == VADER
        assert len(await DbContact.fetch_basic(conn)) == 1


@pytest.mark.asyncio
async def test_fetch_one_missing():
    async with _databases() as (conn, cache_conn):
        assert await DbContact.fetch_one(conn, cache_conn, FRIEND) is None


@pytest.mark.asyncio
async def test_fetch_attaches_profile_cache():
    async with _databases() as (conn, cache_conn):
        await DbContact.insert(conn, VADER)
        event = NostrEvent(
            id="ab" * 32,
            pubkey=VADER,
            created_at=1_700_000_000,
            kind=0,
            content='{"name":"alice","display_name":"Alice"}',
        )
        await ProfileCache.insert(cache_conn, "wss://relay.example.com", event)
        contacts = await DbContact.fetch(conn, cache_conn)
        assert contacts[0].profile_cache.metadata.display_name == "Alice"
        assert contacts[0].select_name() == "Alice"


@pytest.mark.asyncio
async def test_upsert_inserts_with_petname():
    async with _databases() as (conn, cache_conn):
        contact = DbContact(pubkey=FRIEND, petname="Friendzin")
        await DbContact.upsert_contact(conn, contact)
        stored = await DbContact.fetch_one(conn, cache_conn, FRIEND)
        assert stored.petname == "Friendzin"
        assert stored.status is ContactStatus.UNKNOWN