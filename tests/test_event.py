import aiosqlite
import pytest
import pytest_asyncio

from nostrtalk.db.common import RowDecodeError, millis_to_datetime, parse_url
from nostrtalk.db.database import upgrade_db
from nostrtalk.db.event import DbEvent, NostrEvent
from nostrtalk.db.relay_response import DbRelayResponse

URL = "ws://192.168.15.15:8080"
OTHER_URL = "wss://relay.example.com"
PK_A = "9e45b5e573adfb70be9f81e6f19e3df334fa24b3a7273859104d399ccbf64e94"
PK_B = "dafb7c5a8d3a061a8254eb9ffb132cceec0b5080357531006e127263121e3adc"
CHANNEL = "8233a5d8e27a9415d22c974d70935011664ada55ae3152bd10d697d3a3c74f67"


def make_event(event_id: str, pubkey: str = PK_A, kind: int = 1, created_at: int = 1_700_000_000):
    return NostrEvent(
        id=event_id,
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=[["e", CHANNEL, "", "root"], ["p", PK_B]],
        content="hello",
        sig="ab" * 64,
    )


@pytest_asyncio.fixture
async def conn():
    connection = await aiosqlite.connect(":memory:")
    await upgrade_db(connection)
    yield connection
    await connection.close()


@pytest.mark.asyncio
async def test_insert_and_round_trip(conn):
    event = make_event("1" * 64)
    db_event = await DbEvent.insert(conn, URL, event)
    assert db_event.event_hash == event.id
    assert db_event.created_at == millis_to_datetime(event.created_at * 1000)
    assert db_event.relay_url == parse_url(URL, "relay_url")
    assert db_event.to_nostr_event() == event


@pytest.mark.asyncio
async def test_insert_twice_returns_none(conn):
    event = make_event("2" * 64)
    assert await DbEvent.insert(conn, URL, event) is not None
    assert await DbEvent.insert(conn, URL, event) is None
    assert len(await DbEvent.fetch(conn)) == 1


@pytest.mark.asyncio
async def test_insert_records_relay_response(conn):
    db_event = await DbEvent.insert(conn, URL, make_event("3" * 64))
    responses = await DbRelayResponse.fetch_by_event(conn, db_event.event_id)
    assert [r.status.is_ok for r in responses] == [True]
    assert responses[0].event_hash == db_event.event_hash


@pytest.mark.asyncio
async def test_fetch_queries(conn):
    first = await DbEvent.insert(conn, URL, make_event("4" * 64, kind=1))
    second = await DbEvent.insert(conn, OTHER_URL, make_event("5" * 64, pubkey=PK_B, kind=4))
    third = await DbEvent.insert(conn, URL, make_event("6" * 64, kind=4))

    assert [e.event_hash for e in await DbEvent.fetch_kind(conn, 4)] == [
        second.event_hash,
        third.event_hash,
    ]
    assert (await DbEvent.fetch_last(conn)).event_id == third.event_id
    assert (await DbEvent.fetch_last_url(conn, OTHER_URL)).event_id == second.event_id
    assert (await DbEvent.fetch_last_kind(conn, 1)).event_id == first.event_id
    found = await DbEvent.fetch_last_kind_pubkey(conn, 4, PK_B)
    assert found.event_id == second.event_id
    assert (await DbEvent.fetch_id(conn, first.event_id)).event_hash == first.event_hash
    assert await DbEvent.has_event(conn, "4" * 64)
    assert not await DbEvent.has_event(conn, "7" * 64)


@pytest.mark.asyncio
async def test_delete(conn):
    db_event = await DbEvent.insert(conn, URL, make_event("8" * 64))
    await DbEvent.delete(conn, db_event.event_id)
    assert await DbEvent.fetch_hash(conn, "8" * 64) is None


@pytest.mark.asyncio
async def test_insert_rejects_bad_signature(conn):
    event = make_event("9" * 64)
    event.sig = "zz"
    with pytest.raises(RowDecodeError):
        await DbEvent.insert(conn, URL, event)
    assert await DbEvent.fetch(conn) == []


def test_from_row_rejects_bad_tags():
    row = {
        "event_id": 1,
        "event_hash": "1" * 64,
        "pubkey": PK_A,
        "created_at": 0,
        "relay_url": URL,
        "tags": "not json",
        "kind": 1,
        "content": "",
        "sig": "ab" * 64,
    }
    with pytest.raises(RowDecodeError) as info:
        DbEvent.from_row(row)
    assert info.value.column == "tags"