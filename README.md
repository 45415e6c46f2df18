# nostrtalk

`nostrtalk` is the storage layer of a Nostr chat client. It keeps what the
client receives from relays in SQLite and works entirely with `asyncio`
through `aiosqlite`.

It uses two databases:

* a **user database**, one per public key, holding events, direct messages,
  channel messages, channel subscriptions, contacts, relays, relay responses
  and the user's configuration;
* a **cache database**, shared by all users, holding profile metadata, channel
  metadata, channel members and records of downloaded images.

## Opening the databases

`Database.open(pubkey)` creates both databases in the platform's user data and
cache directories (via `platformdirs`) when they do not exist yet, and brings
their schemas up to date. The result has two `aiosqlite` connections,
`conn` for the user database and `cache_conn` for the cache database, and can
be closed with `close()` or used as an `async with` block.

```python
import asyncio

from nostrtalk.db.database import Database


async def main() -> None:
    async with await Database.open("my-public-key-hex") as db:
        ...  # work with db.conn and db.cache_conn


asyncio.run(main())
```

To prepare a connection you opened yourself, for example on a temporary file,
call `upgrade_db(conn)` for the user schema or `upgrade_cache_db(conn)` for the
cache schema. `curr_db_version(conn)` reports the schema version recorded in
the file (`DB_VERSION` is the latest one). A database written by a newer
version raises `NewerDbVersion`.

## What is stored

| Module | Class | Contents |
| --- | --- | --- |
| `nostrtalk.db.event` | `DbEvent` | signed events, with the relay they came from |
| `nostrtalk.db.message` | `DbMessage` | encrypted direct messages (NIP-04) and their status |
| `nostrtalk.db.channel_message` | `DbChannelMessage` | public channel messages |
| `nostrtalk.db.channel_subscription` | `ChannelSubscription` | channels the user follows |
| `nostrtalk.db.contact` | `DbContact` | the user's contacts |
| `nostrtalk.db.relay` | `DbRelay` | relays and their read, write and advertise flags |
| `nostrtalk.db.relay_response` | `DbRelayResponse` | a relay's OK or error answer to an event |
| `nostrtalk.db.user_config` | `UserConfig` | first login, NTP clock offset, recommended relay |
| `nostrtalk.db.profile_cache` | `ProfileCache` | latest profile metadata per public key |
| `nostrtalk.db.channel_cache` | `ChannelCache` | channel metadata and members |
| `nostrtalk.db.image_cache` | `ImageDownloaded` | paths of downloaded profile, banner and channel images |

Each class reads and writes its own table through methods that take the
connection as their first argument, such as `DbRelay.insert(conn, url)`,
`DbEvent.fetch_hash(conn, event_hash)` or `DbContact.fetch(conn, cache_conn)`.
Every class also has `from_row(row)`, which decodes a row given as a mapping of
column names to values and raises `RowDecodeError` for a value it cannot read.

Public keys and event ids are 64-character hex strings, timestamps are naive
UTC `datetime` values stored as milliseconds, and URLs are normalised before
they are stored. `nostrtalk.db.common` holds these helpers, including
`encode_npub` and `decode_npub` for the bech32 `npub` form and
`channel_id_from_tags`, which finds the channel an event refers to from its
`e` tags.

## Example: relays and events

```python
from nostrtalk.db.event import DbEvent, NostrEvent
from nostrtalk.db.relay import DbRelay


async def remember(conn, relay_url: str, event: NostrEvent):
    if await DbRelay.fetch_by_url(conn, relay_url) is None:
        await DbRelay.insert(conn, relay_url)
    stored = await DbEvent.insert(conn, relay_url, event)
    if stored is None:
        return "already known"
    return stored.event_id
```

`DbEvent.insert` stores an event only once: it returns `None` when the event
is already in the database, and otherwise records an OK response from the relay
that delivered it. `DbEvent.to_nostr_event()` turns a stored row back into a
`NostrEvent`.

## Direct messages

`MessageTagInfo.from_event_tags` finds the sender and the recipient of a
message from its `p` tag, and `MessageTagInfo.chat_pubkey(user_pubkey)` tells
which conversation it belongs to, or `None` when the user is in neither role.
`DbMessage.insert_confirmed` stores a message as `MessageStatus.DELIVERED`;
`message_seen`, `mark_seen` and `reset_unseen` mark messages as `SEEN`, and
`fetch_unseen_chat_count` counts the delivered ones of a chat.

`nip04_encrypt` and `nip04_decrypt` implement the NIP-04 scheme (ECDH on
secp256k1, AES-256-CBC, `?iv=` suffix). `DbMessage.decrypt_message(secret_key,
tag_info)` decrypts a stored message with the user's hex secret key.

## Contacts

`DbContact.from_pubkey` accepts a public key in hex or `npub` form, and
`DbContact.new_from_submit` and `DbContact.edit_contact` set a petname and a
relay URL (an empty relay clears it). `select_name` picks, in order, the
petname, the profile display name, the profile name and finally the `npub`.
`DbContact.from_tag` builds a contact from a `["p", pubkey, relay, petname]`
tag, and `to_tag` turns it back into one. Two contacts compare equal when
their public keys do.

## Channels and profiles

`ChannelCache.fetch_insert` stores a channel from its creation event,
`ChannelCache.update` applies a channel metadata event to a channel that is
already stored, and `insert_member` / `insert_member_from_event` record who
posted in it. `ProfileCache.insert` keeps the newest profile per public key and
skips events that are older than, or the same as, the stored one.

## Errors

Each module raises its own exception type, such as `RelayError`, `EventError`,
`MessageError`, `ContactError` or `ChannelCacheError`. All of them derive from
`nostrtalk.errors.NostrTalkError`, so one `except` clause catches every
failure the package raises itself. Errors from SQLite, such as inserting a
relay or contact that already exists, are passed through unchanged.

## Logging

`nostrtalk.log.setup_logger()` installs a handler on the standard `logging`
module: the package logs at INFO and everything else at WARNING, and each
record shows its file and line. Calling it a second time raises `RuntimeError`.

## What this package does not do

It only stores and reads data. It does not connect to relays, publish or sign
events, download images (it records where downloaded images are), or provide a
user interface or a command to run.