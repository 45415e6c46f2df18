"""Asyncio SQLite storage for a Nostr chat client, with shared errors and logging set-up."""

__version__ = "0.1.0"