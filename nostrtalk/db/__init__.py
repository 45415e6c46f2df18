"""SQLite models for events, messages, channels, contacts, relays, user settings and caches."""