"""Errors shared across the nostrtalk package."""

from __future__ import annotations


class NostrTalkError(Exception):
    """Base class for every error raised by nostrtalk."""


class NotSubscribedToKind(NostrTalkError):
    """An event of a kind the application never asked for arrived."""

    def __init__(self, kind: int) -> None:
        self.kind = kind
        super().__init__(f"App didn't ask for kind: {kind}")


class SameContactInsert(NostrTalkError):
    """The user's own public key was offered as a new contact."""

    def __init__(self) -> None:
        super().__init__("Not allowed to insert own pubkey as a contact")


class SameContactUpdate(NostrTalkError):
    """A contact was about to be updated to the user's own public key."""

    def __init__(self) -> None:
        super().__init__("Not allowed to update to own pubkey as a contact")


class BackendClosed(NostrTalkError):
    """The channel to the backend has been closed."""

    def __init__(self) -> None:
        super().__init__("(Backend channel closed)")


class ChannelIdNotFound(NostrTalkError):
    """An event carried no channel id in its tags."""

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"Channel id not found in event tags: EventID: {event_id}")


class UnexpectedEventKind(NostrTalkError):
    """An event of a kind that cannot be handled here was received."""

    def __init__(self, kind: int) -> None:
        self.kind = kind
        super().__init__(f"Unexpected event kind: {kind}")