"""Error taxonomy for the signalling relay.

``ProtocolError`` marks input that is dropped without a reply. ``RelayError``
subclasses are operation rejections; the router turns each one into a single
``error`` message to the sender, carrying ``text``.
"""

from __future__ import annotations


class ProtocolError(ValueError):
    pass


class RelayError(Exception):
    text = "Request rejected"

    def __init__(self, text: str | None = None) -> None:
        if text is not None:
            self.text = text
        super().__init__(self.text)


class NotLoggedIn(RelayError):
    text = "Not logged in"


class AlreadyLoggedIn(RelayError):
    text = "Already logged in"


class ServerFull(RelayError):
    text = "Server full"


class RoomFull(RelayError):
    text = "Room full"


class RoomLocked(RelayError):
    text = "Room locked"


class NotHost(RelayError):
    text = "Not host"


class PeerNotFound(RelayError):
    text = "Peer not found"


class CannotKickSelf(RelayError):
    text = "Cannot kick yourself"
