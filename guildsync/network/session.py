"""Handshake and server session state for the local client."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class PendingHandshake:
    """Name and color chosen before the reliable channel is writable.

    Held by the client until the connect completes, then sent exactly once.
    """
    name: str
    color: str  # #RRGGBB


@dataclass
class ServerSession:
    """Identity assigned by the server in the handshake acknowledgement.

    Empty until the ack arrives. Only ``color`` changes afterwards, when the
    server reports a different color for us.
    """
    player_id: str = ""
    color: str = ""
    token: Optional[str] = None

    @property
    def is_established(self) -> bool:
        return bool(self.player_id)

    def establish(self, player_id: str, color: str, token: Optional[str] = None):
        """Store the server-issued identity. Ignored once established."""
        if self.is_established:
            return
        self.player_id = player_id
        self.color = color
        self.token = token

    def update_color(self, color: str) -> bool:
        """Apply a server color change. Returns True if it changed."""
        if color == self.color:
            return False
        self.color = color
        return True

    def reset(self):
        self.player_id = ""
        self.color = ""
        self.token = None
