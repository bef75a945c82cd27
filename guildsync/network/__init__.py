"""Network module for multiplayer support."""

from .protocol import MessageType, Message, Payload, ParseError, LineFrameReader, encode, decode
from .transport import TransportPair, AddressResolver, TransportError
from .session import PendingHandshake, ServerSession
from .client import NetworkClient, ConnectionState
