"""Pytest fixtures for network client testing."""
import pytest
from typing import List, Optional, Tuple

from guildsync.network.client import NetworkClient, ConnectionState
from guildsync.network.protocol import Message, decode
from guildsync.network.transport import TransportError
from guildsync.settings import ClientSettings


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTransport:
    """In-memory stand-in for TransportPair.

    Tests push server frames with push_line()/push_datagram() and inspect what
    the client sent with reliable_messages()/unreliable_messages().
    """

    SERVER_ADDR = ('127.0.0.1', 8081)

    def __init__(self):
        self.reliable_address: Optional[Tuple[str, int]] = None
        self.unreliable_address: Optional[Tuple[str, int]] = None
        self.write_ready = False
        self.connect_error: Optional[str] = None
        self.reliable_connected = False
        self.peer_closed = False
        self.closed = False
        self.inbox_reliable: List[bytes] = []
        self.inbox_unreliable: List[Tuple[Tuple[str, int], bytes]] = []
        self.sent_reliable: List[bytes] = []
        self.sent_unreliable: List[bytes] = []

    # --- TransportPair interface ---

    def connect_reliable(self, address):
        self.reliable_address = address

    def connect_unreliable(self, address):
        self.unreliable_address = address

    def is_write_ready(self) -> bool:
        if self.connect_error:
            raise TransportError(self.connect_error)
        if self.write_ready:
            self.reliable_connected = True
        return self.write_ready

    def poll_reliable(self) -> List[bytes]:
        if not self.reliable_connected:
            return []
        chunks, self.inbox_reliable = self.inbox_reliable, []
        return chunks

    def poll_unreliable(self):
        datagrams, self.inbox_unreliable = self.inbox_unreliable, []
        return datagrams

    def send_reliable(self, data: bytes) -> bool:
        if self.closed or not self.reliable_connected:
            return False
        self.sent_reliable.append(data)
        return True

    def send_unreliable(self, data: bytes) -> bool:
        if self.closed:
            return False
        self.sent_unreliable.append(data)
        return True

    def flush(self) -> bool:
        return not self.closed

    def close(self):
        self.closed = True

    # --- test helpers ---

    def push_line(self, line: str):
        """Queue one server frame on the reliable channel."""
        self.inbox_reliable.append((line + "\n").encode('utf-8'))

    def push_bytes(self, data: bytes):
        self.inbox_reliable.append(data)

    def push_datagram(self, line: str):
        self.inbox_unreliable.append((self.SERVER_ADDR, line.encode('utf-8')))

    def reliable_messages(self) -> List[Message]:
        return [decode(data) for data in self.sent_reliable]

    def unreliable_messages(self) -> List[Message]:
        return [decode(data) for data in self.sent_unreliable]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> ClientSettings:
    return ClientSettings()


@pytest.fixture
def transports() -> List[FakeTransport]:
    """Every FakeTransport the client created, in order."""
    return []


@pytest.fixture
def client(clock, settings, transports) -> NetworkClient:
    """A disconnected client wired to fake transports and the fake clock."""
    def _factory():
        transport = FakeTransport()
        transports.append(transport)
        return transport

    return NetworkClient(settings=settings, transport_factory=_factory, clock=clock)


@pytest.fixture
def connect(client, transports):
    """Factory fixture: connect and make the reliable channel writable.

    Usage:
        transport = connect()                  # handshake as Bob/#FF5252
        transport = connect(writable=False)    # stay in CONNECTING
    """
    def _connect(name: str = "Bob", color: str = "#FF5252", writable: bool = True) -> FakeTransport:
        assert client.connect('127.0.0.1', 8080, 8081, name=name, color=color)
        transport = transports[-1]
        if writable:
            transport.write_ready = True
            client.update()
            assert_state(client, ConnectionState.CONNECTED)
        return transport

    return _connect


@pytest.fixture
def handshake(client, connect):
    """Factory fixture: connect and receive a handshake ack.

    Usage:
        transport = handshake()                      # id p7 at (120, 80)
        transport = handshake(position=None)         # no spawn in the ack
    """
    def _handshake(player_id: str = "p7", color: str = "#FF5252",
                   position: Optional[Tuple[float, float]] = (120.0, 80.0)) -> FakeTransport:
        transport = connect()
        payload = f'"playerId":"{player_id}","color":"{color}"'
        if position is not None:
            payload += f',"x":{position[0]},"y":{position[1]}'
        transport.push_line(f"CONFIG {{{payload}}}")
        client.update()
        assert client.session.player_id == player_id
        return transport

    return _handshake


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def assert_state(client: NetworkClient, expected: ConnectionState, msg: str = ""):
    """Assert client connection state."""
    assert client.state == expected, \
        f"State: expected {expected.name}, got {client.state.name} ({client.status_message}). {msg}"


def assert_position(vector, x: float, y: float, tol: float = 1e-6):
    """Assert a Vector2 is at (x, y)."""
    assert abs(vector.x - x) <= tol and abs(vector.y - y) <= tol, \
        f"Position: expected ({x}, {y}), got ({vector.x}, {vector.y})"


def sent_types(messages: List[Message]) -> List[str]:
    """Wire keywords of sent messages, in order."""
    return [m.type.value for m in messages]
