"""Network client for connecting to the game server.

Usage:
    client = NetworkClient()
    client.on_roster_changed = lambda players: ...
    client.connect('127.0.0.1', 8080, 8081, name='Bob', color='#FF5252')

    # Every frame, from the game loop:
    client.update()
    client.step(dt, movement_intent)
    client.send_chat('hello')

Everything runs on the caller's thread. Sockets are non-blocking, so update()
never waits; callbacks queued while processing fire at the end of update().
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..chat import ChatLog
from ..colors import is_hex_color, normalize_hex
from ..constants import (
    DEFAULT_COLOR_HEX, DEFAULT_HOST, DEFAULT_TCP_PORT, DEFAULT_UDP_PORT, SPAWN_SENTINEL,
)
from ..player_state import Intent, LocalPlayerView, LocalPredictor
from ..roster import RemotePlayer, RosterChange, RosterReconciler
from ..settings import ClientSettings
from .protocol import (
    Message, MessageType, ParseError, LineFrameReader, decode,
    msg_handshake, msg_position, msg_chat, msg_register_unreliable,
    msg_map_change, msg_ping,
)
from .session import PendingHandshake, ServerSession
from .transport import AddressResolver, TransportError, TransportPair

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Client connection state."""
    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    FAILED = auto()


# Status strings shown to the user
STATUS_NOT_CONNECTED = "Not connected"
STATUS_CONNECTING = "Connecting to server..."
STATUS_WAITING = "Waiting for connection..."
STATUS_CONNECTED = "Connected to server"
STATUS_DISCONNECTED = "Disconnected from server"
STATUS_TIMED_OUT = "Connection to server timed out"
STATUS_PEER_CLOSED = "Server closed the connection"
STATUS_LOST = "Connection to server lost"
STATUS_CONNECT_TIMEOUT = "Connection attempt timed out"
STATUS_HANDSHAKE_TIMEOUT = "Handshake not acknowledged by server"
STATUS_RESOLVE_FAILED = "Failed to resolve server address"


@dataclass
class NetworkClient:
    """Connection supervisor for the multiplayer client.

    Drives the connection state machine, pumps both channels through the
    codec, reconciles the roster and exposes the latest state to the host.
    """

    settings: ClientSettings = field(default_factory=ClientSettings)

    # Injection points (tests replace these)
    transport_factory: Callable[[], Any] = TransportPair
    resolver_factory: Callable[[str], Any] = AddressResolver
    clock: Callable[[], float] = time.monotonic

    # Connection
    host: str = ""
    tcp_port: int = 0
    udp_port: int = 0

    # State
    state: ConnectionState = ConnectionState.DISCONNECTED
    status_message: str = STATUS_NOT_CONNECTED

    # Callbacks (called at the end of update(), on the caller's thread)
    on_state_changed: Optional[Callable[[ConnectionState, str], None]] = None
    on_roster_changed: Optional[Callable[[Mapping], None]] = None
    on_position: Optional[Callable[[str, float, float], None]] = None
    on_position_corrected: Optional[Callable[[float, float], None]] = None
    on_chat: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[str], None]] = None

    def __post_init__(self):
        self.session = ServerSession()
        self.local_player = LocalPlayerView()
        self.roster = RosterReconciler(self.local_player, self.session)
        self.predictor = LocalPredictor(self.local_player, self.settings)
        self.chat = ChatLog(max_messages=self.settings.max_chat_messages)

        self._transport = None
        self._resolver = None
        self._frame_reader = LineFrameReader()
        self._pending_handshake: Optional[PendingHandshake] = None
        self._preferred_color = DEFAULT_COLOR_HEX

        # Timers (clock() seconds)
        self._connect_started = 0.0
        self._last_inbound = 0.0
        self._last_ping = 0.0
        self._handshake_sent_at: Optional[float] = None

        # Unreliable registration burst
        self._registration_left = 0
        self._next_registration = 0.0
        self.udp_registered = False

        self._last_sent_position: Optional[Tuple[float, float]] = None
        self._callbacks: List[Tuple[Callable, tuple]] = []

    # =========================================================================
    # PUBLIC API (called from the frame thread)
    # =========================================================================

    @property
    def players(self) -> Mapping:
        """Read-only view of remote players by id."""
        return self.roster.players

    @property
    def chat_messages(self) -> List[str]:
        return list(self.chat.messages)

    @property
    def player_id(self) -> str:
        return self.session.player_id

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    @property
    def ready_to_render(self) -> bool:
        """True once the local avatar has an authoritative position."""
        return self.local_player.has_position

    def connect(self, host: str = DEFAULT_HOST, tcp_port: int = DEFAULT_TCP_PORT,
                udp_port: int = DEFAULT_UDP_PORT,
                name: Optional[str] = None, color: Optional[str] = None) -> bool:
        """Start connecting (non-blocking). Returns False if already busy or failed."""
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return False

        self._reset()
        self.host = host
        self.tcp_port = tcp_port
        self.udp_port = udp_port
        self._connect_started = self.clock()
        self._last_inbound = self._connect_started
        if name is not None:
            self.send_handshake(name, color if color is not None else self._preferred_color)

        self._set_state(ConnectionState.CONNECTING, STATUS_CONNECTING)
        logger.info(f"Connecting to {host}:{tcp_port} (udp {udp_port})")

        self._resolver = self.resolver_factory(host)
        self._check_resolver()
        return self.state != ConnectionState.FAILED

    def send_handshake(self, name: str, color: Optional[str] = None) -> bool:
        """Send the handshake now if connected, otherwise hold it until we are."""
        color = normalize_hex(color) if color is not None else self._preferred_color
        self._preferred_color = color
        self._pending_handshake = PendingHandshake(name=name, color=color)
        if self.state == ConnectionState.CONNECTED:
            return self._flush_handshake()
        return True

    def set_color(self, color: str) -> bool:
        """Choose the color offered in the handshake.

        Once the server has assigned a color its choice wins, so this returns
        False after the handshake was acknowledged.
        """
        if not is_hex_color(color):
            return False
        self._preferred_color = normalize_hex(color)
        if self._pending_handshake is not None:
            self._pending_handshake.color = self._preferred_color
        return not self.session.is_established

    def disconnect(self, reason: str = STATUS_DISCONNECTED):
        """Close both channels and drop all session state. Idempotent."""
        was = self.state
        self._close_transport()
        self._reset()
        self.state = ConnectionState.DISCONNECTED
        self.status_message = reason
        if was != ConnectionState.DISCONNECTED:
            logger.info(f"Disconnected: {reason}")
            self._queue(self.on_state_changed, self.state, reason)

    def send_position_update(self, x: float, y: float) -> bool:
        """Send our position. Refused until the server gave us a first position."""
        if not self.is_connected or not self.session.is_established:
            return False
        if not self.local_player.has_position:
            return False
        return self._send_position(x, y)

    def send_chat(self, text: str) -> bool:
        if not text or not self.is_connected:
            return False
        return self._send_reliable(msg_chat(text))

    def change_map(self, map_id: str) -> bool:
        """Ask the server to move us to another map/zone."""
        if not map_id or not self.is_connected:
            return False
        if self._send_reliable(msg_map_change(map_id)):
            self.local_player.map_id = map_id
            return True
        return False

    def step(self, dt: float, intent: Intent) -> bool:
        """Frame helper: predict, correct, then send the position if it moved.

        Returns True if a position update was sent.
        """
        self.predictor.tick(dt, intent)
        if self.predictor.reconcile():
            pos = self.local_player.position
            self._queue(self.on_position_corrected, pos.x, pos.y)
        if not self.local_player.has_position:
            return False

        pos = self.local_player.position
        current = (round(pos.x, 2), round(pos.y, 2))
        if current == self._last_sent_position:
            return False
        return self.send_position_update(pos.x, pos.y)

    def update(self):
        """Process network traffic and timers. Call once per frame."""
        now = self.clock()

        if self.state == ConnectionState.CONNECTING:
            self._update_connecting(now)

        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._pump(now)

        if self.state == ConnectionState.CONNECTED:
            self._update_connected(now)

        if self._transport is not None and not self._transport.flush():
            if self.state == ConnectionState.CONNECTED:
                self._drop(STATUS_LOST)

        self._dispatch_callbacks()

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def _update_connecting(self, now: float):
        if self._transport is None:
            self._check_resolver()
            if self.state != ConnectionState.CONNECTING:
                return

        if self._transport is not None:
            try:
                ready = self._transport.is_write_ready()
            except TransportError as e:
                self._fail(str(e))
                return
            if ready:
                self._on_connected(now)
                return

        elapsed = now - self._connect_started
        if elapsed > self.settings.connect_timeout:
            logger.warning(f"Connection timed out after {elapsed:.1f} seconds")
            self._fail(STATUS_CONNECT_TIMEOUT)

    def _check_resolver(self):
        """Open the channels once the server address is known."""
        if self._resolver is None or not self._resolver.poll():
            return
        resolver, self._resolver = self._resolver, None
        if resolver.address is None:
            logger.error(f"Failed to resolve {self.host}: {resolver.error}")
            self._fail(STATUS_RESOLVE_FAILED)
            return

        transport = self.transport_factory()
        try:
            transport.connect_unreliable((resolver.address, self.udp_port))
            transport.connect_reliable((resolver.address, self.tcp_port))
        except TransportError as e:
            transport.close()
            logger.error(f"Connect failed: {e}")
            self._fail(str(e))
            return
        self._transport = transport
        self.status_message = STATUS_WAITING

    def _on_connected(self, now: float):
        self._last_inbound = now
        self._last_ping = now
        self._set_state(ConnectionState.CONNECTED, STATUS_CONNECTED)
        logger.info(f"Connected to {self.host}:{self.tcp_port}")
        if self._pending_handshake is not None:
            self._flush_handshake()
        elif self.session.is_established and self._last_sent_position is None:
            # Ack beat the writability signal; the spawn request could not go out
            self._send_position(*SPAWN_SENTINEL)

    def _flush_handshake(self) -> bool:
        pending, self._pending_handshake = self._pending_handshake, None
        if pending is None:
            return False
        logger.info(f"Sending handshake as {pending.name} ({pending.color})")
        sent = self._send_reliable(msg_handshake(pending.name, pending.color))
        if sent:
            self._handshake_sent_at = self.clock()
        return sent

    def _update_connected(self, now: float):
        silence = now - self._last_inbound
        if silence > self.settings.liveness_timeout:
            logger.warning(f"No server activity for {silence:.1f}s, dropping connection")
            self._drop(STATUS_TIMED_OUT)
            return

        if (self._handshake_sent_at is not None and not self.session.is_established
                and now - self._handshake_sent_at > self.settings.connect_timeout):
            logger.warning("Handshake was never acknowledged")
            self._fail(STATUS_HANDSHAKE_TIMEOUT)
            return

        self._update_registration(now)

        if now - self._last_ping >= self.settings.heartbeat_interval:
            self._send_reliable(msg_ping())
            self._last_ping = now

    def _fail(self, reason: str):
        """Recoverable-local or handshake failure: FAILED, session cleared."""
        self._close_transport()
        self._reset()
        self._set_state(ConnectionState.FAILED, reason)

    def _drop(self, reason: str):
        """Session-fatal loss of an established connection."""
        self.disconnect(reason)

    def _set_state(self, state: ConnectionState, message: str):
        self.state = state
        self.status_message = message
        self._queue(self.on_state_changed, state, message)

    def _reset(self):
        """Forget everything tied to one connection attempt."""
        self._resolver = None
        self._frame_reader.clear()
        self._pending_handshake = None
        self._handshake_sent_at = None
        self._registration_left = 0
        self.udp_registered = False
        self._last_sent_position = None
        self.session.reset()
        self.roster.clear()
        self.chat.clear()
        self.local_player.reset()

    def _close_transport(self):
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    # =========================================================================
    # UNRELIABLE REGISTRATION
    # =========================================================================

    def _start_registration(self, now: float):
        self.udp_registered = False
        self._registration_left = self.settings.registration_attempts
        self._next_registration = now
        self._update_registration(now)

    def _update_registration(self, now: float):
        """Send due registration attempts, spaced across frames."""
        if self._registration_left <= 0 or now < self._next_registration:
            return
        if self._transport.send_unreliable(msg_register_unreliable(self.session.player_id).to_bytes()):
            logger.debug(f"UDP registration sent ({self._registration_left} left)")
        self._registration_left -= 1
        self._next_registration = now + self.settings.registration_spacing
        if self._registration_left == 0 and not self.udp_registered:
            # Assume it went through; the server may never confirm
            self.udp_registered = True
            logger.debug("UDP registration burst complete")

    # =========================================================================
    # INBOUND
    # =========================================================================

    def _pump(self, now: float):
        if self._transport is None:
            return

        try:
            chunks = self._transport.poll_reliable()
        except TransportError as e:
            logger.error(f"{e}")
            self._drop(STATUS_LOST)
            return

        for chunk in chunks:
            self._frame_reader.feed(chunk)
            try:
                for line in self._frame_reader.frames():
                    self._handle_frame(line, now)
                    if self._transport is None:
                        return
            except ValueError as e:
                logger.warning(f"Discarding reliable buffer: {e}")

        for _sender, data in self._transport.poll_unreliable():
            text = data.decode('utf-8', errors='replace')
            for line in text.splitlines():
                if line.strip():
                    self._handle_frame(line, now)
                    if self._transport is None:
                        return

        if self._transport.peer_closed:
            logger.info("Server closed the connection")
            self._drop(STATUS_PEER_CLOSED)

    def _handle_frame(self, line: str, now: float):
        result = decode(line)
        # Any inbound frame proves the server is alive, even an unparsable one
        self._last_inbound = now
        if isinstance(result, ParseError):
            logger.warning(f"Dropped malformed frame: {result.reason}")
            return
        self._handle_message(result)

    def _handle_message(self, msg: Message):
        """Apply one decoded server message."""
        p = msg.payload
        logger.debug(f"Received {msg.type.value}: {p!r}")

        if msg.type == MessageType.PONG:
            pass  # Keepalive response, only refreshes liveness

        elif msg.type == MessageType.HANDSHAKE_ACK:
            self._handle_handshake_ack(msg)

        elif msg.type == MessageType.ROSTER:
            change = self.roster.apply_snapshot(p.get_list('players') or [], self.session.player_id)
            self._report_change(change, snapshot=True)

        elif msg.type == MessageType.POSITION:
            player_id = p.get_str('id')
            x = p.get_float('x')
            y = p.get_float('y')
            if player_id is None or x is None or y is None:
                logger.debug(f"Incomplete position update dropped: {p!r}")
                return
            change = self.roster.apply_position_delta(player_id, x, y, self.session.player_id)
            self._report_change(change)
            if change:
                self._queue(self.on_position, player_id, x, y)

        elif msg.type == MessageType.CHAT:
            entry = self.chat.add_message(p.get_str('sender', ""), p.get_str('text', ""))
            self._queue(self.on_chat, entry)

        elif msg.type == MessageType.REGISTER_ACK:
            logger.info("UDP registration confirmed by server")
            self.udp_registered = True
            self._registration_left = 0

        elif msg.type == MessageType.ERROR:
            error = p.get_str('message', "Unknown error")
            logger.warning(f"Server error: {error}")
            self.status_message = f"Server error: {error}"
            self._queue(self.on_error, error)

        else:
            logger.warning(f"Unhandled message type: {msg.type}")

    def _handle_handshake_ack(self, msg: Message):
        p = msg.payload
        player_id = p.get_str('id')
        if not player_id:
            logger.warning("Handshake ack without player id ignored")
            return
        if self.session.is_established:
            logger.debug("Duplicate handshake ack ignored")
            return

        color = normalize_hex(p.get_str('color') or self._preferred_color)
        self.session.establish(player_id, color, p.get_str('token'))
        self._handshake_sent_at = None
        logger.info(f"Handshake acknowledged. Player ID: {player_id}, color: {color}")

        if self.roster.discard(player_id):
            self._queue(self.on_roster_changed, self.roster.players)

        x = p.get_float('x')
        y = p.get_float('y')
        if x is not None and y is not None and self.local_player.apply_authoritative(x, y):
            self._queue(self.on_position, player_id, x, y)

        if self._transport is None:
            return
        self._start_registration(self.clock())
        if self.state != ConnectionState.CONNECTED:
            return
        # Let the server assign a spawn point
        self._send_position(*SPAWN_SENTINEL)

    def _report_change(self, change: RosterChange, snapshot: bool = False):
        if change.roster_changed:
            self._queue(self.on_roster_changed, self.roster.players)
        if change.local_position:
            pos = self.local_player.server_position
            self._queue(self.on_position, self.session.player_id, pos.x, pos.y)
        if snapshot and change.local_color:
            logger.info(f"Server changed our color to {self.session.color}")

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    def _send_reliable(self, msg: Message) -> bool:
        if self._transport is None:
            return False
        if not self._transport.send_reliable(msg.to_bytes()):
            logger.debug(f"Failed to send {msg.type.value}")
            return False
        return True

    def _send_position(self, x: float, y: float) -> bool:
        """Send over UDP once registered, over TCP until then."""
        msg = msg_position(x, y, self.session.player_id)
        if self.udp_registered and self._transport is not None:
            sent = self._transport.send_unreliable(msg.to_bytes())
        else:
            sent = self._send_reliable(msg)
        if sent:
            self._last_sent_position = (msg.payload['x'], msg.payload['y'])
        return sent

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def _queue(self, callback: Optional[Callable], *args):
        if callback is not None:
            self._callbacks.append((callback, args))

    def _dispatch_callbacks(self):
        callbacks, self._callbacks = self._callbacks, []
        for callback, args in callbacks:
            callback(*args)

    def debug_info(self) -> Dict[str, Any]:
        """Plain summary of the client state, for debug overlays and logs."""
        pos = self.local_player.position
        return {
            'state': self.state.name,
            'status': self.status_message,
            'player_id': self.session.player_id,
            'color': self.session.color,
            'position': (pos.x, pos.y) if self.local_player.has_position else None,
            'players': {pid: (p.name, p.x, p.y) for pid, p in self.players.items()},
            'udp_registered': self.udp_registered,
        }


__all__ = ['NetworkClient', 'ConnectionState', 'RemotePlayer']
