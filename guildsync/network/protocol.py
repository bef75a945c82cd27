"""Network protocol: message types, framing, serialization.

Wire format (one frame per line, UTF-8):
    KEYWORD {json payload}\n
    KEYWORD\n                  (commands without payload: PING, PONG, ...)

Older servers also emit legacy frames, which decode to the same messages:
    {"type": "CHAT", "sender": "Alice", "message": "hi"}
    CONFIG:<id>:<color>
    CHAT:<sender>:<text>
    PLAYERS:<id>:<name>:<color>:<x>:<y>|<id>:...
    POSITION:<id>:<x>:<y>

and a few keyword variants:
    CONNECT {"player": {...}, "token": "..."}   login reply, same as CONFIG
    POS {...}                                   same as POSITION
    ERROR <plain text>

Decoding never raises: a bad frame yields a ParseError value and leaves the
decoding of later frames untouched.
"""

import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

from ..constants import DEFAULT_MAP_ID


class MessageType(Enum):
    """Network message types. Values are the canonical wire keywords."""
    # Connection
    HANDSHAKE = "CONNECT"               # Client → Server: name + color
    HANDSHAKE_ACK = "CONFIG"            # Server → Client: id, color, token, spawn

    # World
    ROSTER = "PLAYERS"                  # Server → Client: full player list
    POSITION = "POSITION"               # Both: single player position
    MAP_CHANGE = "MAP_CHANGE"           # Client → Server: switch map/zone

    # Social
    CHAT = "CHAT"                       # Both: chat line

    # Unreliable channel
    REGISTER_UNRELIABLE = "UDP_REGISTER"  # Client → Server (UDP): our id
    REGISTER_ACK = "UDP_REGISTERED"       # Server → Client: registration confirmed

    # Health
    PING = "PING"                       # Client → Server: keepalive
    PONG = "PONG"                       # Server → Client: keepalive response

    # Errors
    ERROR = "ERROR"                     # Server → Client: error message


# Keywords used by other server revisions
KEYWORD_ALIASES = {
    "GAME_STATE": MessageType.ROSTER,
    "UDP_REG": MessageType.REGISTER_UNRELIABLE,
    "POS": MessageType.POSITION,
}

_KEYWORDS = {t.value: t for t in MessageType}
_KEYWORDS.update(KEYWORD_ALIASES)

_KEYWORD_RE = re.compile(r'^[A-Z][A-Z_]*$')


def lookup_keyword(keyword: str) -> Optional[MessageType]:
    """Map a wire keyword (or alias) to its MessageType."""
    return _KEYWORDS.get(keyword)


def _inbound_type(msg_type: MessageType, data: Mapping) -> MessageType:
    """Servers that reuse CONNECT for the login reply send an identity, not a name."""
    if msg_type == MessageType.HANDSHAKE and any(
            key in data for key in ('player', 'id', 'playerId', 'player_id', 'token')):
        return MessageType.HANDSHAKE_ACK
    return msg_type


# =============================================================================
# PAYLOAD - read-only view over a decoded map with fallible accessors
# =============================================================================

class Payload(Mapping):
    """String-keyed payload map.

    Accessors return None (or the given default) on absence or a wrong value
    type instead of raising, so malformed input degrades per field.
    """

    def __init__(self, data: Optional[Mapping] = None):
        self._data: Dict[str, Any] = dict(data) if data else {}

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Payload({self._data!r})"

    def __eq__(self, other) -> bool:
        if isinstance(other, Payload):
            return self._data == other._data
        if isinstance(other, Mapping):
            return self._data == dict(other)
        return NotImplemented

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        value = self._data.get(key)
        if isinstance(value, str):
            return value
        # Ids are sometimes sent as numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return default

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        value = self._data.get(key)
        if isinstance(value, bool):
            return default
        if isinstance(value, (int, float)):
            try:
                result = float(value)
            except OverflowError:
                return default
        elif isinstance(value, str):
            try:
                result = float(value)
            except ValueError:
                return default
        else:
            return default
        if math.isnan(result) or math.isinf(result):
            return default
        return result

    def get_map(self, key: str) -> Optional['Payload']:
        value = self._data.get(key)
        if isinstance(value, Payload):
            return value
        if isinstance(value, Mapping):
            return Payload(value)
        return None

    def get_list(self, key: str) -> Optional[List[Any]]:
        value = self._data.get(key)
        if isinstance(value, (list, tuple)):
            return list(value)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return dict(self._data)


@dataclass
class Message:
    """Network message: a command with its canonical payload."""
    type: MessageType
    payload: Payload = field(default_factory=Payload)

    def to_line(self) -> str:
        return encode(self.type, self.payload.to_dict())

    def to_bytes(self) -> bytes:
        """Serialize message to a newline-terminated UTF-8 frame."""
        return self.to_line().encode('utf-8')


@dataclass(frozen=True)
class ParseError:
    """Why a frame could not be decoded. Returned, never raised."""
    reason: str
    frame: str = ""

    def __bool__(self) -> bool:
        return False


DecodeResult = Union[Message, ParseError]


# =============================================================================
# ENCODING
# =============================================================================

def encode(command: MessageType, payload: Optional[Mapping] = None) -> str:
    """Encode a command and payload into one newline-terminated frame."""
    if not payload:
        return f"{command.value}\n"
    body = json.dumps(dict(payload), ensure_ascii=False, separators=(',', ':'))
    return f"{command.value} {body}\n"


# =============================================================================
# DECODING
# =============================================================================

def decode(frame: Union[str, bytes]) -> DecodeResult:
    """Decode one frame, trying the structured form first, then legacy forms."""
    if isinstance(frame, (bytes, bytearray)):
        frame = bytes(frame).decode('utf-8', errors='replace')
    line = frame.strip()
    if not line:
        return ParseError("empty frame", frame)

    result = _decode_structured(line)
    if isinstance(result, Message):
        return result

    legacy = _decode_legacy(line)
    if isinstance(legacy, Message):
        return legacy
    return ParseError(f"{result.reason}; legacy: {legacy.reason}", line)


def _decode_structured(line: str) -> DecodeResult:
    keyword, _, body = line.partition(' ')
    if not _KEYWORD_RE.match(keyword):
        return ParseError(f"bad keyword {keyword[:32]!r}", line)
    msg_type = lookup_keyword(keyword)
    if msg_type is None:
        return ParseError(f"unknown command {keyword}", line)

    body = body.strip()
    if not body:
        return Message(msg_type, normalize_payload(msg_type, {}))

    try:
        data = json.loads(body)
    except (ValueError, RecursionError) as e:
        if msg_type == MessageType.ERROR:
            # Some servers send the error text unquoted: ERROR Internal server error
            return Message(msg_type, Payload({'message': body}))
        return ParseError(f"invalid JSON payload: {e}", line)

    if isinstance(data, list):
        if msg_type != MessageType.ROSTER:
            return ParseError(f"{keyword} payload must be an object", line)
        data = {'players': data}
    elif not isinstance(data, dict) and msg_type == MessageType.ERROR:
        data = {'message': data if isinstance(data, str) else body}
    elif not isinstance(data, dict):
        return ParseError(f"{keyword} payload must be an object", line)

    msg_type = _inbound_type(msg_type, data)
    return Message(msg_type, normalize_payload(msg_type, data))


def _decode_legacy(line: str) -> DecodeResult:
    if line.startswith('{'):
        return _decode_legacy_envelope(line)

    head, sep, rest = line.partition(':')
    if not sep:
        # Bare keywords; the registration ack may carry trailing text
        if line == MessageType.PONG.value:
            return Message(MessageType.PONG)
        if line.startswith(MessageType.REGISTER_ACK.value):
            return Message(MessageType.REGISTER_ACK)
        return ParseError("not a legacy frame", line)

    msg_type = lookup_keyword(head)
    if msg_type == MessageType.HANDSHAKE_ACK:
        player_id, sep, color = rest.partition(':')
        if not player_id or not sep:
            return ParseError("legacy CONFIG needs id:color", line)
        return Message(msg_type, Payload({'id': player_id, 'color': color}))

    if msg_type == MessageType.CHAT:
        sender, sep, text = rest.partition(':')
        if not sep:
            sender, text = "", rest
        if text.startswith(' '):
            text = text[1:]
        return Message(msg_type, Payload({'sender': sender, 'text': text}))

    if msg_type == MessageType.ROSTER:
        players = []
        for chunk in rest.split('|'):
            fields = chunk.split(':')
            if len(fields) != 5:
                continue
            player_id, name, color, x, y = fields
            players.append({
                'id': player_id, 'name': name, 'color': color,
                'x': x, 'y': y, 'map_id': DEFAULT_MAP_ID,
            })
        return Message(msg_type, normalize_payload(msg_type, {'players': players}))

    if msg_type == MessageType.POSITION:
        fields = rest.split(':')
        if len(fields) != 3:
            return ParseError("legacy POSITION needs id:x:y", line)
        player_id, x, y = fields
        return Message(msg_type, normalize_payload(msg_type, {'id': player_id, 'x': x, 'y': y}))

    if msg_type in (MessageType.PONG, MessageType.REGISTER_ACK):
        return Message(msg_type)

    return ParseError(f"unknown legacy command {head[:32]!r}", line)


def _decode_legacy_envelope(line: str) -> DecodeResult:
    try:
        data = json.loads(line)
    except (ValueError, RecursionError) as e:
        return ParseError(f"invalid JSON envelope: {e}", line)
    if not isinstance(data, dict):
        return ParseError("JSON envelope must be an object", line)
    kind = data.pop('type', None)
    msg_type = lookup_keyword(kind) if isinstance(kind, str) else None
    if msg_type is None:
        return ParseError(f"unknown envelope type {kind!r}", line)
    msg_type = _inbound_type(msg_type, data)
    return Message(msg_type, normalize_payload(msg_type, data))


# =============================================================================
# NORMALIZATION - unify field names across server revisions
# =============================================================================

def normalize_payload(msg_type: MessageType, data: Mapping) -> Payload:
    """Rewrite a decoded map into the canonical payload for msg_type."""
    raw = Payload(data)
    normalizer = _NORMALIZERS.get(msg_type)
    if normalizer is None:
        return raw
    return Payload(normalizer(raw))


def _first_str(raw: Payload, *keys: str) -> Optional[str]:
    for key in keys:
        value = raw.get_str(key)
        if value is not None:
            return value
    return None


def _position_fields(raw: Payload) -> Dict[str, float]:
    """Pick x/y from the top level or from a nested ``position`` map."""
    source = raw
    nested = raw.get_map('position')
    if raw.get_float('x') is None and nested is not None:
        source = nested
    x = source.get_float('x')
    y = source.get_float('y')
    if x is None or y is None:
        return {}
    return {'x': x, 'y': y}


def _normalize_player_entry(entry: Any) -> Dict[str, Any]:
    if not isinstance(entry, Mapping):
        return {}
    raw = Payload(entry)
    result: Dict[str, Any] = {}
    player_id = _first_str(raw, 'id', 'playerId', 'player_id')
    if player_id is not None:
        result['id'] = player_id
    name = _first_str(raw, 'name', 'user')
    if name is not None:
        result['name'] = name
    color = raw.get_str('color')
    if color is not None:
        result['color'] = color
    result.update(_position_fields(raw))
    result['map_id'] = _first_str(raw, 'map_id', 'mapId') or DEFAULT_MAP_ID
    return result


def _normalize_handshake(raw: Payload) -> Dict[str, Any]:
    return {
        'name': _first_str(raw, 'name', 'user') or "",
        'color': raw.get_str('color') or "",
    }


def _normalize_handshake_ack(raw: Payload) -> Dict[str, Any]:
    # Newer servers nest the player record: {"player": {...}, "token": "..."}
    player = raw.get_map('player') or raw
    result: Dict[str, Any] = {}
    player_id = _first_str(player, 'id', 'playerId', 'player_id')
    if player_id is None:
        player_id = _first_str(raw, 'id', 'playerId', 'player_id')
    if player_id is not None:
        result['id'] = player_id
    color = player.get_str('color') or raw.get_str('color')
    if color is not None:
        result['color'] = color
    token = raw.get_str('token')
    if token:
        result['token'] = token
    position = _position_fields(player) or _position_fields(raw)
    result.update(position)
    return result


def _normalize_roster(raw: Payload) -> Dict[str, Any]:
    entries = raw.get_list('players') or []
    return {'players': [_normalize_player_entry(e) for e in entries]}


def _normalize_position(raw: Payload) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    player_id = _first_str(raw, 'id', 'playerId', 'player_id')
    if player_id:
        result['id'] = player_id
    result.update(_position_fields(raw))
    map_id = _first_str(raw, 'map_id', 'mapId')
    if map_id:
        result['map_id'] = map_id
    return result


def _normalize_chat(raw: Payload) -> Dict[str, Any]:
    return {
        'sender': _first_str(raw, 'sender', 'player_name', 'name') or "",
        'text': _first_str(raw, 'text', 'message') or "",
    }


def _normalize_register(raw: Payload) -> Dict[str, Any]:
    player_id = _first_str(raw, 'id', 'playerId', 'player_id')
    return {'id': player_id} if player_id else {}


def _normalize_error(raw: Payload) -> Dict[str, Any]:
    return {'message': _first_str(raw, 'message', 'error') or "Unknown error"}


def _normalize_map_change(raw: Payload) -> Dict[str, Any]:
    map_id = _first_str(raw, 'map_id', 'mapId')
    return {'map_id': map_id} if map_id else {}


_NORMALIZERS = {
    MessageType.HANDSHAKE: _normalize_handshake,
    MessageType.HANDSHAKE_ACK: _normalize_handshake_ack,
    MessageType.ROSTER: _normalize_roster,
    MessageType.POSITION: _normalize_position,
    MessageType.CHAT: _normalize_chat,
    MessageType.REGISTER_UNRELIABLE: _normalize_register,
    MessageType.ERROR: _normalize_error,
    MessageType.MAP_CHANGE: _normalize_map_change,
    MessageType.PING: lambda raw: {},
    MessageType.PONG: lambda raw: {},
    MessageType.REGISTER_ACK: lambda raw: {},
}


# =============================================================================
# FRAME READER - reassembles newline-delimited frames from a byte stream
# =============================================================================

class LineFrameReader:
    """Reads newline-delimited frames from a stream.

    Usage:
        reader = LineFrameReader()
        reader.feed(data_from_socket)
        for line in reader.frames():
            result = decode(line)
    """

    MAX_FRAME_SIZE = 64 * 1024  # longest unterminated line we buffer

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, data: bytes):
        """Add received data to buffer."""
        self._buffer.extend(data)

    def get_frame(self) -> Optional[str]:
        """Extract next complete line, or None if incomplete."""
        while True:
            idx = self._buffer.find(b'\n')
            if idx < 0:
                if len(self._buffer) > self.MAX_FRAME_SIZE:
                    size = len(self._buffer)
                    self._buffer.clear()
                    raise ValueError(f"Frame too large: {size} bytes without newline")
                return None
            raw = bytes(self._buffer[:idx])
            del self._buffer[:idx + 1]
            line = raw.decode('utf-8', errors='replace').rstrip('\r')
            if line.strip():
                return line

    def frames(self) -> Iterator[str]:
        """Yield every complete line currently buffered."""
        while True:
            frame = self.get_frame()
            if frame is None:
                return
            yield frame

    def clear(self):
        self._buffer.clear()

    @property
    def pending(self) -> int:
        """Bytes of the partial trailing fragment."""
        return len(self._buffer)


# =============================================================================
# MESSAGE BUILDERS - convenience functions for creating messages
# =============================================================================

def msg_handshake(name: str, color: str) -> Message:
    """Client handshake with display name and #RRGGBB color."""
    return Message(MessageType.HANDSHAKE, Payload({'name': name, 'color': color}))


def msg_position(x: float, y: float, player_id: str = "") -> Message:
    """Position update, rounded to 2 decimals."""
    data: Dict[str, Any] = {}
    if player_id:
        data['id'] = player_id
    data['x'] = round(float(x), 2)
    data['y'] = round(float(y), 2)
    return Message(MessageType.POSITION, Payload(data))


def msg_chat(text: str) -> Message:
    """Outgoing chat line. The server fills in the sender."""
    return Message(MessageType.CHAT, Payload({'message': text}))


def msg_register_unreliable(player_id: str) -> Message:
    """Unreliable channel registration, sent over UDP."""
    return Message(MessageType.REGISTER_UNRELIABLE, Payload({'id': player_id}))


def msg_map_change(map_id: str) -> Message:
    """Request to move to another map/zone."""
    return Message(MessageType.MAP_CHANGE, Payload({'map_id': map_id}))


def msg_ping() -> Message:
    """Keepalive ping."""
    return Message(MessageType.PING)
