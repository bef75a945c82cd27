"""Roster reconciliation: merge server player lists into local state.

The server pushes full snapshots (reliable channel) and single-player position
deltas (usually over the unreliable channel). Entries for the local player go
to the LocalPlayerView; everyone else is a RemotePlayer. A player missing from
a snapshot has left and is removed.
"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional

import pygame
from pygame.math import Vector2

from .colors import color_to_hex, parse_color
from .constants import DEFAULT_MAP_ID
from .network.protocol import Payload
from .network.session import ServerSession
from .player_state import LocalPlayerView

logger = logging.getLogger(__name__)


@dataclass
class RemotePlayer:
    """Another player as last reported by the server."""
    id: str
    name: str = ""
    color: pygame.Color = field(default_factory=lambda: parse_color(None))
    position: Vector2 = field(default_factory=Vector2)
    map_id: str = DEFAULT_MAP_ID
    is_active: bool = True

    @property
    def x(self) -> float:
        return self.position.x

    @property
    def y(self) -> float:
        return self.position.y

    @property
    def color_hex(self) -> str:
        return color_to_hex(self.color)


@dataclass
class RosterChange:
    """Ids touched by one reconcile step."""
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    local_position: bool = False  # authoritative local position changed
    local_color: bool = False     # server changed our color

    @property
    def roster_changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)

    def __bool__(self) -> bool:
        return self.roster_changed or self.local_position or self.local_color


class RosterReconciler:
    """Owns the remote roster and routes local entries to the local view."""

    def __init__(self, local_view: LocalPlayerView, session: Optional[ServerSession] = None):
        self.local_view = local_view
        self.session = session
        self._players: Dict[str, RemotePlayer] = {}

    @property
    def players(self) -> Mapping:
        """Read-only view of remote players by id."""
        return MappingProxyType(self._players)

    def get(self, player_id: str) -> Optional[RemotePlayer]:
        return self._players.get(player_id)

    def __len__(self) -> int:
        return len(self._players)

    def __contains__(self, player_id: str) -> bool:
        return player_id in self._players

    def clear(self):
        self._players.clear()

    def discard(self, player_id: str) -> bool:
        """Drop a player without a snapshot, e.g. once it turns out to be us."""
        return self._players.pop(player_id, None) is not None

    def apply_snapshot(self, entries: Iterable[Any], local_id: str) -> RosterChange:
        """Merge a full player list. Players absent from it are removed."""
        change = RosterChange()
        seen = set()

        for entry in entries:
            raw = entry if isinstance(entry, Payload) else Payload(entry if isinstance(entry, Mapping) else None)
            player_id = raw.get_str('id')
            if not player_id:
                logger.debug(f"Dropping roster entry without id: {raw!r}")
                continue
            seen.add(player_id)

            if local_id and player_id == local_id:
                self._apply_local_entry(raw, change)
                continue

            name = raw.get_str('name')
            color_hex = raw.get_str('color')
            map_id = raw.get_str('map_id') or DEFAULT_MAP_ID
            x = raw.get_float('x')
            y = raw.get_float('y')

            player = self._players.get(player_id)
            if player is None:
                player = RemotePlayer(id=player_id, name=name or "", color=parse_color(color_hex), map_id=map_id)
                if x is not None and y is not None:
                    player.position.update(x, y)
                self._players[player_id] = player
                change.added.append(player_id)
                logger.info(f"Player joined: {player.name} ({player_id})")
                continue

            before = (player.name, player.color_hex, tuple(player.position), player.map_id)
            # Fields missing from a later entry keep their known values
            if name is not None:
                player.name = name
            if color_hex is not None:
                player.color = parse_color(color_hex)
            player.map_id = map_id
            player.is_active = True
            if x is not None and y is not None:
                player.position.update(x, y)
            if before != (player.name, player.color_hex, tuple(player.position), player.map_id):
                change.updated.append(player_id)

        for player_id in [pid for pid in self._players if pid not in seen]:
            player = self._players.pop(player_id)
            player.is_active = False
            change.removed.append(player_id)
            logger.info(f"Removing disconnected player: {player.name} ({player_id})")

        return change

    def _apply_local_entry(self, raw: Payload, change: RosterChange):
        x = raw.get_float('x')
        y = raw.get_float('y')
        if x is not None and y is not None:
            self._set_local_position(x, y, change)

        color = raw.get_str('color')
        if self.session is not None and color is not None:
            if self.session.update_color(color_to_hex(parse_color(color))):
                change.local_color = True

        map_id = raw.get_str('map_id')
        if map_id:
            self.local_view.map_id = map_id

    def _set_local_position(self, x: float, y: float, change: RosterChange):
        view = self.local_view
        if view.has_position and view.server_position == (x, y):
            return
        view.apply_authoritative(x, y)
        change.local_position = True

    def apply_position_delta(self, player_id: str, x: float, y: float, local_id: str) -> RosterChange:
        """Update one player's position in place.

        For the local player only the authoritative position moves; the
        prediction is left for reconcile() to correct. Unknown remote ids are
        ignored until a snapshot introduces them.
        """
        change = RosterChange()
        if local_id and player_id == local_id:
            self._set_local_position(x, y, change)
            return change

        player = self._players.get(player_id)
        if player is None:
            logger.debug(f"Position for unknown player {player_id} ignored")
            return change
        if player.position != (x, y):
            player.position.update(x, y)
            change.updated.append(player_id)
        return change
