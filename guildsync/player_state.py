"""Local player prediction and server correction.

LocalPlayerView holds two positions for the local player:
- ``position``: client-predicted, moved by local input every frame
- ``server_position``: last authoritative position reported by the server

Nothing about the local avatar is meaningful until the first authoritative
position arrives (``has_position``); until then local movement is ignored and
no position updates are sent.
"""
import logging
from dataclasses import dataclass, field
from typing import Sequence, Union

from pygame.math import Vector2

from .constants import DEFAULT_MAP_ID
from .settings import ClientSettings

logger = logging.getLogger(__name__)

Intent = Union[Vector2, Sequence[float]]


@dataclass
class LocalPlayerView:
    """Predicted and authoritative state of the local player."""
    position: Vector2 = field(default_factory=Vector2)
    server_position: Vector2 = field(default_factory=Vector2)
    has_position: bool = False
    map_id: str = DEFAULT_MAP_ID

    def apply_authoritative(self, x: float, y: float) -> bool:
        """Record a server position for the local player.

        The first one also seeds the predicted position. Returns True when this
        was that first position.
        """
        self.server_position.update(x, y)
        if self.has_position:
            return False
        self.position.update(x, y)
        self.has_position = True
        logger.info(f"Initial position received from server: ({x}, {y})")
        return True

    @property
    def divergence(self) -> float:
        """Distance between the prediction and the server position."""
        return self.position.distance_to(self.server_position)

    def reset(self):
        self.position.update(0, 0)
        self.server_position.update(0, 0)
        self.has_position = False
        self.map_id = DEFAULT_MAP_ID


class LocalPredictor:
    """Moves the local player between server updates and corrects drift.

    Correction can be switched off (``correction_enabled``) for a purely
    client-authoritative mode; ``reconcile`` then leaves the prediction alone.
    """

    def __init__(self, view: LocalPlayerView, settings: ClientSettings = None):
        self.view = view
        self.settings = settings or ClientSettings()

    def tick(self, dt: float, intent: Intent) -> bool:
        """Advance the prediction by intent * speed * dt, clamped to the world.

        Returns True if the predicted position changed.
        """
        if not self.view.has_position or dt <= 0:
            return False
        direction = Vector2(intent)
        if direction.length_squared() == 0:
            return False

        before = Vector2(self.view.position)
        self.view.position += direction * self.settings.player_speed * dt
        self._clamp()
        return self.view.position != before

    def _clamp(self):
        s = self.settings
        r = s.player_radius
        pos = self.view.position
        pos.x = max(r, min(pos.x, s.world_width - r))
        pos.y = max(r, min(pos.y, s.world_height - r))

    def correction_factor(self, distance: float) -> float:
        """Blend factor for a given divergence: light, aggressive, or snap (1.0)."""
        s = self.settings
        if distance <= 0:
            return 0.0
        if distance <= s.small_correction_threshold:
            return s.small_correction_blend
        if distance <= s.snap_threshold:
            return s.medium_correction_blend
        return 1.0

    def reconcile(self) -> bool:
        """Pull the prediction toward the server position.

        Small divergence blends a fraction of the gap per call, large
        divergence snaps. Returns True when it snapped.
        """
        view = self.view
        if not self.settings.correction_enabled or not view.has_position:
            return False

        distance = view.divergence
        factor = self.correction_factor(distance)
        if factor <= 0.0:
            return False
        if factor >= 1.0:
            logger.debug(
                f"Position snapped from ({view.position.x:.1f},{view.position.y:.1f}) to "
                f"({view.server_position.x:.1f},{view.server_position.y:.1f}) - error {distance:.1f}"
            )
            view.position.update(view.server_position)
            return True
        view.position.update(view.position.lerp(view.server_position, factor))
        return False
