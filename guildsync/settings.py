"""Client settings - loads tuning values from the user's settings file.

Settings are read once at startup and never written back.
"""
import json
import logging
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Union

from . import constants

logger = logging.getLogger(__name__)

# Settings file location (in user's home directory)
SETTINGS_DIR = Path.home() / ".guildsync"
SETTINGS_FILE = SETTINGS_DIR / "settings.json"


@dataclass
class ClientSettings:
    """Timing, prediction and correction tuning for the network client.

    Correction is on by default. The server echoes our own position about one
    round trip late, so while moving the prediction is held a few units
    (roughly ``small_correction_threshold``) behind where input alone would put
    it, and it settles once movement stops. Set ``correction_enabled`` to False
    for a client-authoritative mode in which reconcile() never moves the local
    avatar.
    """

    # Supervision (seconds)
    connect_timeout: float = constants.CONNECT_TIMEOUT
    liveness_timeout: float = constants.LIVENESS_TIMEOUT
    heartbeat_interval: float = constants.HEARTBEAT_INTERVAL

    # Unreliable channel registration burst
    registration_attempts: int = constants.REGISTRATION_ATTEMPTS
    registration_spacing: float = constants.REGISTRATION_SPACING

    # Chat
    max_chat_messages: int = constants.MAX_CHAT_MESSAGES

    # Local movement
    player_speed: float = constants.PLAYER_SPEED
    player_radius: float = constants.PLAYER_RADIUS
    world_width: float = constants.WORLD_WIDTH
    world_height: float = constants.WORLD_HEIGHT

    # Server correction of the predicted position
    correction_enabled: bool = constants.CORRECTION_ENABLED
    small_correction_threshold: float = constants.SMALL_CORRECTION_THRESHOLD
    small_correction_blend: float = constants.SMALL_CORRECTION_BLEND
    snap_threshold: float = constants.SNAP_THRESHOLD
    medium_correction_blend: float = constants.MEDIUM_CORRECTION_BLEND

    def __post_init__(self):
        if self.registration_attempts < 1:
            raise ValueError("registration_attempts must be at least 1")
        if self.small_correction_threshold > self.snap_threshold:
            raise ValueError("small_correction_threshold must not exceed snap_threshold")
        for name in ('small_correction_blend', 'medium_correction_blend'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClientSettings':
        """Build settings from a dict, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Unknown setting ignored: {key}")
                continue
            kwargs[key] = _coerce(known[key].type, key, value)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(annotation: Any, key: str, value: Any) -> Any:
    """Convert a JSON value to the annotated type of a settings field."""
    if annotation in (bool, 'bool'):
        if not isinstance(value, bool):
            raise ValueError(f"Setting {key} must be true or false")
        return value
    if annotation in (int, 'int'):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Setting {key} must be an integer")
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Setting {key} must be a number")
    return float(value)


def load_settings(path: Optional[Union[str, Path]] = None) -> ClientSettings:
    """Load settings from file, or return defaults if the file is missing or bad."""
    settings_file = Path(path) if path is not None else SETTINGS_FILE
    try:
        if settings_file.exists():
            with open(settings_file, 'r', encoding='utf-8') as f:
                saved = json.load(f)
            if not isinstance(saved, dict):
                raise ValueError("settings file must contain a JSON object")
            settings = ClientSettings.from_dict(saved)
            logger.info(f"Settings loaded from {settings_file}")
            return settings
        logger.debug(f"Settings file not found at {settings_file}, using defaults")
    except (ValueError, OSError) as e:
        logger.warning(f"Failed to load settings from {settings_file}: {e}")
    return ClientSettings()
