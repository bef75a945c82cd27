"""Color exchange: ``#RRGGBB`` strings on the wire, ``pygame.Color`` locally."""
import logging
import string
from typing import Any

import pygame

from .constants import DEFAULT_COLOR_HEX

logger = logging.getLogger(__name__)

DEFAULT_COLOR = pygame.Color(DEFAULT_COLOR_HEX)

_HEX_DIGITS = set(string.hexdigits)


def is_hex_color(value: Any) -> bool:
    """True for a 7-character ``#RRGGBB`` string."""
    return (
        isinstance(value, str)
        and len(value) == 7
        and value[0] == '#'
        and all(c in _HEX_DIGITS for c in value[1:])
    )


def parse_color(value: Any) -> pygame.Color:
    """Parse ``#RRGGBB``, falling back to pure red."""
    if not is_hex_color(value):
        if value:
            logger.debug(f"Unparsable color {value!r}, using default")
        return pygame.Color(DEFAULT_COLOR)
    return pygame.Color(value)


def color_to_hex(color: pygame.Color) -> str:
    """Format a color as uppercase ``#RRGGBB`` (alpha is dropped)."""
    return f"#{color.r:02X}{color.g:02X}{color.b:02X}"


def normalize_hex(value: Any) -> str:
    """Round-trip a wire color through parsing, e.g. ``#ff5252`` -> ``#FF5252``."""
    return color_to_hex(parse_color(value))
