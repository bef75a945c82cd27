"""Network synchronization layer for the Guild Master multiplayer client."""

from .version import __version__
