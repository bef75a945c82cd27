"""Protocol, timing and world constants."""


# Network defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_TCP_PORT = 8080
DEFAULT_UDP_PORT = 8081
RECV_BUFFER_SIZE = 4096
MAX_DATAGRAM_SIZE = 65536

# Connection supervision (seconds, wall clock)
CONNECT_TIMEOUT = 10.0
LIVENESS_TIMEOUT = 15.0
HEARTBEAT_INTERVAL = 5.0

# Unreliable channel registration burst (first packet is often lost)
REGISTRATION_ATTEMPTS = 4
REGISTRATION_SPACING = 0.05

# Position request that lets the server pick a spawn point
SPAWN_SENTINEL = (0.0, 0.0)

# Chat
MAX_CHAT_MESSAGES = 50

# World / local movement
WORLD_WIDTH = 800
WORLD_HEIGHT = 600
PLAYER_RADIUS = 20.0
PLAYER_SPEED = 200.0  # units per second
DEFAULT_MAP_ID = "default"

# Correction tiers (distance in world units)
CORRECTION_ENABLED = True
SMALL_CORRECTION_THRESHOLD = 5.0
SMALL_CORRECTION_BLEND = 0.1
SNAP_THRESHOLD = 15.0
MEDIUM_CORRECTION_BLEND = 0.4

# Colors
DEFAULT_COLOR_HEX = "#FF0000"  # used whenever a color fails to parse
