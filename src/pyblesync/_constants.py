"""Internal constants shared across the library."""

# ------------------------------------------------------------------
# Advertisement layout  (mask || payload || trailer)
# ------------------------------------------------------------------

NEIGHBOR_MASK: bytes = b"\xff" * 13
PROFILE_MASK: bytes = b"\x00" * 27
TRAILER_LENGTH = 1
NEIGHBOR_PAYLOAD_LENGTH = 15
PROFILE_PAYLOAD_LENGTH = 1

NEIGHBOR_SLOTS = 5
TARGET_RECEPTION_COUNT = 100
PRESSURE_SCALE = 0.01

# Signal value written into packets whose device went silent.
LOST_SIGNAL_RSSI = -199

# ------------------------------------------------------------------
# Timing defaults (seconds)
# ------------------------------------------------------------------

DEBOUNCE_WINDOW = 0.3
STALE_THRESHOLD = 5.0
SWEEP_INTERVAL = 2.0
DISCOVERY_TIMEOUT = 5.0
IDLE_ROTATION = 1800.0
RECONNECT_DELAY = 3.0
MAX_RECONNECT_ATTEMPTS = 5
PROBE_INTERVAL = 5.0
FLUSH_DELAY = 0.1
CONNECT_TIMEOUT = 10.0

CAPTURE_CAPACITY = 30

SUGGESTION_TYPES = ("mask", "data")

# ------------------------------------------------------------------
# Wire formats
# ------------------------------------------------------------------

LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TEST_TOKEN_FORMAT = "%Y%m%d_%H%M%S"
