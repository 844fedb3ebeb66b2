"""Internal constants shared across the library."""

# Cosmetic body spin (radians/second) per quantized moveState 0..3.
MOVE_STATE_SPIN_RATES: tuple[float, ...] = (0.0, 0.35, 0.75, 1.3)
MAX_MOVE_STATE = len(MOVE_STATE_SPIN_RATES) - 1

DEFAULT_USERNAME = "Anonymous"
REMOTE_FALLBACK_USERNAME = "Player"
DEFAULT_COLOR = "#ffffff"

# Wire field written by the store on every write/merge (epoch milliseconds).
SERVER_TIMESTAMP_FIELD = "ts"

# Ephemeral fields cleared by a transactional clear.
CHAT_FIELD = "chat"
MESSAGE_ID_FIELD = "messageId"
EPHEMERAL_CHAT_FIELDS: tuple[str, ...] = (CHAT_FIELD, MESSAGE_ID_FIELD)

PROJECTILE_EVENT_TYPE = "projectile"
