"""Constants for the Pulpit gateway.

Protocol-wide defaults shared by the socket handler, router and scheduler.
"""

APP_NAME = "Pulpit"

DEFAULT_PORT = 26547
DEFAULT_WS_PATH = "/ws"

# Unauthenticated connections are closed after this many seconds
AUTH_TIMEOUT_SECONDS = 10.0

HEARTBEAT_INTERVAL_SECONDS = 30.0
STALE_HEARTBEAT_INTERVALS = 2
"""A session whose last heartbeat predates this many probe intervals is evicted."""

# Execution timeouts (seconds); the caller layer clamps to [MIN, MAX]
DEFAULT_EXECUTION_TIMEOUT_SECONDS = 30.0
MIN_EXECUTION_TIMEOUT_SECONDS = 1.0
MAX_EXECUTION_TIMEOUT_SECONDS = 300.0

SCHEDULER_POLL_INTERVAL_SECONDS = 10.0

# Application close codes (RFC 6455 private range 4000-4999)
WS_CLOSE_AUTH_TIMEOUT = 4001
WS_CLOSE_AUTH_TIMEOUT_REASON = "Authentication timeout"
WS_CLOSE_INVALID_TOKEN = 4002
WS_CLOSE_INVALID_TOKEN_REASON = "Invalid token"
WS_CLOSE_SUPERSEDED = 4003
WS_CLOSE_SUPERSEDED_REASON = "Superseded by a newer connection"
WS_CLOSE_STALE = 4004
WS_CLOSE_STALE_REASON = "Heartbeat timeout"
WS_CLOSE_DEVICE_REMOVED = 4005
WS_CLOSE_DEVICE_REMOVED_REASON = "Device removed"

# Graceful server shutdown (RFC 6455)
WS_CLOSE_GOING_AWAY = 1001
WS_CLOSE_REASON_SHUTDOWN = "Server shutting down"

PUSH_ACCEPTED_OUTPUT = "Sent via APNs (no result available)"

MAX_NOTIFICATION_ACTIONS = 4
NOTIFICATION_SOUNDS = frozenset(
    {
        "vibrateOnly",
        "system",
        "subtle",
        "question",
        "jobDone",
        "problem",
        "loud",
        "lasers",
    }
)
