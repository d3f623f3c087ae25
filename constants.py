import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 3000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# Idle reaper: sweep every 5 minutes, evict rooms with no activity for 30
REAP_INTERVAL_SECONDS = int(os.getenv("REAP_INTERVAL_SECONDS", 300))
STALE_AFTER_SECONDS = int(os.getenv("STALE_AFTER_SECONDS", 1800))
# An open socket counts as activity; keep well below STALE_AFTER_SECONDS
KEEPALIVE_SECONDS = int(os.getenv("KEEPALIVE_SECONDS", 60))

# Promote a remaining viewer when the host disconnects
HOST_FAILOVER = os.getenv("HOST_FAILOVER", "false").lower() in ("1", "true", "yes")

OUTBOX_MAXSIZE = int(os.getenv("OUTBOX_MAXSIZE", 256))

DEFAULT_DISPLAY_NAME = "Anonymous"
WS_PATH = "/ws"

# Close codes sent on the websocket
CLOSE_ROOM_REQUIRED = 4000
CLOSE_HOST_EXISTS = 4001
CLOSE_IDLE = 1001
CLOSE_SHUTDOWN = 1001
