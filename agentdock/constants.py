# --- Worker pool ---

WORKER_CONCURRENCY = 5
POLL_INTERVAL = 1.0  # seconds between claim attempts when the queue is empty
CANCEL_CHECK_INTERVAL = 2.0
CLEANUP_INTERVAL = 3600.0
STOP_TIMEOUT = 10.0


# --- Job retry policy ---

JOB_MAX_ATTEMPTS = 1
RETRY_BASE_DELAY = 2.0  # next_retry_at = now + 2**attempts * base
JOB_RETENTION_DAYS = 7


# --- Event bus ---

EVENT_QUEUE_CAPACITY = 200
HEARTBEAT_INTERVAL = 25.0


# --- Messages / sessions ---

DEFAULT_MESSAGE_PAGE = 50
MAX_MESSAGE_PAGE = 200
MAX_SESSION_PAGE = 20


# --- Providers ---

CLAUDE_DEFAULT_MODEL = "sonnet"
CODEX_DEFAULT_MODEL = "gpt-5"
CODEX_REASONING_EFFORT = "high"
CODEX_MARKER_PREFIX = "Ignore this id:"
CODEX_RESUME_TIMEOUT = 5.0
CODEX_RESUME_POLL_INTERVAL = 0.3
CODEX_STREAM_LIMIT = 16 * 1024 * 1024  # max bytes per JSONL line

HISTORY_TIMEOUT = 15.0
HISTORY_POLL_INTERVAL = 0.4
HISTORY_TAIL_LINES = 1000


# --- Notices ---

CANCELLED_NOTICE = "Operation Cancelled\n\nOperation was cancelled by user"
INTERRUPTED_ERROR = "Run interrupted by server shutdown"
