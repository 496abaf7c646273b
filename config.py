"""Runtime limits and timings for watchshell."""

from dataclasses import dataclass

SHELL_NAME = "watchshell"

# History
HISTORY_CAPACITY = 10000
SEARCH_LIMIT = 10

# Parsing bounds
MAX_STAGES = 16
MAX_ARGS = 64
MAX_COMMAND_LENGTH = 256

# Output collection
OUTPUT_LIMIT = 4096
READ_CHUNK = 1024
POLL_INTERVAL = 0.01
SINGLE_TIMEOUT = 3.0
PIPELINE_TIMEOUT = 5.0

# Job control
MAX_JOBS = 32

# multiWatch
WATCH_POLL_MS = 100
WATCH_IDLE_TIMEOUT = 5.0
WATCH_GRACE = 1.0


@dataclass
class ShellConfig:
    history_capacity: int = HISTORY_CAPACITY
    search_limit: int = SEARCH_LIMIT
    max_stages: int = MAX_STAGES
    max_args: int = MAX_ARGS
    max_command_length: int = MAX_COMMAND_LENGTH
    output_limit: int = OUTPUT_LIMIT
    read_chunk: int = READ_CHUNK
    poll_interval: float = POLL_INTERVAL
    single_timeout: float = SINGLE_TIMEOUT
    pipeline_timeout: float = PIPELINE_TIMEOUT
    max_jobs: int = MAX_JOBS
    watch_poll_ms: int = WATCH_POLL_MS
    watch_idle_timeout: float = WATCH_IDLE_TIMEOUT
    watch_grace: float = WATCH_GRACE
