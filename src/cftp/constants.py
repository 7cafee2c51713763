from __future__ import annotations

DIGEST_ALGORITHM = "sha256"
DIGEST_HEX_LEN = 64

STRING_LEN_FORMAT = "!H"  # unsigned 16-bit byte length, then UTF-8 bytes
PAYLOAD_SIZE_FORMAT = "!Q"  # unsigned 64-bit payload length
MAX_STRING_BYTES = 0xFFFF

TERMINATION_NAME = ""

DEFAULT_CHUNK_SIZE = 8192
DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5050
DEFAULT_OUTPUT_DIR = "server-out"
DEFAULT_INPUT_DIR = "files2transfer"
DEFAULT_IDLE_TIMEOUT_MS = 0
DEFAULT_CONNECT_TIMEOUT_MS = 0
DEFAULT_BACKLOG = 128
ACCEPT_POLL_MS = 200
