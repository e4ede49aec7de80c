"""Protocol-wide constants shared by both peers."""

ENCODING = "utf-8"
FRAME_DELIMITER = b"\n"
BINARY_TAG = "$b64"  # marks a base64 encoded bytes value inside a JSON frame

DEFAULT_CHUNK_SIZE = 64 * 1024  # bytes
DEFAULT_HEARTBEAT_INTERVAL = 5.0  # seconds
DEFAULT_HEARTBEAT_TIMEOUT = 15.0  # seconds
DEFAULT_TRANSFER_TIMEOUT = 30.0  # seconds without chunk activity
DEFAULT_TRANSFER_CHECK_INTERVAL = 5.0  # seconds
SEND_YIELD_EVERY = 10  # chunks
SEND_YIELD_DELAY = 0.01  # seconds
DEFAULT_HISTORY_LIMIT = 100  # finished transfers kept for lookup

# A 64 KiB chunk grows to ~88 KiB once base64 encoded.
MAX_PAYLOAD_SIZE = 256 * 1024
# StreamReader instances feeding async_decode_msg need a limit above one frame.
STREAM_READER_LIMIT = MAX_PAYLOAD_SIZE + 1024

__all__ = [
    "ENCODING",
    "FRAME_DELIMITER",
    "BINARY_TAG",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_HEARTBEAT_INTERVAL",
    "DEFAULT_HEARTBEAT_TIMEOUT",
    "DEFAULT_TRANSFER_TIMEOUT",
    "DEFAULT_TRANSFER_CHECK_INTERVAL",
    "SEND_YIELD_EVERY",
    "SEND_YIELD_DELAY",
    "DEFAULT_HISTORY_LIMIT",
    "MAX_PAYLOAD_SIZE",
    "STREAM_READER_LIMIT",
]
