from .common import generate_file_id, generate_session_id, timestamp_ms

__all__ = ["generate_file_id", "generate_session_id", "timestamp_ms"]
