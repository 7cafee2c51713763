"""Compressed File Transfer Protocol (CFTP)

Streams gzip-compressed files over TCP, each checked with a SHA-256 digest of
the compressed bytes. Layout mirrors the layers of the protocol:
- ``pipeline``: compress / digest / decompress
- ``wire``: record framing and read-exact
- ``sender`` / ``receiver``: the two roles; one receiver serves many
  concurrent senders, one handler thread per connection
"""

from .config import Config
from .receiver import ConnectionHandler, FileOutcome, Receiver, SessionResult, SessionState, listen
from .sender import SendError, Sender, send, send_file, send_files

__all__ = [
    "Config",
    "ConnectionHandler",
    "FileOutcome",
    "Receiver",
    "SendError",
    "Sender",
    "SessionResult",
    "SessionState",
    "listen",
    "send",
    "send_file",
    "send_files",
]
