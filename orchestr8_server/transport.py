"""
Line-delimited stdio transport.
===============================
One JSON-RPC message per line in each direction. Every ``send`` is flushed
before it returns so a line-based reader sees the response immediately.
"""

from __future__ import annotations

import sys
import threading
from typing import Optional, TextIO


class StdioTransport:
    """Reads request lines from ``reader`` and writes response lines to ``writer``."""

    def __init__(self, reader: Optional[TextIO] = None, writer: Optional[TextIO] = None) -> None:
        self.reader = reader if reader is not None else sys.stdin
        self.writer = writer if writer is not None else sys.stdout
        self._send_lock = threading.Lock()

    def receive(self) -> Optional[str]:
        """
        Blocks until the next non-blank line arrives.

        Returns:
            The line without its terminator, or None once the peer closes input.
        """
        while True:
            line = self.reader.readline()
            if line == "":
                return None
            line = line.rstrip("\r\n")
            if line.strip():
                return line

    def send(self, line: str) -> None:
        with self._send_lock:
            self.writer.write(line + "\n")
            self.writer.flush()
