"""Terminal input and output used during authorization.

``read_password`` hides the input only when the descriptor is a real terminal.
Not thread-safe.
"""

from __future__ import annotations

import os
from typing import Any, TextIO

try:
    import termios
except ImportError:  # pragma: no cover - platforms without termios
    termios = None  # type: ignore[assignment]


class Terminal:
    """Line-oriented terminal I/O over a reader, a writer and a descriptor."""

    def __init__(self, reader: TextIO, writer: TextIO, fd: int) -> None:
        self.reader = reader
        self.writer = writer
        self.fd = fd

    def read_line(self) -> str:
        """Read one line with surrounding whitespace removed; EOFError at end."""
        line = self.reader.readline()
        if line == "":
            raise EOFError("end of input")
        return line.strip()

    def read_password(self) -> str:
        """Read a line from the descriptor with echo turned off."""
        if termios is None:
            raise OSError("password input requires a terminal")
        try:
            saved = termios.tcgetattr(self.fd)
        except (termios.error, ValueError, OSError) as exc:
            raise OSError(f"read password: {exc}") from exc

        silent = list(saved)
        silent[3] &= ~termios.ECHO
        termios.tcsetattr(self.fd, termios.TCSANOW, silent)
        try:
            data = bytearray()
            while True:
                chunk = os.read(self.fd, 1)
                if not chunk or chunk == b"\n":
                    break
                data += chunk
        finally:
            termios.tcsetattr(self.fd, termios.TCSANOW, saved)
        return data.decode("utf-8").rstrip("\r")

    def println(self, *args: Any) -> None:
        """Write the arguments separated by spaces, followed by a newline."""
        self.writer.write(" ".join(str(arg) for arg in args) + "\n")

    def printf(self, fmt: str, *args: Any) -> None:
        """Write a %-formatted string."""
        self.writer.write(fmt % args)