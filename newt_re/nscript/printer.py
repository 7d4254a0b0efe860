"""Deferred-formatting text sink used by the source emitter.

Line breaks, indentation and dividers (``;`` after a statement, ``, ``
between arguments) are not written immediately.  They are remembered and
only flushed in front of the next token, so a caller can retract a
divider (``clear_divider``) or close a block at a lower indentation
before anything reaches the output.
"""

from __future__ import annotations

from typing import Optional


class Printer:
    def __init__(self, indent_text: str = "  "):
        self.indent_text = indent_text
        self._chunks: list[str] = []
        self._level = 0
        self._at_line_start = True
        self._pending_newline = False
        self._pending_divider: Optional[str] = None

    @property
    def level(self) -> int:
        return self._level

    def _flush(self) -> None:
        if self._pending_divider is not None:
            self._chunks.append(self._pending_divider)
            self._pending_divider = None
        if self._pending_newline:
            self._chunks.append("\n")
            self._pending_newline = False
            self._at_line_start = True
        if self._at_line_start:
            self._chunks.append(self.indent_text * self._level)
            self._at_line_start = False

    def begin(self, delta: int = 0) -> None:
        """Start a new token, flushing whatever is pending."""
        self.indent(delta)
        self._flush()

    def write(self, text: str) -> None:
        self._flush()
        self._chunks.append(text)

    def new_line(self, divider: Optional[str] = None, delta: int = 0) -> None:
        """Request a line break (and optional divider) before the next token."""
        if divider is not None:
            self._pending_divider = divider
        self._pending_newline = True
        self.indent(delta)

    def divider(self, text: str) -> None:
        self._pending_divider = text

    def clear_divider(self) -> None:
        self._pending_divider = None

    def indent(self, delta: int) -> None:
        self._level = max(0, self._level + delta)

    def end(self, delta: int = 0) -> None:
        """Leave a block; the indent change applies to the next token."""
        self.indent(delta)

    def getvalue(self) -> str:
        text = "".join(self._chunks)
        if self._pending_newline:
            text += "\n"
        return "\n".join(line.rstrip() for line in text.split("\n"))
