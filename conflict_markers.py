"""Conflict marker patterns, branch selection and block discovery."""

import re
from dataclasses import dataclass
from enum import Enum

# Marker patterns. Changing the marker format is a one-place edit here.
INCOMING_START = re.compile(r"^<<<<<<<")
DIVIDER = re.compile(r"^=======$")
CURRENT_END = re.compile(r"^>>>>>>>")

INCOMING_LABEL = " -- Incoming Change"
CURRENT_LABEL = " -- Current Change"

BLOCK_CLASS = "resolve-conflicts"


class MarkerKind(Enum):
    """Kind of conflict marker a line carries."""
    INCOMING_START = "incoming_start"
    DIVIDER = "divider"
    CURRENT_END = "current_end"


class Branch(Enum):
    """Side of a conflict the user keeps."""
    OURS = "Current"
    THEIRS = "Incoming"
    BOTH = "Both"

    @property
    def title(self) -> str:
        if self is Branch.BOTH:
            return "Accept Both Changes"
        return f"Accept {self.value} Change"


class MalformedConflictBlock(Exception):
    """A conflict block is missing a marker or is nested in another block."""

    def __init__(self, line: int, reason: str):
        super().__init__(f"Malformed conflict block at line {line + 1}: {reason}")
        self.line = line
        self.reason = reason


@dataclass(frozen=True)
class ConflictBlock:
    """Line indices of one well-formed conflict block."""
    start: int
    divider: int
    end: int

    @property
    def incoming(self) -> range:
        return range(self.start + 1, self.divider)

    @property
    def current(self) -> range:
        return range(self.divider + 1, self.end)

    def __contains__(self, line: int) -> bool:
        return self.start <= line <= self.end


def is_incoming_start(text: str) -> bool:
    return INCOMING_START.match(text) is not None


def is_divider(text: str) -> bool:
    return DIVIDER.match(text) is not None


def is_current_end(text: str) -> bool:
    return CURRENT_END.match(text) is not None


def is_marker(text: str) -> bool:
    return is_incoming_start(text) or is_divider(text) or is_current_end(text)


def classify_line(text: str) -> MarkerKind | None:
    """Return the marker kind of a line, or None for ordinary content."""
    if is_incoming_start(text):
        return MarkerKind.INCOMING_START
    if is_divider(text):
        return MarkerKind.DIVIDER
    if is_current_end(text):
        return MarkerKind.CURRENT_END
    return None


def find_conflict_blocks(lines: list[str]) -> list[ConflictBlock]:
    """Find well-formed conflict blocks in buffer order.

    An opening marker restarts the search, so a nested or unterminated block
    is skipped rather than reported.
    """
    blocks = []
    start = divider = None
    bad = False  # second divider inside the open block

    for i, text in enumerate(lines):
        kind = classify_line(text)
        if kind is MarkerKind.INCOMING_START:
            start, divider, bad = i, None, False
        elif kind is MarkerKind.DIVIDER and start is not None:
            if divider is None:
                divider = i
            else:
                bad = True
        elif kind is MarkerKind.CURRENT_END and start is not None:
            if divider is not None and not bad:
                blocks.append(ConflictBlock(start, divider, i))
            start = divider = None
            bad = False

    return blocks


def find_block_start(lines: list[str], line: int) -> int | None:
    """Return the opening marker index of the block enclosing ``line``.

    Walks upward from ``line``; a closing marker above the line (not on it)
    means the line is outside any block.
    """
    if not 0 <= line < len(lines):
        return None
    for i in range(line, -1, -1):
        text = lines[i]
        if is_incoming_start(text):
            return i
        if is_current_end(text) and i != line:
            return None
    return None
