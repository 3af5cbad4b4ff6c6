"""In-memory line buffer exposing the editor primitives the conflict engine uses.

The buffer plays the part of the host text editor: it owns the lines, hands
out stable line handles, carries per-line classes and widgets, and records a
local undo history. Every mutation goes through a ``Change`` so that undo and
redo can replay it and listeners see exactly what moved.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, NamedTuple

logger = logging.getLogger(__name__)

# Column value meaning "end of the line"
END_OF_LINE = None


class Position(NamedTuple):
    """A line/column position in the buffer."""

    line: int
    ch: int = 0


class Selection(NamedTuple):
    """A selected range; anchor == head is a plain cursor."""

    anchor: Position
    head: Position

    @property
    def lines(self) -> range:
        first = min(self.anchor.line, self.head.line)
        last = max(self.anchor.line, self.head.line)
        return range(first, last + 1)


@dataclass
class Change:
    """Lines ``[from_line, from_line + len(removed))`` replaced by ``text``."""

    from_line: int
    removed: list[str]
    text: list[str]
    origin: str = "+input"

    def inverted(self, origin: str) -> "Change":
        return Change(self.from_line, list(self.text), list(self.removed), origin)


@dataclass(eq=False)
class LineHandle:
    """Identity of a single line; survives edits to other lines."""

    text: str
    widgets: list["LineWidget"] = field(default_factory=list)
    classes: set[str] = field(default_factory=set)
    _buffer: "LineBuffer | None" = field(default=None, repr=False)

    def line_no(self) -> int | None:
        """Current index of this line, or None once it has been deleted."""
        if self._buffer is None:
            return None
        return self._buffer._index_of(self)


@dataclass(eq=False)
class LineWidget:
    """A rendered node attached to a line."""

    handle: LineHandle
    node: Any
    above: bool = False
    no_hscroll: bool = False

    def clear(self):
        """Detach the widget from its line."""
        if self in self.handle.widgets:
            self.handle.widgets.remove(self)


@dataclass
class HistoryEntry:
    """One undoable step: the changes plus the selections around them."""

    changes: list[Change]
    selections_before: list[Selection]
    selections_after: list[Selection]


Listener = Callable[..., None]


class LineBuffer:
    """Mutable sequence of lines with handles, widgets and local history.

    Events:
        changes: ``callback(buffer, changes)`` after every edit, undo and redo.
        swap_doc: ``callback(buffer)`` after the document was replaced.
    """

    EVENTS = ("changes", "swap_doc")

    def __init__(self, text: str = ""):
        self._lines: list[LineHandle] = self._make_handles(text)
        self._selections: list[Selection] = [self._cursor_at(0, 0)]
        self._done: list[HistoryEntry] = []
        self._undone: list[HistoryEntry] = []
        self._listeners: dict[str, list[Listener]] = {event: [] for event in self.EVENTS}

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @property
    def lines(self) -> list[str]:
        return [handle.text for handle in self._lines]

    def get_value(self) -> str:
        return "\n".join(self.lines)

    def line_count(self) -> int:
        return len(self._lines)

    def get_line(self, line: int) -> str:
        return self.get_line_handle(line).text

    def get_line_handle(self, line: int) -> LineHandle:
        if not 0 <= line < len(self._lines):
            raise IndexError(f"line {line} out of range (0..{len(self._lines) - 1})")
        return self._lines[line]

    def each_line(
        self,
        callback: Callable[[LineHandle], Any],
        start: int = 0,
        end: int | None = None,
    ):
        """Visit line handles in ``[start, end)``; a truthy result stops the walk."""
        end = len(self._lines) if end is None else min(end, len(self._lines))
        for handle in self._lines[max(start, 0):end]:
            if callback(handle):
                break

    # -------------------------------------------------------------------------
    # Decorations
    # -------------------------------------------------------------------------

    def add_line_class(self, line: int, class_name: str):
        self.get_line_handle(line).classes.add(class_name)

    def remove_line_class(self, line: int, class_name: str):
        self.get_line_handle(line).classes.discard(class_name)

    def add_line_widget(
        self, line: int, node: Any, above: bool = False, no_hscroll: bool = False
    ) -> LineWidget:
        handle = self.get_line_handle(line)
        widget = LineWidget(handle, node, above=above, no_hscroll=no_hscroll)
        handle.widgets.append(widget)
        return widget

    def widgets(self) -> list[LineWidget]:
        """All attached widgets in buffer order."""
        return [widget for handle in self._lines for widget in handle.widgets]

    def line_of_widget(self, node: Any) -> int:
        """Resolve the current line of an attached widget node."""
        for i, handle in enumerate(self._lines):
            if any(widget.node is node for widget in handle.widgets):
                return i
        raise LookupError("widget is not attached to any line")

    # -------------------------------------------------------------------------
    # Selections and cursor
    # -------------------------------------------------------------------------

    def list_selections(self) -> list[Selection]:
        return list(self._selections)

    def set_selections(self, ranges: list[Selection] | list[tuple]):
        """Replace all selections; the first range is the primary one."""
        if not ranges:
            raise ValueError("at least one selection range is required")
        self._selections = [
            Selection(self._clip(Position(*anchor)), self._clip(Position(*head)))
            for anchor, head in ranges
        ]

    def get_cursor(self) -> Position:
        """Head of the primary selection."""
        return self._selections[0].head

    def set_cursor(self, line: int | Position, ch: int = 0):
        """Collapse the selection to a single cursor."""
        if isinstance(line, Position):
            line, ch = line
        self._selections = [self._cursor_at(line, ch)]

    def something_selected(self) -> bool:
        return len(self._selections) > 1 or any(s.anchor != s.head for s in self._selections)

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def replace_range(self, text: str, line: int, ch: int | None = END_OF_LINE, origin: str = "+input"):
        """Insert ``text`` at ``line``/``ch`` (``END_OF_LINE`` appends)."""
        current = self.get_line(line)
        col = len(current) if ch is END_OF_LINE else max(0, min(ch, len(current)))
        updated = current[:col] + text + current[col:]
        self._commit([Change(line, [current], updated.split("\n"), origin)])

    def delete_selected_lines(self, origin: str = "+delete") -> list[int]:
        """Delete every line touched by a selection in one step.

        Returns the deleted indices in ascending order.
        """
        count = len(self._lines)
        lines = sorted({i for sel in self._selections for i in sel.lines if 0 <= i < count})
        if not lines:
            return []

        if len(lines) == count:
            # A buffer never becomes empty: the last line turns into an empty one
            changes = [Change(0, self.lines, [""], origin)]
        else:
            # Bottom-up so each index is still valid when its change applies
            changes = [Change(i, [self._lines[i].text], [], origin) for i in reversed(lines)]

        cursor = Position(lines[0], 0)
        self._commit(changes, after=[Selection(cursor, cursor)])
        return lines

    def swap_doc(self, text: str):
        """Replace the whole document, dropping handles, widgets and history."""
        for handle in self._lines:
            handle._buffer = None
        self._lines = self._make_handles(text)
        self._selections = [self._cursor_at(0, 0)]
        self._done.clear()
        self._undone.clear()
        logger.debug("Document swapped (%d lines)", len(self._lines))
        self._emit("swap_doc", self)

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def history_size(self) -> tuple[int, int]:
        """(undo steps, redo steps)."""
        return len(self._done), len(self._undone)

    def clear_history(self):
        """Forget local undo/redo steps."""
        self._done.clear()
        self._undone.clear()

    def undo(self) -> bool:
        if not self._done:
            return False
        entry = self._done.pop()
        changes = [change.inverted("undo") for change in reversed(entry.changes)]
        for change in changes:
            self._apply(change)
        self._undone.append(entry)
        self._selections = [self._clip_selection(s) for s in entry.selections_before]
        self._emit("changes", self, changes)
        return True

    def redo(self) -> bool:
        if not self._undone:
            return False
        entry = self._undone.pop()
        changes = [replace(change, origin="redo") for change in entry.changes]
        for change in changes:
            self._apply(change)
        self._done.append(entry)
        self._selections = [self._clip_selection(s) for s in entry.selections_after]
        self._emit("changes", self, changes)
        return True

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def on(self, event: str, callback: Listener):
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Listener):
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    def _emit(self, event: str, *args):
        for callback in list(self._listeners[event]):
            callback(*args)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _make_handles(self, text: str) -> list[LineHandle]:
        return [LineHandle(line, _buffer=self) for line in text.split("\n")]

    def _index_of(self, handle: LineHandle) -> int | None:
        for i, candidate in enumerate(self._lines):
            if candidate is handle:
                return i
        return None

    def _apply(self, change: Change):
        start = change.from_line
        end = start + len(change.removed)
        if len(change.removed) == len(change.text):
            # Same shape: edit in place so handles keep their widgets
            for handle, text in zip(self._lines[start:end], change.text):
                handle.text = text
            return
        for handle in self._lines[start:end]:
            handle._buffer = None
        self._lines[start:end] = [LineHandle(text, _buffer=self) for text in change.text]

    def _commit(self, changes: list[Change], after: list[Selection] | None = None):
        before = self.list_selections()
        for change in changes:
            self._apply(change)
        if after is not None:
            self._selections = after
        self._selections = [self._clip_selection(s) for s in self._selections]
        self._done.append(HistoryEntry(changes, before, self.list_selections()))
        self._undone.clear()
        self._emit("changes", self, changes)

    def _clip(self, pos: Position) -> Position:
        line = max(0, min(pos.line, len(self._lines) - 1))
        ch = max(0, min(pos.ch, len(self._lines[line].text)))
        return Position(line, ch)

    def _clip_selection(self, selection: Selection) -> Selection:
        return Selection(self._clip(selection.anchor), self._clip(selection.head))

    def _cursor_at(self, line: int, ch: int) -> Selection:
        pos = self._clip(Position(line, ch))
        return Selection(pos, pos)
