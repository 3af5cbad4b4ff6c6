"""Conflict-marker resolution engine.

The scanner walks the buffer once, annotates the boundary lines of each
conflict block and anchors one control above every block. Activating a control
hands the block to the resolver, which computes the lines to drop in a single
bounded forward scan and removes them in one edit.
"""

import logging
from typing import Any, Callable

from conflict_markers import (
    BLOCK_CLASS,
    CURRENT_LABEL,
    INCOMING_LABEL,
    Branch,
    MalformedConflictBlock,
    find_block_start,
    is_current_end,
    is_divider,
    is_incoming_start,
    is_marker,
)
from line_buffer import END_OF_LINE, LineBuffer, LineHandle, Position, Selection
from resolver_config import ResolverConfig

logger = logging.getLogger(__name__)

# Resolves the live line index of a control at activation time
LineResolver = Callable[["ConflictControl"], int]
# schedule(delay_seconds, callback)
Scheduler = Callable[[float, Callable[[], Any]], Any]


def run_now(delay: float, callback: Callable[[], Any]):
    """Scheduler that runs the callback immediately."""
    callback()


# =============================================================================
# Controls
# =============================================================================


class ConflictControl:
    """Interactive control anchored above a conflict block.

    Holds no line index of its own: the owning line is looked up through the
    line resolver each time the control is activated, since resolving other
    blocks shifts indices.
    """

    CHOICES = (Branch.OURS, Branch.THEIRS, Branch.BOTH)

    def __init__(self, session: "ConflictSession"):
        self.session = session

    @property
    def line(self) -> int:
        return self.session.line_resolver(self)

    def activate(self, branch: Branch) -> list[int]:
        return self.session.resolve(branch, self.line)

    def __repr__(self) -> str:
        try:
            line = self.line
        except LookupError:
            line = None
        return f"<ConflictControl line={line}>"


# =============================================================================
# Marker Scanner
# =============================================================================


class MarkerScanner:
    """Annotates conflict blocks and attaches one control per block."""

    def __init__(
        self,
        editor: LineBuffer,
        control_factory: Callable[[], Any],
        incoming_label: str = INCOMING_LABEL,
        current_label: str = CURRENT_LABEL,
        annotate: bool = True,
    ):
        self.editor = editor
        self.control_factory = control_factory
        self.incoming_label = incoming_label
        self.current_label = current_label
        self.annotate = annotate

    def scan(self) -> int:
        """Process every line once; return the number of controls attached."""
        attached = 0

        def visit(handle: LineHandle):
            nonlocal attached
            if handle.widgets:
                return

            if is_incoming_start(handle.text):
                self._append_line_info(handle, self.incoming_label)
                line = handle.line_no()
                self.editor.add_line_class(line, BLOCK_CLASS)
                self.editor.add_line_widget(
                    line, self.control_factory(), above=True, no_hscroll=True
                )
                attached += 1
            elif is_current_end(handle.text):
                self._append_line_info(handle, self.current_label)

        self.editor.each_line(visit)
        logger.debug("Scan attached %d control(s)", attached)
        return attached

    def _append_line_info(self, handle: LineHandle, text: str):
        # Only append the label if the line doesn't already carry it
        if not self.annotate or text in handle.text:
            return
        self.editor.replace_range(text, handle.line_no(), END_OF_LINE, origin="+annotate")
        # Bookkeeping edit, not something the user should be able to undo
        self.editor.clear_history()


# =============================================================================
# Branch Resolver
# =============================================================================


class BranchResolver:
    """Keeps one side (or both) of a conflict block and drops the rest."""

    def __init__(self, editor: LineBuffer, strict: bool = True):
        self.editor = editor
        self.strict = strict

    def deletion_set(self, branch: Branch, line: int) -> list[int]:
        """Indices to delete when resolving the block starting at ``line``.

        With ``strict`` set, a start line that is not an opening marker, or a
        block that is unclosed, nested, missing its divider or carrying a second
        one raises MalformedConflictBlock. Otherwise the scan runs on to the
        end of the buffer.
        """
        if not 0 <= line < self.editor.line_count():
            raise IndexError(f"line {line} is outside the buffer")
        if self.strict and not is_incoming_start(self.editor.get_line(line)):
            raise MalformedConflictBlock(line, "line is not an opening conflict marker")

        # Only flips when a marker is crossed, holds across content lines
        in_deletable_section = False
        lines_to_remove: list[int] = []
        seen_start = seen_divider = closed = False

        for index in range(line, self.editor.line_count()):
            text = self.editor.get_line(index)

            if is_incoming_start(text):
                if seen_start and self.strict:
                    raise MalformedConflictBlock(line, f"nested opening marker at line {index + 1}")
                seen_start = True
                in_deletable_section = branch is Branch.OURS
            elif is_divider(text):
                if seen_divider and self.strict:
                    raise MalformedConflictBlock(line, f"second divider at line {index + 1}")
                seen_divider = True
                in_deletable_section = branch is Branch.THEIRS

            if in_deletable_section or is_marker(text):
                lines_to_remove.append(index)

            if is_current_end(text):
                if not seen_divider and self.strict:
                    raise MalformedConflictBlock(line, f"no divider before closing marker at line {index + 1}")
                closed = True
                break

        if not closed:
            if self.strict:
                raise MalformedConflictBlock(line, "no closing marker before end of buffer")
            logger.warning("Conflict block at line %d is not closed, scanned to end of buffer", line + 1)

        return lines_to_remove

    def resolve(self, branch: Branch, line: int) -> list[int]:
        """Delete the computed lines in one edit and park the cursor.

        Returns the deleted indices (pre-deletion numbering).
        """
        lines_to_remove = self.deletion_set(branch, line)
        if not lines_to_remove:
            return []

        cursors = [Selection(Position(i, 0), Position(i, 0)) for i in lines_to_remove]
        self.editor.set_selections(cursors)
        self.editor.delete_selected_lines(origin="+resolve")
        self.editor.set_cursor(lines_to_remove[0])

        logger.info(
            "Accepted %s at line %d, removed %d line(s)",
            branch.value, line + 1, len(lines_to_remove),
        )
        return lines_to_remove


# =============================================================================
# Session
# =============================================================================


class ConflictSession:
    """Wires a scanner and a resolver to one editor.

    The session listens for document swaps (deferred full re-scan) and for
    undo steps that bring back an opening marker (immediate re-scan plus
    collapsing the restored multi-line selection to a single cursor).
    """

    def __init__(
        self,
        editor: LineBuffer,
        config: ResolverConfig | None = None,
        line_resolver: LineResolver | None = None,
        schedule: Scheduler | None = None,
    ):
        self.editor = editor
        self.config = config or ResolverConfig()
        self.line_resolver = line_resolver or self._widget_line
        self.schedule = schedule or run_now
        self.scanner = MarkerScanner(
            editor,
            self.make_control,
            incoming_label=self.config.incoming_label,
            current_label=self.config.current_label,
            annotate=self.config.annotate_lines,
        )
        self.resolver = BranchResolver(editor, strict=self.config.strict_blocks)
        self._attached = False

    def attach(self) -> "ConflictSession":
        if not self._attached:
            self.editor.on("swap_doc", self._on_swap_doc)
            self.editor.on("changes", self._on_changes)
            self._attached = True
        return self

    def detach(self):
        if self._attached:
            self.editor.off("swap_doc", self._on_swap_doc)
            self.editor.off("changes", self._on_changes)
            self._attached = False

    def make_control(self) -> ConflictControl:
        return ConflictControl(self)

    def controls(self) -> list[ConflictControl]:
        """Controls currently attached to the editor, in buffer order."""
        return [w.node for w in self.editor.widgets() if isinstance(w.node, ConflictControl)]

    def scan(self) -> int:
        return self.scanner.scan()

    def resolve(self, branch: Branch, line: int) -> list[int]:
        return self.resolver.resolve(branch, line)

    def resolve_at_cursor(self, branch: Branch) -> list[int]:
        """Resolve the block enclosing the cursor."""
        cursor = self.editor.get_cursor()
        start = find_block_start(self.editor.lines, cursor.line)
        if start is None:
            raise MalformedConflictBlock(cursor.line, "cursor is not inside a conflict block")
        return self.resolve(branch, start)

    def _widget_line(self, control: ConflictControl) -> int:
        return self.editor.line_of_widget(control)

    def _on_swap_doc(self, editor: LineBuffer):
        # Let the host finish rendering the new document first
        self.schedule(self.config.rescan_delay, self.scan)

    def _on_changes(self, editor: LineBuffer, changes: list):
        first = changes[0] if changes else None
        if first is None or first.origin != "undo" or not first.text:
            return
        if is_incoming_start(first.text[0]):
            logger.debug("Undo restored a conflict block at line %d", first.from_line + 1)
            self.scan()
            # Undoing a multi-line delete restores one cursor per deleted line
            editor.set_cursor(editor.get_cursor())
