#!/usr/bin/env python3
"""In-editor Git merge conflict resolver: accept current, incoming or both."""

import logging
import subprocess
import sys
from pathlib import Path

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Footer, ListItem, ListView, Static

from conflict_engine import ConflictControl, ConflictSession
from conflict_markers import (
    Branch,
    MalformedConflictBlock,
    find_conflict_blocks,
    is_current_end,
    is_divider,
    is_incoming_start,
)
from line_buffer import LineBuffer, LineHandle
from resolver_config import ResolverConfig, load_config, setup_logging

logger = logging.getLogger(__name__)


def count_conflicts(text: str) -> int:
    return len(find_conflict_blocks(text.split("\n")))


# =============================================================================
# Git Integration
# =============================================================================


class ConflictDetector:
    """Detects conflicted files from git status."""

    def __init__(self, repo_path: Path | None = None):
        self.repo_path = repo_path or Path.cwd()

    def get_conflicted_files(self) -> list[Path]:
        """Get list of files with unmerged conflicts."""
        try:
            result = subprocess.run(
                ["git", "diff", "--name-only", "--diff-filter=U"],
                capture_output=True,
                text=True,
                cwd=self.repo_path,
            )
        except OSError as e:
            logger.warning("git not available: %s", e)
            return []
        if result.returncode != 0:
            logger.warning("git diff failed in %s: %s", self.repo_path, result.stderr.strip())
            return []
        return [
            self.repo_path / f.strip()
            for f in result.stdout.strip().split("\n")
            if f.strip()
        ]

    @staticmethod
    def stage_file(file_path: Path) -> bool:
        """Mark a file as resolved with git add."""
        try:
            result = subprocess.run(
                ["git", "add", file_path.name],
                capture_output=True,
                text=True,
                cwd=file_path.parent,
            )
        except OSError as e:
            logger.warning("git add failed for %s: %s", file_path, e)
            return False
        return result.returncode == 0


# =============================================================================
# UI Widgets
# =============================================================================


class FileItem(ListItem):
    """A conflicted file item in the sidebar."""

    def __init__(self, path: Path, remaining: int):
        super().__init__()
        self.path = path
        self.remaining = remaining

    def compose(self) -> ComposeResult:
        icon = "[green]✓[/]" if self.remaining == 0 else "[yellow]![/]"
        yield Static(f" {icon} {self.path.name} ({self.remaining})")


class BranchButton(Button):
    """One choice of a conflict control."""

    def __init__(self, branch: Branch):
        super().__init__(branch.title, classes="control-button")
        self.branch = branch


class ControlBar(Horizontal):
    """Rendered conflict control: Current | Incoming | Both."""

    def __init__(self, control: ConflictControl):
        super().__init__(classes="control-bar")
        self.control = control

    def compose(self) -> ComposeResult:
        for i, branch in enumerate(ConflictControl.CHOICES):
            if i:
                yield Static(" | ", classes="control-sep")
            yield BranchButton(branch)

    def on_button_pressed(self, event: Button.Pressed):
        event.stop()
        if isinstance(event.button, BranchButton):
            self.app.accept_branch(self.control, event.button.branch)


class LineRow(Static):
    """A single buffer line with its line number."""

    STYLES = {
        "incoming": "yellow",
        "current": "green",
        "marker": "bold bright_black",
        "incoming-marker": "bold yellow",
        "current-marker": "bold green",
    }

    def __init__(self, index: int, handle: LineHandle, width: int, side: str = "", is_cursor: bool = False):
        classes = " ".join(sorted(handle.classes))
        if is_cursor:
            classes += " cursor"
        super().__init__(self.format_line(index, handle.text, width, side), classes=classes.strip())
        self.line_index = index

    @classmethod
    def format_line(cls, index: int, text: str, width: int, side: str) -> Text:
        if is_incoming_start(text):
            style = cls.STYLES["incoming-marker"]
        elif is_current_end(text):
            style = cls.STYLES["current-marker"]
        elif is_divider(text):
            style = cls.STYLES["marker"]
        else:
            style = cls.STYLES.get(side, "")
        return Text.assemble(
            (f"{index + 1:>{width}} ", "dim"),
            ("│ ", "dim cyan"),
            (text, style),
        )


class BufferView(VerticalScroll):
    """Renders a LineBuffer with controls anchored above their lines."""

    async def rebuild(self, editor: LineBuffer):
        lines = editor.lines
        cursor = editor.get_cursor().line
        width = len(str(len(lines)))

        sides: dict[int, str] = {}
        for block in find_conflict_blocks(lines):
            sides.update({i: "incoming" for i in block.incoming})
            sides.update({i: "current" for i in block.current})

        rows = []
        for index in range(editor.line_count()):
            handle = editor.get_line_handle(index)
            for widget in handle.widgets:
                if widget.above and isinstance(widget.node, ConflictControl):
                    rows.append(ControlBar(widget.node))
            rows.append(LineRow(index, handle, width, sides.get(index, ""), index == cursor))

        with self.app.batch_update():
            await self.remove_children()
            await self.mount_all(rows)

        for row in self.query(LineRow):
            if row.has_class("cursor"):
                self.scroll_to_widget(row, animate=False)
                break


# =============================================================================
# Modal Dialogs
# =============================================================================


class ConfirmDialog(ModalScreen):
    """Yes/no confirmation before writing a file."""

    CSS = """
    ConfirmDialog {
        align: center middle;
        background: transparent;
    }
    #confirm-box {
        width: 60;
        height: auto;
        border: round $warning;
        background: $surface;
        padding: 1 2;
        border-title-align: left;
        border-title-color: $warning;
    }
    #confirm-hint {
        color: $text-muted;
        text-align: center;
        margin-top: 1;
    }
    """

    BINDINGS = [
        ("y", "confirm", "Yes"),
        ("n", "cancel", "No"),
        ("escape", "cancel", "Cancel"),
    ]

    def __init__(self, title: str, message: str):
        super().__init__()
        self.title_text = title
        self.message = message

    def compose(self) -> ComposeResult:
        box = Vertical(id="confirm-box")
        box.border_title = self.title_text
        with box:
            yield Static(self.message)
            yield Static("y:Yes · n:No", id="confirm-hint")

    def action_confirm(self):
        self.dismiss(True)

    def action_cancel(self):
        self.dismiss(False)


# =============================================================================
# Main Application
# =============================================================================


class MergeResolverApp(App):
    """Resolve conflict blocks in place, one file at a time."""

    TITLE = "Resolve Conflicts"

    CSS = """
    * {
        scrollbar-size: 1 1;
    }

    /* File sidebar */
    #file-sidebar {
        width: 28;
        border: round $border;
        background: $surface;
        border-title-align: left;
        border-title-color: $text-muted;
    }
    #file-sidebar:focus-within {
        border: round $primary;
        border-title-color: $primary;
    }
    #file-sidebar.hidden {
        display: none;
    }
    #file-list {
        height: 1fr;
        background: $surface;
        overflow-x: hidden;
    }

    /* Buffer */
    #buffer-view {
        width: 1fr;
        border: round $border;
        border-title-align: left;
        border-title-color: $primary;
        padding: 0 1;
    }
    LineRow {
        width: 100%;
        height: 1;
    }
    LineRow.cursor {
        background: $primary 25%;
    }
    LineRow.resolve-conflicts {
        text-style: bold;
    }
    .control-bar {
        height: 1;
        width: 100%;
        text-style: bold;
    }
    .control-button {
        height: 1;
        min-width: 0;
        border: none;
        padding: 0;
        background: transparent;
        color: $accent;
        text-style: bold underline;
    }
    .control-button:hover {
        color: $primary;
    }
    .control-sep {
        width: auto;
        color: $text-muted;
    }

    /* Status bar */
    #status-bar {
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    #file-info {
        width: auto;
    }
    #conflict-info {
        width: auto;
        margin: 0 2;
    }
    #help-info {
        width: 1fr;
        text-align: right;
        color: $text-muted;
    }
    """

    BINDINGS = [
        # Navigation
        ("j", "next_conflict", "Next conflict"),
        ("k", "prev_conflict", "Prev conflict"),
        ("J", "cursor_down", "Line down"),
        ("K", "cursor_up", "Line up"),
        ("n", "next_file", "Next file"),
        ("p", "prev_file", "Prev file"),
        # Resolution at cursor
        ("c", "accept_current", "Accept current"),
        ("i", "accept_incoming", "Accept incoming"),
        ("b", "accept_both", "Accept both"),
        ("u", "undo", "Undo"),
        ("U", "redo", "Redo"),
        # File operations
        Binding("ctrl+s", "save_file", "Save", priority=True),
        ("R", "refresh", "Refresh"),
        # General
        ("f", "toggle_sidebar", "Files"),
        ("q", "quit", "Quit"),
    ]

    def __init__(self, paths: list[Path] | None = None, config: ResolverConfig | None = None):
        super().__init__()
        self.paths = paths or [Path.cwd()]
        self.resolver_config = config or ResolverConfig()
        self.editor = LineBuffer()
        self.session = ConflictSession(self.editor, self.resolver_config, schedule=self._schedule).attach()
        self.documents: dict[Path, str] = {}
        self.current_path: Path | None = None
        self._render_pending = False

    def compose(self) -> ComposeResult:
        with Horizontal(id="main-container"):
            sidebar = Vertical(id="file-sidebar")
            sidebar.border_title = "Files"
            with sidebar:
                yield ListView(id="file-list")
            view = BufferView(id="buffer-view")
            view.border_title = "No file"
            yield view

        with Horizontal(id="status-bar"):
            yield Static("", id="file-info")
            yield Static("", id="conflict-info")
            yield Static("j/k:conflict c:current i:incoming b:both u:undo ^S:save", id="help-info")
        yield Footer()

    def on_mount(self):
        """Load conflicted files on startup."""
        self.editor.on("changes", self._buffer_changed)
        self.editor.on("swap_doc", self._buffer_changed)
        self._load_conflicts()
        if not self.documents:
            self.notify("No merge conflicts detected", severity="warning", timeout=5)

    # =========================================================================
    # Loading and switching files
    # =========================================================================

    def _load_conflicts(self):
        """Read every conflicted file into memory and show the first one."""
        self.documents = {}
        for path in self.paths:
            if path.is_dir():
                candidates = ConflictDetector(path).get_conflicted_files()
            else:
                candidates = [path]
            for candidate in candidates:
                try:
                    self.documents[candidate] = candidate.read_text()
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning("Cannot read %s: %s", candidate, e)
                    self.notify(f"Error reading {candidate.name}: {e}", severity="error")

        logger.info("Loaded %d conflicted file(s)", len(self.documents))
        self.current_path = None
        self._refresh_file_list()
        if self.documents:
            self._select_file(next(iter(self.documents)))
        else:
            self.editor.swap_doc("")

    def _refresh_file_list(self):
        file_list = self.query_one("#file-list", ListView)
        current_index = file_list.index
        file_list.clear()
        for path, text in self.documents.items():
            file_list.append(FileItem(path, count_conflicts(text)))
        if current_index is not None and self.documents:
            file_list.index = min(current_index, len(self.documents) - 1)

    def _select_file(self, path: Path):
        """Swap the buffer to another file, keeping edits of the current one."""
        if path == self.current_path:
            return
        if self.current_path is not None:
            self.documents[self.current_path] = self.editor.get_value()
        self.current_path = path
        self.query_one("#buffer-view", BufferView).border_title = str(path.name)
        self.editor.swap_doc(self.documents[path])

    def on_list_view_selected(self, event: ListView.Selected):
        if isinstance(event.item, FileItem):
            self._select_file(event.item.path)

    # =========================================================================
    # Rendering
    # =========================================================================

    def _schedule(self, delay: float, callback):
        """Deferred scan that re-renders once the scan has run."""
        def run():
            callback()
            self._refresh_view()

        self.set_timer(delay, run)

    def _buffer_changed(self, editor: LineBuffer, changes: list | None = None):
        self._refresh_view()

    def _refresh_view(self):
        if self._render_pending:
            return
        self._render_pending = True
        self.call_after_refresh(self._render_buffer)

    async def _render_buffer(self):
        self._render_pending = False
        await self.query_one("#buffer-view", BufferView).rebuild(self.editor)
        self._update_status()

    def _update_status(self):
        remaining = count_conflicts(self.editor.get_value())
        cursor = self.editor.get_cursor()
        name = self.current_path.name if self.current_path else "-"
        self.query_one("#file-info", Static).update(f"{name}  Ln {cursor.line + 1}")
        if remaining:
            self.query_one("#conflict-info", Static).update(f"[yellow]● {remaining} conflict(s)[/]")
        else:
            self.query_one("#conflict-info", Static).update("[green]✓ resolved[/]")

    # =========================================================================
    # Resolution
    # =========================================================================

    def accept_branch(self, control: ConflictControl, branch: Branch):
        """Handle a click on one of a control's choices."""
        try:
            control.activate(branch)
        except (MalformedConflictBlock, LookupError, IndexError) as e:
            logger.warning("Cannot resolve: %s", e)
            self.notify(str(e), severity="error", timeout=5)
            return
        self._after_resolution(branch)

    def _accept_at_cursor(self, branch: Branch):
        try:
            self.session.resolve_at_cursor(branch)
        except (MalformedConflictBlock, IndexError) as e:
            self.notify(str(e), severity="warning", timeout=3)
            return
        self._after_resolution(branch)

    def _sync_document(self):
        """Store the buffer for the current file and recount the sidebar."""
        if self.current_path is not None:
            self.documents[self.current_path] = self.editor.get_value()
        self._refresh_file_list()

    def _after_resolution(self, branch: Branch):
        self._sync_document()
        self.notify(branch.title.replace("Accept", "Accepted"), timeout=2)

    def action_accept_current(self):
        self._accept_at_cursor(Branch.OURS)

    def action_accept_incoming(self):
        self._accept_at_cursor(Branch.THEIRS)

    def action_accept_both(self):
        self._accept_at_cursor(Branch.BOTH)

    def action_undo(self):
        if not self.editor.undo():
            self.notify("Nothing to undo", timeout=2)
            return
        self._sync_document()

    def action_redo(self):
        if not self.editor.redo():
            self.notify("Nothing to redo", timeout=2)
            return
        self._sync_document()

    # =========================================================================
    # Navigation
    # =========================================================================

    def _move_cursor(self, line: int):
        self.editor.set_cursor(max(0, min(line, self.editor.line_count() - 1)))
        self._refresh_view()

    def action_cursor_down(self):
        self._move_cursor(self.editor.get_cursor().line + 1)

    def action_cursor_up(self):
        self._move_cursor(self.editor.get_cursor().line - 1)

    def action_next_conflict(self):
        line = self.editor.get_cursor().line
        for block in find_conflict_blocks(self.editor.lines):
            if block.start > line:
                self._move_cursor(block.start)
                return

    def action_prev_conflict(self):
        line = self.editor.get_cursor().line
        for block in reversed(find_conflict_blocks(self.editor.lines)):
            if block.start < line:
                self._move_cursor(block.start)
                return

    def _step_file(self, step: int):
        paths = list(self.documents)
        if not paths or self.current_path not in paths:
            return
        idx = paths.index(self.current_path) + step
        if 0 <= idx < len(paths):
            self._select_file(paths[idx])
            self.query_one("#file-list", ListView).index = idx

    def action_next_file(self):
        self._step_file(1)

    def action_prev_file(self):
        self._step_file(-1)

    def action_toggle_sidebar(self):
        self.query_one("#file-sidebar").toggle_class("hidden")

    # =========================================================================
    # File Operations
    # =========================================================================

    def action_save_file(self):
        """Save the resolved file and stage it."""
        if self.current_path is None:
            self.notify("No file selected", severity="warning")
            return

        remaining = sum(
            1 for line in self.editor.lines if is_incoming_start(line) or is_current_end(line)
        )
        if remaining:
            self.notify(f"Cannot save: {remaining} conflict marker line(s) left", severity="error")
            return

        def handle_confirm(confirmed: bool):
            if confirmed:
                self._do_save()

        self.push_screen(
            ConfirmDialog("Save File", f"Save resolved conflicts to {self.current_path.name}?"),
            handle_confirm,
        )

    def _do_save(self):
        """Actually write the file."""
        path = self.current_path
        if path is None:
            return
        content = self.editor.get_value()
        try:
            path.write_text(content)
        except OSError as e:
            logger.error("Saving %s failed: %s", path, e)
            self.notify(f"Error saving: {e}", severity="error")
            return

        self.documents[path] = content
        if ConflictDetector.stage_file(path):
            self.notify(f"Saved and staged: {path.name}", timeout=3)
        else:
            self.notify(f"Saved: {path.name} (not staged)", timeout=3)
        logger.info("Saved %s", path)
        self._refresh_file_list()

    def action_refresh(self):
        self._load_conflicts()
        self.notify("Refreshed", timeout=2)


# =============================================================================
# Entry Point
# =============================================================================


def main():
    """Entry point."""
    paths = [Path(arg) for arg in sys.argv[1:]] or None
    config = load_config()
    setup_logging(config)
    app = MergeResolverApp(paths, config)
    app.run()


if __name__ == "__main__":
    main()
