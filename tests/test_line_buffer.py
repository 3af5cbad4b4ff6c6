"""Tests for the in-memory host editor."""

import pytest

from line_buffer import END_OF_LINE, LineBuffer, Position, Selection
from tests.conftest import SAMPLE, make_buffer


def cursor(line: int, ch: int = 0) -> Selection:
    return Selection(Position(line, ch), Position(line, ch))


class TestReading:
    def test_empty_buffer_has_one_line(self):
        buffer = LineBuffer()
        assert buffer.lines == [""]
        assert buffer.line_count() == 1

    def test_get_value_round_trips_text(self):
        buffer = LineBuffer("a\nb\n")
        assert buffer.lines == ["a", "b", ""]
        assert buffer.get_value() == "a\nb\n"

    def test_get_line_out_of_range(self, sample_buffer):
        with pytest.raises(IndexError):
            sample_buffer.get_line(6)
        with pytest.raises(IndexError):
            sample_buffer.get_line(-1)

    def test_each_line_stops_on_truthy_result(self, sample_buffer):
        seen = []

        def visit(handle):
            seen.append(handle.text)
            return handle.text == "======="

        sample_buffer.each_line(visit)
        assert seen == SAMPLE[:4]

    def test_each_line_range(self, sample_buffer):
        seen = []
        sample_buffer.each_line(lambda h: seen.append(h.line_no()), 2, 4)
        assert seen == [2, 3]


class TestDecorations:
    def test_widget_follows_its_line(self, sample_buffer):
        node = object()
        widget = sample_buffer.add_line_widget(4, node, above=True, no_hscroll=True)
        assert widget.above and widget.no_hscroll
        assert sample_buffer.line_of_widget(node) == 4

        sample_buffer.set_cursor(1)
        sample_buffer.delete_selected_lines()
        assert sample_buffer.line_of_widget(node) == 3

    def test_cleared_widget_is_not_found(self, sample_buffer):
        node = object()
        widget = sample_buffer.add_line_widget(0, node)
        widget.clear()
        with pytest.raises(LookupError):
            sample_buffer.line_of_widget(node)

    def test_line_class(self, sample_buffer):
        sample_buffer.add_line_class(0, "resolve-conflicts")
        assert "resolve-conflicts" in sample_buffer.get_line_handle(0).classes
        sample_buffer.remove_line_class(0, "resolve-conflicts")
        assert not sample_buffer.get_line_handle(0).classes


class TestReplaceRange:
    def test_append_at_end_of_line(self, sample_buffer):
        sample_buffer.replace_range(" -- Incoming Change", 0, END_OF_LINE)
        assert sample_buffer.get_line(0) == "<<<<<<< A -- Incoming Change"

    def test_insert_at_column(self):
        buffer = LineBuffer("hello")
        buffer.replace_range("X", 0, 2)
        assert buffer.get_line(0) == "heXllo"

    def test_in_place_edit_keeps_handle_and_widgets(self, sample_buffer):
        handle = sample_buffer.get_line_handle(0)
        node = object()
        sample_buffer.add_line_widget(0, node)
        sample_buffer.replace_range("!", 0)
        assert sample_buffer.get_line_handle(0) is handle
        assert sample_buffer.line_of_widget(node) == 0

    def test_edit_is_undoable(self, sample_buffer):
        sample_buffer.replace_range("!", 5)
        assert sample_buffer.history_size() == (1, 0)
        sample_buffer.undo()
        assert sample_buffer.lines == SAMPLE

    def test_clear_history(self, sample_buffer):
        sample_buffer.replace_range("!", 5)
        sample_buffer.clear_history()
        assert sample_buffer.history_size() == (0, 0)
        assert sample_buffer.undo() is False
        assert sample_buffer.get_line(5) == ">>>>>>> B!"


class TestDeleteSelectedLines:
    def test_deletes_all_selected_lines_in_one_step(self, sample_buffer):
        events = []
        sample_buffer.on("changes", lambda buf, changes: events.append(list(buf.lines)))

        sample_buffer.set_selections([cursor(0), cursor(3), cursor(5)])
        deleted = sample_buffer.delete_selected_lines()

        assert deleted == [0, 3, 5]
        assert sample_buffer.lines == ["incoming1", "incoming2", "current1"]
        assert events == [["incoming1", "incoming2", "current1"]]
        assert sample_buffer.history_size() == (1, 0)

    def test_range_selection_covers_every_line(self, sample_buffer):
        sample_buffer.set_selections([Selection(Position(1, 3), Position(2, 0))])
        assert sample_buffer.delete_selected_lines() == [1, 2]
        assert sample_buffer.lines == ["<<<<<<< A", "=======", "current1", ">>>>>>> B"]

    def test_deleting_everything_leaves_an_empty_line(self):
        buffer = make_buffer(["a", "b"])
        buffer.set_selections([cursor(0), cursor(1)])
        buffer.delete_selected_lines()
        assert buffer.lines == [""]

    def test_deleted_handles_lose_their_line(self, sample_buffer):
        handle = sample_buffer.get_line_handle(3)
        sample_buffer.set_cursor(3)
        sample_buffer.delete_selected_lines()
        assert handle.line_no() is None

    def test_set_selections_requires_a_range(self, sample_buffer):
        with pytest.raises(ValueError):
            sample_buffer.set_selections([])


class TestHistory:
    def test_undo_reinserts_top_line_first(self, sample_buffer):
        sample_buffer.set_selections([cursor(0), cursor(3), cursor(5)])
        sample_buffer.delete_selected_lines()

        received = []
        sample_buffer.on("changes", lambda buf, changes: received.append(changes))
        assert sample_buffer.undo() is True

        assert sample_buffer.lines == SAMPLE
        first = received[0][0]
        assert first.origin == "undo"
        assert first.from_line == 0
        assert first.text == ["<<<<<<< A"]

    def test_undo_restores_selections(self, sample_buffer):
        sample_buffer.set_selections([cursor(0), cursor(3)])
        sample_buffer.delete_selected_lines()
        sample_buffer.undo()
        assert sample_buffer.list_selections() == [cursor(0), cursor(3)]
        assert sample_buffer.something_selected()

    def test_undo_of_whole_buffer_delete(self):
        buffer = make_buffer(["<<<<<<< A", "=======", ">>>>>>> B"])
        buffer.set_selections([cursor(0), cursor(1), cursor(2)])
        buffer.delete_selected_lines()

        received = []
        buffer.on("changes", lambda buf, changes: received.append(changes))
        buffer.undo()
        assert buffer.lines == ["<<<<<<< A", "=======", ">>>>>>> B"]
        assert received[0][0].text[0] == "<<<<<<< A"

    def test_redo(self, sample_buffer):
        sample_buffer.set_selections([cursor(0), cursor(5)])
        sample_buffer.delete_selected_lines()
        after = sample_buffer.lines
        sample_buffer.undo()

        origins = []
        sample_buffer.on("changes", lambda buf, changes: origins.extend(c.origin for c in changes))
        assert sample_buffer.redo() is True
        assert sample_buffer.lines == after
        assert set(origins) == {"redo"}
        assert sample_buffer.redo() is False

    def test_new_edit_drops_redo(self, sample_buffer):
        sample_buffer.replace_range("!", 1)
        sample_buffer.undo()
        sample_buffer.replace_range("?", 1)
        assert sample_buffer.history_size() == (1, 0)


class TestSwapDoc:
    def test_swap_replaces_lines_and_history(self, sample_buffer):
        node = object()
        sample_buffer.add_line_widget(0, node)
        sample_buffer.replace_range("!", 1)

        swaps = []
        sample_buffer.on("swap_doc", swaps.append)
        sample_buffer.swap_doc("one\ntwo")

        assert swaps == [sample_buffer]
        assert sample_buffer.lines == ["one", "two"]
        assert sample_buffer.history_size() == (0, 0)
        assert sample_buffer.get_cursor() == Position(0, 0)
        assert sample_buffer.widgets() == []

    def test_off_removes_listener(self, sample_buffer):
        swaps = []
        sample_buffer.on("swap_doc", swaps.append)
        sample_buffer.off("swap_doc", swaps.append)
        sample_buffer.swap_doc("x")
        assert swaps == []


class TestCursor:
    def test_set_cursor_collapses_selections(self, sample_buffer):
        sample_buffer.set_selections([cursor(1), cursor(4)])
        sample_buffer.set_cursor(sample_buffer.get_cursor())
        assert sample_buffer.list_selections() == [cursor(1)]
        assert not sample_buffer.something_selected()

    def test_cursor_is_clipped(self, sample_buffer):
        sample_buffer.set_cursor(99, 99)
        assert sample_buffer.get_cursor() == Position(5, len(">>>>>>> B"))
