import io

import pytest

from devtree.srcpos import (
    SRCPOS_EMPTY,
    SourceFile,
    SourcePos,
    SourceTracker,
    format_error,
)


@pytest.fixture
def tracker():
    t = SourceTracker()
    yield t
    while t.current is not None:
        t.pop()


def test_empty_position_has_no_file():
    assert str(SourcePos(0, 0, 0, 0, None)) == "<no-file>:0.0"
    assert format_error(SRCPOS_EMPTY, "ERROR", "msg") == "ERROR: <no-file>:0.0 msg"


def test_position_same_line_and_column():
    pos = SourcePos(3, 4, 3, 4, SourceFile("a.dts", None))
    assert str(pos) == "a.dts:3.4"


def test_position_same_line_column_range():
    pos = SourcePos(3, 4, 3, 9, SourceFile("a.dts", None))
    assert str(pos) == "a.dts:3.4-9"


def test_position_multi_line():
    pos = SourcePos(3, 4, 5, 2, SourceFile("a.dts", None))
    assert str(pos) == "a.dts:3.4-5.2"


def test_format_error_includes_prefix_position_and_message():
    pos = SourcePos(1, 1, 1, 1, SourceFile("x.dts", None))
    text = format_error(pos, "ERROR", "bad thing")
    assert text == f"ERROR: {pos} bad thing"


def test_push_sets_current(tmp_path, tracker):
    path = tmp_path / "a.dts"
    path.write_text("/ { };\n")
    srcfile = tracker.push(str(path))
    assert tracker.current is srcfile
    assert srcfile.name == str(path)
    assert srcfile.dir == str(tmp_path)
    assert (srcfile.lineno, srcfile.colno) == (1, 1)
    assert srcfile.stream.read() == b"/ { };\n"


def test_update_tracks_lines_and_columns(tmp_path, tracker):
    path = tmp_path / "a.dts"
    path.write_text("")
    tracker.push(str(path))
    pos = tracker.update("ab")
    assert (pos.first_line, pos.first_column) == (1, 1)
    assert (pos.last_line, pos.last_column) == (1, 3)
    pos = tracker.update("c\nd")
    assert (pos.first_line, pos.first_column) == (1, 3)
    assert (pos.last_line, pos.last_column) == (2, 2)
    assert pos.file is tracker.current


def test_update_tab_aligns_column(tmp_path, tracker):
    path = tmp_path / "a.dts"
    path.write_text("")
    tracker.push(str(path))
    tracker.update("\t")
    first = tracker.current.colno
    assert first % 8 == 0
    tracker.update("\t")
    assert tracker.current.colno == first


def test_update_without_file_raises():
    with pytest.raises(RuntimeError):
        SourceTracker().update("x")


def test_relative_to_current_file(tmp_path, tracker):
    sub = tmp_path / "sub"
    sub.mkdir()
    (sub / "main.dts").write_text("")
    (sub / "inc.dtsi").write_text("inc")
    tracker.push(str(sub / "main.dts"))
    inner = tracker.push("inc.dtsi")
    assert inner.name == str(sub / "inc.dtsi")
    assert inner.stream.read() == b"inc"
    assert tracker.pop() is True
    assert tracker.pop() is False


def test_search_path_used(tmp_path, tracker):
    inc = tmp_path / "include"
    inc.mkdir()
    (inc / "x.dtsi").write_text("x")
    tracker.add_search_path(str(inc))
    tracker.add_search_path(str(tmp_path / "missing"))
    srcfile = tracker.push("x.dtsi")
    assert srcfile.name == str(inc / "x.dtsi")


def test_missing_file_raises(tmp_path):
    t = SourceTracker()
    with pytest.raises(OSError):
        t.relative_open(str(tmp_path / "nope.dts"))


def test_depfile_records_names(tmp_path):
    dep = io.StringIO()
    t = SourceTracker(dep)
    path = tmp_path / "a.dts"
    path.write_text("")
    stream, fullname = t.relative_open(str(path))
    stream.close()
    assert dep.getvalue() == f" {fullname}"


def test_pop_without_file_raises():
    with pytest.raises(RuntimeError):
        SourceTracker().pop()


def test_nesting_limit(tmp_path, tracker):
    path = tmp_path / "a.dts"
    path.write_text("")
    for _ in range(100):
        tracker.push(str(path))
    with pytest.raises(RuntimeError):
        tracker.push(str(path))


def test_set_line(tmp_path, tracker):
    path = tmp_path / "a.dts"
    path.write_text("")
    tracker.push(str(path))
    tracker.set_line("other.dts", 42)
    pos = tracker.update("x")
    assert pos.file.name == "other.dts"
    assert pos.first_line == 42
    assert str(pos).startswith("other.dts:42.")