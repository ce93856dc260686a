import io

import pytest

from devtree.livetree import (
    DeviceTree,
    Label,
    MarkerType,
    Node,
    Property,
    PropertyValue,
    ReserveEntry,
)
from devtree.treesource import to_source, write_source


def _tree_with(*props, children=()):
    return DeviceTree(Node("", props, children))


def _prop_line(text, name):
    for line in text.splitlines():
        if line.strip().startswith(name):
            return line.strip()
    raise AssertionError(f"{name} not in output")


def test_empty_tree():
    assert to_source(DeviceTree(Node(""))) == "/dts-v1/;\n\n/ {\n};\n"


def test_write_source_matches_to_source():
    tree = _tree_with(Property("a", PropertyValue(b"x\0")))
    buf = io.StringIO()
    write_source(buf, tree)
    assert buf.getvalue() == to_source(tree)


def test_string_property():
    out = to_source(_tree_with(Property("compatible", PropertyValue(b"abc\0"))))
    assert '\tcompatible = "abc";\n' in out


def test_string_list_property():
    line = _prop_line(to_source(_tree_with(
        Property("compatible", PropertyValue(b"ab\0cd\0")))), "compatible")
    assert line.count('"') == 4
    assert ", " in line


def test_cells_property():
    value = PropertyValue().append_cell(1).append_cell(0x2A)
    line = _prop_line(to_source(_tree_with(Property("reg", value))), "reg")
    assert line == "reg = <0x1 0x2a>;"


def test_bytes_property():
    line = _prop_line(to_source(_tree_with(
        Property("mac", PropertyValue(b"\x01\xab\x03")))), "mac")
    assert line.startswith("mac = [") and line.endswith("];")
    inner = line[len("mac = ["):-2].split()
    assert [int(x, 16) for x in inner] == [0x01, 0xAB, 0x03]


def test_empty_property():
    line = _prop_line(to_source(_tree_with(Property("flag"))), "flag")
    assert line == "flag;"


def test_escapes_in_string():
    line = _prop_line(to_source(_tree_with(
        Property("s", PropertyValue(b'a\tb"c\\\0')))), "s")
    assert "\\t" in line
    assert '\\"' in line
    assert "\\\\" in line


def test_deleted_items_omitted():
    gone = Property("gone", PropertyValue(b"x\0"), deleted=True)
    child = Node("child", deleted=True)
    out = to_source(_tree_with(gone, children=[child]))
    assert "gone" not in out
    assert "child" not in out


def test_child_indented_and_separated():
    child = Node("dev@1", [Property("p", PropertyValue(b"x\0"))])
    out = to_source(_tree_with(children=[child]))
    assert "\n\n\tdev@1 {\n" in out
    assert "\t\tp = " in out
    assert out.endswith("\t};\n};\n")


def test_node_and_property_labels():
    child = Node("dev")
    child.labels.append(Label("mylabel"))
    prop = Property("p", PropertyValue(b"x\0"), [Label("plabel")])
    out = to_source(_tree_with(prop, children=[child]))
    assert "\tmylabel: dev {" in out
    assert "\tplabel: p = " in out


def test_label_markers_in_string_value():
    value = PropertyValue().add_marker(MarkerType.LABEL, "start")
    value.append_data(b"ab\0")
    value.add_marker(MarkerType.LABEL, "mid")
    value.append_data(b"cd\0")
    value.add_marker(MarkerType.LABEL, "end")
    line = _prop_line(to_source(_tree_with(Property("s", value))), "s")
    assert line.index("start: ") < line.index("mid: ") < line.index(" end:")


def test_label_markers_in_cells_value():
    value = PropertyValue().append_cell(5)
    value.add_marker(MarkerType.LABEL, "second")
    value.append_cell(6)
    value.add_marker(MarkerType.LABEL, "tail")
    line = _prop_line(to_source(_tree_with(Property("c", value))), "c")
    assert "second: 0x6" in line
    assert line.endswith(" tail:>;")


def _marker(offset):
    from devtree.livetree import Marker

    return Marker(offset, MarkerType.LABEL, f"m{offset}")


def test_memreserve_lines():
    tree = DeviceTree(Node(""))
    entry = ReserveEntry(0x1000, 0x2000)
    entry.labels.append(Label("res"))
    tree.add_reserve_entry(entry)
    out = to_source(tree)
    lines = out.splitlines()
    assert lines[2].startswith("res: /memreserve/\t0x")
    addr, size = lines[2].split("\t")[1].rstrip(";").split()
    assert int(addr, 16) == 0x1000 and len(addr) == 18
    assert int(size, 16) == 0x2000 and len(size) == 18


def test_non_printable_string_falls_back_to_bytes():
    line = _prop_line(to_source(_tree_with(
        Property("q", PropertyValue(b"\x80\0")))), "q")
    assert line.startswith("q = [")