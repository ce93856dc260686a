"""Writing a live device tree back out as device tree source text."""

from __future__ import annotations

import io
from typing import TextIO

from .livetree import DeviceTree, MarkerType, Node, Property, PropertyValue

_STRING_ESCAPES = {
    0x07: "\\a",
    0x08: "\\b",
    0x09: "\\t",
    0x0A: "\\n",
    0x0B: "\\v",
    0x0C: "\\f",
    0x0D: "\\r",
    0x5C: "\\\\",
    0x22: '\\"',
}

_CONTROL_STRING_BYTES = frozenset(b"\a\b\t\n\v\f\r\0")


def _isprint(byte: int) -> bool:
    return 0x20 <= byte <= 0x7E


def _isstring(byte: int) -> bool:
    return _isprint(byte) or byte in _CONTROL_STRING_BYTES


def _live_labels(labels):
    return [label.label for label in labels if not label.deleted]


def _check(condition: bool, what: str) -> None:
    if not condition:
        raise ValueError(f"misplaced label marker in {what} value")


def _trailing_labels(markers, pos: int, length: int, what: str) -> str:
    out = []
    for m in markers[pos:]:
        if m.type is MarkerType.LABEL:
            _check(m.offset == length, what)
            out.append(f" {m.ref}:")
    return "".join(out)


def _propval_string(val: PropertyValue) -> str:
    data = bytes(val.data)
    markers = val.markers
    _check(data[-1] == 0, "string")
    out = []
    pos = 0
    while pos < len(markers) and markers[pos].offset == 0:
        if markers[pos].type is MarkerType.LABEL:
            out.append(f"{markers[pos].ref}: ")
        pos += 1
    out.append('"')
    for i, byte in enumerate(data[:-1]):
        if byte in _STRING_ESCAPES:
            out.append(_STRING_ESCAPES[byte])
        elif byte == 0:
            out.append('", ')
            while pos < len(markers) and markers[pos].offset <= i + 1:
                if markers[pos].type is MarkerType.LABEL:
                    _check(markers[pos].offset == i + 1, "string")
                    out.append(f"{markers[pos].ref}: ")
                pos += 1
            out.append('"')
        elif _isprint(byte):
            out.append(chr(byte))
        else:
            out.append(f"\\x{byte:02x}")
    out.append('"')
    out.append(_trailing_labels(markers, pos, len(data), "string"))
    return "".join(out)


def _propval_cells(val: PropertyValue) -> str:
    data = bytes(val.data)
    markers = val.markers
    out = ["<"]
    pos = 0
    cells = []
    for off in range(0, len(data), 4):
        labels = []
        while pos < len(markers) and markers[pos].offset <= off:
            if markers[pos].type is MarkerType.LABEL:
                _check(markers[pos].offset == off, "cell")
                labels.append(f"{markers[pos].ref}: ")
            pos += 1
        value = int.from_bytes(data[off:off + 4], "big")
        cells.append("".join(labels) + f"0x{value:x}")
    out.append(" ".join(cells))
    out.append(_trailing_labels(markers, pos, len(data), "cell"))
    out.append(">")
    return "".join(out)


def _propval_bytes(val: PropertyValue) -> str:
    data = bytes(val.data)
    markers = val.markers
    out = ["["]
    pos = 0
    items = []
    for off, byte in enumerate(data):
        labels = []
        while pos < len(markers) and markers[pos].offset == off:
            if markers[pos].type is MarkerType.LABEL:
                labels.append(f"{markers[pos].ref}: ")
            pos += 1
        items.append("".join(labels) + f"{byte:02x}")
    out.append(" ".join(items))
    out.append(_trailing_labels(markers, pos, len(data), "byte"))
    out.append("]")
    return "".join(out)


def _propval(prop: Property) -> str:
    data = bytes(prop.val.data)
    length = len(data)
    if length == 0:
        return ";\n"
    nnotstring = sum(1 for b in data if not _isstring(b))
    nnul = data.count(0)
    nnotstringlbl = 0
    nnotcelllbl = 0
    for m in prop.val.markers:
        if m.type is not MarkerType.LABEL:
            continue
        if m.offset > 0 and data[m.offset - 1] != 0:
            nnotstringlbl += 1
        if m.offset % 4:
            nnotcelllbl += 1
    if (data[-1] == 0 and nnotstring == 0 and nnul < length - nnul
            and nnotstringlbl == 0):
        text = _propval_string(prop.val)
    elif length % 4 == 0 and nnotcelllbl == 0:
        text = _propval_cells(prop.val)
    else:
        text = _propval_bytes(prop.val)
    return f" = {text};\n"


def _write_node(stream: TextIO, node: Node, level: int) -> None:
    indent = "\t" * level
    labels = "".join(f"{label}: " for label in _live_labels(node.labels))
    name = node.name if node.name else "/"
    stream.write(f"{indent}{labels}{name} {{\n")
    for prop in node.properties:
        if prop.deleted:
            continue
        plabels = "".join(f"{label}: " for label in _live_labels(prop.labels))
        stream.write(f"{indent}\t{plabels}{prop.name}{_propval(prop)}")
    for child in node.children:
        if child.deleted:
            continue
        stream.write("\n")
        _write_node(stream, child, level + 1)
    stream.write(f"{indent}}};\n")


def write_source(stream: TextIO, tree: DeviceTree) -> None:
    """Write the tree as version 1 device tree source to a text stream."""
    stream.write("/dts-v1/;\n\n")
    for entry in tree.reservelist:
        labels = "".join(f"{label}: " for label in _live_labels(entry.labels))
        stream.write(
            f"{labels}/memreserve/\t0x{entry.address:016x} 0x{entry.size:016x};\n")
    _write_node(stream, tree.root, 0)


def to_source(tree: DeviceTree) -> str:
    """The tree as device tree source text."""
    buf = io.StringIO()
    write_source(buf, tree)
    return buf.getvalue()