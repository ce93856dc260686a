# devtree

`devtree` keeps a device tree in memory as Python objects. You can build,
merge and query the tree, give its nodes phandles, generate overlay symbol and
fixup nodes, and write the tree out as `/dts-v1/` device tree source.

## Modules

- `devtree.livetree` holds the tree model.
  - `DeviceTree` has a root `Node`, a list of `ReserveEntry` memory
    reservations, `boot_cpuid_phys` and a `PhandleFormat`. It has these
    methods:
    - `add_reserve_entry`.
    - `add_orphan_node`, which wraps a node as an overlay `fragment@N` with
      a `target` reference.
    - `get_node_phandle`, which gives a node the next free phandle and adds
      a `phandle` property, a `linux,phandle` property, or both, depending
      on the `PhandleFormat`.
    - `sort`, which sorts the reserve entries, the properties and the
      subnodes.
    - `generate_label_tree`, `generate_fixups_tree` and
      `generate_local_fixups_tree`, which build the `__symbols__`,
      `__fixups__` and `__local_fixups__` nodes.
  - `Node` has `add_property`, `add_child`, `get_property`, `get_subnode`,
    `append_to_property`, `delete`, `delete_property_by_name` and
    `delete_child_by_name`. It also has `merge`, which folds another node
    into this one so that later values win. The properties `fullpath` and
    `unitname` give the node's path and the part of its name after `@`.
  - `Property` holds a name, a `PropertyValue` and labels. `PropertyValue`
    holds bytes and `Marker`s. Use `append_data`, `append_cell`,
    `append_integer` and `add_marker` to build a value.
  - The module-level lookups are `get_node_by_path`, `get_node_by_label`,
    `get_node_by_phandle`, `get_node_by_ref`, `get_property_by_label`,
    `get_marker_label` and `guess_boot_cpuid`. The helpers `add_label` and
    `delete_labels` manage lists of labels.
- `devtree.treesource` has `to_source(tree)` and `write_source(stream,
  tree)`. Each property value is written in one of three forms:
  - as strings, when the bytes are printable text ending in NUL;
  - as `<cells>`, when the length is a multiple of four;
  - as `[bytes]` in every other case.

  Deleted nodes, properties and labels are left out.
- `devtree.srcpos` handles positions in source files.
  - `SourceTracker` opens files from the current file's directory and then
    from each search path in turn. It records the files it opens in an
    optional dependency stream. It tracks nested includes, up to 100 deep.
    It advances line and column numbers over text, with tab stops every 8
    columns, and returns a `SourcePos`.
  - `str(pos)` renders a position as `file:line.col-line.col`.
  - `format_error` prefixes a message with a position.
- `devtree.util` holds small helpers:
  - `join_path` joins a directory and a file name.
  - `is_printable_string` checks property data.
  - `get_escape_char` decodes `\n`, octal and `\x..` escapes.
  - `decode_type` parses type strings such as `"hx"`.
  - `format_prop_data` renders property data.
  - `read_blob` and `write_blob` read and write blob files. `"-"` means
    stdin or stdout. `write_blob` writes as many bytes as the blob's header
    gives as its total size.
  - `version_text` and `usage_text` build a tool's version and usage
    messages, with `LongOption` describing each option.

## Example

```python
from devtree.livetree import (
    DeviceTree, Node, Property, PropertyValue, ReserveEntry, add_label,
)
from devtree.treesource import to_source

root = Node("")
root.add_property(Property("compatible", PropertyValue(b"test_tree1\0")))

child = Node("subnode@1")
child.add_property(Property("prop-int", PropertyValue().append_cell(0xDEADBEEF)))
add_label(child.labels, "s1")
root.add_child(child)

tree = DeviceTree(root)
tree.add_reserve_entry(ReserveEntry(0x1000, 0x2000))
tree.generate_label_tree("__symbols__", allocph=True)

print(to_source(tree))
```

This example produces the following:

- a `/memreserve/` line;
- the root node with its `compatible` string;
- `subnode@1` with `prop-int = <0xdeadbeef>`, its `s1:` label and a newly
  allocated `phandle`;
- a `__symbols__` node in which `s1 = "/subnode@1"`.

## Errors

Bad input raises ordinary Python exceptions:

- `ValueError` for a bad escape, a bad type string, an invalid phandle or a
  misplaced label marker.
- `OSError` when a source file cannot be found.
- `RuntimeError` when includes are nested too deeply.

A label that already exists in the symbols node causes a warning through the
`warnings` module.

## What it does not do

- It has no parser for device tree source. You build trees with the classes
  above.
- It does not read or edit the internal structure of binary `.dtb` blobs.
  `read_blob` and `write_blob` only move the bytes to and from files.
- It has no command-line tools.

## Installing and testing

```
pip install .
pip install ".[test]"
pytest
```