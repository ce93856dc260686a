"""In-memory device tree: nodes, properties, labels and reference fixups."""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from enum import Enum, IntFlag, auto

from .util import join_path

_NO_PHANDLE = (0, -1, 0xFFFFFFFF)


class MarkerType(Enum):
    """What a marker inside a property value refers to."""

    REF_PHANDLE = auto()
    REF_PATH = auto()
    LABEL = auto()


@dataclass
class Marker:
    """A reference or label at a byte offset within a property value."""

    offset: int
    type: MarkerType
    ref: str


@dataclass
class PropertyValue:
    """Raw property bytes with the markers placed in them."""

    data: bytearray = field(default_factory=bytearray)
    markers: list[Marker] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.data = bytearray(self.data)

    def append_data(self, data: bytes) -> PropertyValue:
        """Append raw bytes."""
        self.data.extend(data)
        return self

    def append_integer(self, value: int, bits: int) -> PropertyValue:
        """Append a big-endian integer of 8, 16, 32 or 64 bits."""
        if bits not in (8, 16, 32, 64):
            raise ValueError(f"invalid literal size {bits}")
        mask = (1 << bits) - 1
        self.data.extend((value & mask).to_bytes(bits // 8, "big"))
        return self

    def append_cell(self, value: int) -> PropertyValue:
        """Append one 32-bit cell."""
        return self.append_integer(value, 32)

    def add_marker(self, kind: MarkerType, ref: str) -> PropertyValue:
        """Place a marker at the current end of the data."""
        self.markers.append(Marker(len(self.data), kind, ref))
        return self


def _markers_of(val: PropertyValue, kind: MarkerType) -> list[Marker]:
    return [m for m in val.markers if m.type is kind]


def _live(items):
    return [item for item in items if not item.deleted]


@dataclass
class Label:
    """A label attached to a node, property or reserve entry."""

    label: str
    deleted: bool = False


def add_label(labels: list[Label], label: str) -> None:
    """Add a label at the front of the list, reviving it if already present."""
    for existing in labels:
        if existing.label == label:
            existing.deleted = False
            return
    labels.insert(0, Label(label))


def delete_labels(labels: list[Label]) -> None:
    """Mark every live label in the list as deleted."""
    for label in _live(labels):
        label.deleted = True


@dataclass
class Property:
    """A named property of a node."""

    name: str
    val: PropertyValue = field(default_factory=PropertyValue)
    labels: list[Label] = field(default_factory=list)
    deleted: bool = False

    def delete(self) -> None:
        """Mark the property and its labels as deleted."""
        self.deleted = True
        delete_labels(self.labels)

    def cell(self) -> int:
        """The value as a single 32-bit cell."""
        if len(self.val.data) != 4:
            raise ValueError(f"property {self.name} is not a single cell")
        return int.from_bytes(self.val.data, "big")


class Node:
    """A device tree node with properties and child nodes."""

    def __init__(self, name=None, properties=(), children=(), *, deleted=False):
        self.name: str | None = name
        self.properties: list[Property] = list(properties)
        self.children: list[Node] = []
        self.labels: list[Label] = []
        self.deleted: bool = deleted
        self.phandle: int = 0
        self.parent: Node | None = None
        for child in children:
            child.parent = self
            self.children.append(child)

    def __repr__(self) -> str:
        return f"Node({self.name!r}, deleted={self.deleted})"

    @property
    def unitname(self) -> str:
        """The part of the name after the first '@', or ""."""
        return (self.name or "").partition("@")[2]

    @property
    def fullpath(self) -> str:
        """The absolute path of this node."""
        if self.parent is None:
            return "/"
        return join_path(self.parent.fullpath, self.name or "")

    def add_property(self, prop: Property) -> None:
        """Append a property."""
        self.properties.append(prop)

    def delete_property_by_name(self, name: str) -> None:
        """Delete the first property with this name, if any."""
        for prop in self.properties:
            if prop.name == name:
                prop.delete()
                return

    def add_child(self, child: Node) -> None:
        """Append a child node and make this node its parent."""
        child.parent = self
        self.children.append(child)

    def delete_child_by_name(self, name: str) -> None:
        """Delete the first child with this name, if any."""
        for child in self.children:
            if child.name == name:
                child.delete()
                return

    def delete(self) -> None:
        """Mark this node, its subtree, its properties and labels as deleted."""
        self.deleted = True
        for child in _live(self.children):
            child.delete()
        for prop in _live(self.properties):
            prop.delete()
        delete_labels(self.labels)

    def get_property(self, name: str) -> Property | None:
        """The live property with this name, or None."""
        for prop in _live(self.properties):
            if prop.name == name:
                return prop
        return None

    def get_subnode(self, name: str) -> Node | None:
        """The live child with this name, or None."""
        for child in _live(self.children):
            if child.name == name:
                return child
        return None

    def append_to_property(self, name: str, data: bytes) -> None:
        """Append bytes to a property, creating it when missing."""
        prop = self.get_property(name)
        if prop is not None:
            prop.val.append_data(data)
        else:
            self.add_property(Property(name, PropertyValue(data)))

    def merge(self, other: Node) -> Node:
        """Fold another node's contents into this one; later values win."""
        self.deleted = False
        for label in other.labels:
            add_label(self.labels, label.label)

        incoming = other.properties
        other.properties = []
        for new_prop in incoming:
            if new_prop.deleted:
                self.delete_property_by_name(new_prop.name)
                continue
            for old_prop in self.properties:
                if old_prop.name == new_prop.name:
                    for label in new_prop.labels:
                        add_label(old_prop.labels, label.label)
                    old_prop.val = new_prop.val
                    old_prop.deleted = False
                    break
            else:
                self.add_property(new_prop)

        incoming_children = other.children
        other.children = []
        for new_child in incoming_children:
            new_child.parent = None
            if new_child.deleted:
                self.delete_child_by_name(new_child.name)
                continue
            for old_child in self.children:
                if old_child.name == new_child.name:
                    old_child.merge(new_child)
                    break
            else:
                self.add_child(new_child)
        return self


@dataclass
class ReserveEntry:
    """A memory reservation: start address and size."""

    address: int
    size: int
    labels: list[Label] = field(default_factory=list)


class PhandleFormat(IntFlag):
    """Which phandle properties are written for allocated phandles."""

    LEGACY = 1
    EPAPR = 2
    BOTH = 3


def get_node_by_path(tree: Node, path: str | None) -> Node | None:
    """Find a node by a path relative to tree."""
    if not path:
        return None if tree.deleted else tree
    path = path.lstrip("/")
    head, sep, rest = path.partition("/")
    for child in _live(tree.children):
        if sep and child.name == head:
            return get_node_by_path(child, rest)
        if not sep and child.name == path:
            return child
    return None


def get_node_by_label(tree: Node, label: str) -> Node | None:
    """Find the first node carrying a live label."""
    if not label:
        raise ValueError("label must not be empty")
    if any(lbl.label == label for lbl in _live(tree.labels)):
        return tree
    for child in _live(tree.children):
        found = get_node_by_label(child, label)
        if found is not None:
            return found
    return None


def get_node_by_phandle(tree: Node, phandle: int) -> Node | None:
    """Find the node with this phandle."""
    if phandle in _NO_PHANDLE:
        raise ValueError(f"invalid phandle {phandle:#x}")
    if tree.phandle == phandle:
        return None if tree.deleted else tree
    for child in _live(tree.children):
        found = get_node_by_phandle(child, phandle)
        if found is not None:
            return found
    return None


def get_node_by_ref(tree: Node, ref: str) -> Node | None:
    """Resolve a reference given as "/", a path or a label."""
    if ref == "/":
        return tree
    if ref.startswith("/"):
        return get_node_by_path(tree, ref)
    return get_node_by_label(tree, ref)


def get_property_by_label(tree: Node, label: str):
    """Find the property carrying a label; returns (node, property) or None."""
    for prop in _live(tree.properties):
        if any(lbl.label == label for lbl in _live(prop.labels)):
            return tree, prop
    for child in _live(tree.children):
        found = get_property_by_label(child, label)
        if found is not None:
            return found
    return None


def get_marker_label(tree: Node, label: str):
    """Find a label marker inside a value; returns (node, property, marker) or None."""
    for prop in _live(tree.properties):
        for marker in _markers_of(prop.val, MarkerType.LABEL):
            if marker.ref == label:
                return tree, prop, marker
    for child in _live(tree.children):
        found = get_marker_label(child, label)
        if found is not None:
            return found
    return None


def guess_boot_cpuid(tree: Node) -> int:
    """The reg cell of the first node under /cpus, or 0."""
    cpus = get_node_by_path(tree, "/cpus")
    if cpus is None or not cpus.children:
        return 0
    reg = cpus.children[0].get_property("reg")
    if reg is None or len(reg.val.data) != 4:
        return 0
    return reg.cell()


def _sort_node(node: Node) -> None:
    node.properties.sort(key=lambda p: p.name)
    node.children.sort(key=lambda c: c.name or "")
    for child in node.children:
        _sort_node(child)


def _child_named(parent: Node, name: str) -> Node:
    node = Node(name)
    parent.add_child(node)
    return node


@dataclass
class DeviceTree:
    """A whole device tree: root node, reserve map and boot CPU."""

    root: Node
    reservelist: list[ReserveEntry] = field(default_factory=list)
    boot_cpuid_phys: int = 0
    dtsflags: int = 0
    phandle_format: PhandleFormat = PhandleFormat.EPAPR
    _next_phandle: int = field(default=1, init=False, repr=False)
    _next_fragment: int = field(default=0, init=False, repr=False)

    def add_reserve_entry(self, entry: ReserveEntry) -> None:
        """Append a memory reservation."""
        self.reservelist.append(entry)

    def add_orphan_node(self, new_node: Node, ref: str) -> Node:
        """Wrap a node as an overlay fragment targeting ref and add it to the root."""
        if new_node.name is not None:
            raise ValueError("orphan node is already named")
        value = PropertyValue().add_marker(MarkerType.REF_PHANDLE, ref)
        value.append_integer(0xFFFFFFFF, 32)
        new_node.name = "__overlay__"
        fragment = Node(
            f"fragment@{self._next_fragment}",
            [Property("target", value)],
            [new_node],
        )
        self._next_fragment += 1
        self.root.add_child(fragment)
        return fragment

    def get_node_phandle(self, node: Node) -> int:
        """Return the node's phandle, allocating a free one when it has none."""
        if node.phandle not in _NO_PHANDLE:
            return node.phandle
        while get_node_by_phandle(self.root, self._next_phandle) is not None:
            self._next_phandle += 1
        node.phandle = self._next_phandle
        if (node.get_property("linux,phandle") is None
                and self.phandle_format & PhandleFormat.LEGACY):
            node.add_property(Property(
                "linux,phandle", PropertyValue().append_cell(node.phandle)))
        if (node.get_property("phandle") is None
                and self.phandle_format & PhandleFormat.EPAPR):
            node.add_property(Property(
                "phandle", PropertyValue().append_cell(node.phandle)))
        return node.phandle

    def sort(self) -> None:
        """Sort reserve entries, properties and subnodes."""
        self.reservelist.sort(key=lambda r: (r.address, r.size))
        _sort_node(self.root)

    def _root_child(self, name: str) -> Node:
        found = self.root.get_subnode(name)
        return found if found is not None else _child_named(self.root, name)

    def _any_label(self, node: Node) -> bool:
        if node.labels:
            return True
        return any(self._any_label(c) for c in _live(node.children))

    def _any_ref(self, node: Node, resolved: bool) -> bool:
        for prop in _live(node.properties):
            for marker in _markers_of(prop.val, MarkerType.REF_PHANDLE):
                found = get_node_by_ref(self.root, marker.ref) is not None
                if found == resolved:
                    return True
        return any(self._any_ref(c, resolved) for c in _live(node.children))

    def generate_label_tree(self, name: str = "__symbols__",
                            allocph: bool = False) -> None:
        """Add a root child mapping every label to its node's path."""
        if not self._any_label(self.root):
            return
        self._label_tree(self._root_child(name), self.root, allocph)

    def _label_tree(self, an: Node, node: Node, allocph: bool) -> None:
        if node.labels:
            for label in _live(node.labels):
                if an.get_property(label.label) is not None:
                    warnings.warn(
                        f"label {label.label} already exists in /{an.name}")
                    continue
                path = node.fullpath.encode() + b"\0"
                an.add_property(Property(label.label, PropertyValue(path)))
            if allocph:
                self.get_node_phandle(node)
        for child in _live(node.children):
            self._label_tree(an, child, allocph)

    def generate_fixups_tree(self, name: str = "__fixups__") -> None:
        """Record every unresolved phandle reference under a root child."""
        if not self._any_ref(self.root, resolved=False):
            return
        self._fixups(self._root_child(name), self.root)

    def _fixups(self, fn: Node, node: Node) -> None:
        for prop in _live(node.properties):
            for marker in _markers_of(prop.val, MarkerType.REF_PHANDLE):
                if get_node_by_ref(self.root, marker.ref) is None:
                    if ":" in node.fullpath or ":" in prop.name:
                        raise ValueError("arguments should not contain ':'")
                    entry = f"{node.fullpath}:{prop.name}:{marker.offset}"
                    fn.append_to_property(marker.ref, entry.encode() + b"\0")
        for child in _live(node.children):
            self._fixups(fn, child)

    def generate_local_fixups_tree(self, name: str = "__local_fixups__") -> None:
        """Record the offsets of resolved phandle references under a root child."""
        if not self._any_ref(self.root, resolved=True):
            return
        self._local_fixups(self._root_child(name), self.root)

    def _local_fixups(self, lfn: Node, node: Node) -> None:
        for prop in _live(node.properties):
            for marker in _markers_of(prop.val, MarkerType.REF_PHANDLE):
                if get_node_by_ref(self.root, marker.ref) is not None:
                    self._add_local_fixup(lfn, node, prop, marker)
        for child in _live(node.children):
            self._local_fixups(lfn, child)

    @staticmethod
    def _add_local_fixup(lfn: Node, node: Node, prop: Property,
                         marker: Marker) -> None:
        names = []
        walk: Node | None = node
        while walk is not None:
            names.append(walk.name or "")
            walk = walk.parent
        target = lfn
        for component in reversed(names[:-1]):
            found = target.get_subnode(component)
            target = found if found is not None else _child_named(target, component)
        target.append_to_property(prop.name, marker.offset.to_bytes(4, "big"))