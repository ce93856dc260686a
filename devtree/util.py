"""Helpers shared by the device tree tools."""

from __future__ import annotations

import sys
from dataclasses import dataclass

DTC_VERSION = "DTC 1.4.4-Android-build"

USAGE_TYPE_MSG = (
    "<type>\ts=string, i=int, u=unsigned, x=hex\n"
    "\tOptional modifier prefix:\n"
    "\t\thh or b=byte, h=2 byte, l=4 byte (default)"
)

_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "t": "\t",
    "n": "\n",
    "v": "\v",
    "f": "\f",
    "r": "\r",
}

_OCT_DIGITS = "01234567"
_HEX_DIGITS = "0123456789abcdefABCDEF"


@dataclass(frozen=True)
class LongOption:
    """A command line option: long name, whether it takes an argument, short flag."""

    name: str
    has_arg: bool = False
    short: str | None = None


COMMON_SHORT_OPTS = "hV"
COMMON_LONG_OPTS = (
    LongOption("help", False, "h"),
    LongOption("version", False, "V"),
)
COMMON_OPTS_HELP = (
    "Print this help and exit",
    "Print version and exit",
)


def join_path(path: str, name: str) -> str:
    """Join a directory and a file name with a single slash."""
    if path.endswith("/"):
        return path + name
    return f"{path}/{name}"


def _isprint(byte: int) -> bool:
    return 0x20 <= byte <= 0x7E


def is_printable_string(data: bytes) -> bool:
    """True if data is one or more non-empty printable NUL-terminated strings."""
    if not data or data[-1] != 0:
        return False
    return all(
        part and all(_isprint(b) for b in part)
        for part in data[:-1].split(b"\0")
    )


def _take_digits(s: str, start: int, digits: str, limit: int) -> str:
    end = start
    while end < len(s) and end - start < limit and s[end] in digits:
        end += 1
    return s[start:end]


def get_escape_char(s: str, i: int) -> tuple[str, int]:
    """Decode the escape sequence starting at index i (after the backslash).

    Returns the decoded character and the index just after the sequence.
    """
    if i >= len(s):
        return "\0", i + 1
    c = s[i]
    if c in _ESCAPES:
        return _ESCAPES[c], i + 1
    if c in _OCT_DIGITS:
        digits = _take_digits(s, i, _OCT_DIGITS, 3)
        return chr(int(digits, 8) & 0xFF), i + len(digits)
    if c == "x":
        digits = _take_digits(s, i + 1, _HEX_DIGITS, 2)
        if not digits:
            raise ValueError("\\x used with no following hex digits")
        return chr(int(digits, 16)), i + 1 + len(digits)
    return c, i + 1


def read_blob(filename: str) -> bytes:
    """Read a whole device tree file; "-" means standard input."""
    if filename == "-":
        return sys.stdin.buffer.read()
    with open(filename, "rb") as f:
        return f.read()


def write_blob(filename: str, blob: bytes) -> None:
    """Write a device tree blob, as long as its header's total size says."""
    if len(blob) < 8:
        raise ValueError("blob too short to hold a header")
    totalsize = int.from_bytes(blob[4:8], "big")
    if totalsize > len(blob):
        raise ValueError(
            f"header total size {totalsize} exceeds blob length {len(blob)}"
        )
    data = bytes(blob[:totalsize])
    if filename == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return
    with open(filename, "wb") as f:
        f.write(data)


def decode_type(fmt: str) -> tuple[str, int]:
    """Decode a type string such as "hx" into (type, size).

    Size is -1 for strings and for unqualified types.
    """
    if not fmt:
        raise ValueError("empty type format")
    pos = 0
    qualifier = ""
    if fmt[0] in "hlLb":
        qualifier = fmt[0]
        pos = 1
        if pos < len(fmt) and fmt[pos] == qualifier:
            pos += 1
            if qualifier == "h":
                qualifier = "b"
    if pos >= len(fmt) or fmt[pos] not in "iuxs":
        raise ValueError(f"invalid type format {fmt!r}")
    kind = fmt[pos]
    size = -1
    if kind != "s":
        size = {"b": 1, "h": 2, "l": 4}.get(qualifier, -1)
    if pos + 1 != len(fmt):
        raise ValueError(f"invalid type format {fmt!r}")
    return kind, size


def format_prop_data(data: bytes) -> str:
    """Render property data as strings, cells or bytes; empty data gives ""."""
    if not data:
        return ""
    if is_printable_string(data):
        parts = data[:-1].split(b"\0")
        return " = " + ", ".join(f'"{p.decode("ascii")}"' for p in parts)
    if len(data) % 4 == 0:
        cells = (
            int.from_bytes(data[k:k + 4], "big") for k in range(0, len(data), 4)
        )
        return " = <" + " ".join(f"0x{c:08x}" for c in cells) + ">"
    return " = [" + " ".join(f"{b:02x}" for b in data) + "]"


def version_text() -> str:
    """The version line shown by the tools."""
    return f"Version: {DTC_VERSION}\n"


def usage_text(synopsis, short_opts, long_opts, opts_help, errmsg=None) -> str:
    """Build the usage message for a tool, with an optional error line."""
    long_opts = list(long_opts)
    opts_help = list(opts_help)
    if len(opts_help) != len(long_opts):
        raise ValueError("every option needs a help text")
    a_arg = "<arg>"
    a_arg_len = len(a_arg) + 1

    lines = [f"Usage: {synopsis}\n", "\n", f"Options: -[{short_opts}]\n"]
    optlen = max(
        (len(o.name) + 1 + (a_arg_len if o.has_arg else 0) for o in long_opts),
        default=0,
    )
    for opt, help_text in zip(long_opts, opts_help):
        prefix = f"  -{opt.short}, " if opt.short else "      "
        if opt.has_arg:
            pad = " " * max(0, optlen - len(opt.name) - a_arg_len)
            flag = f"--{opt.name} {a_arg}{pad}"
        else:
            flag = f"--{opt.name.ljust(optlen)}"
        lines.append(f"{prefix}{flag}{help_text}\n")
    if errmsg:
        lines.append(f"\nError: {errmsg}\n")
    return "".join(lines)