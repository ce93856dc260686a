"""Source file tracking: include search paths, nesting and text positions."""

from __future__ import annotations

import errno
import os
import sys
from dataclasses import dataclass, field
from typing import IO, TextIO

from .util import join_path

MAX_SRCFILE_DEPTH = 100
TAB_SIZE = 8


def _align(x: int, a: int) -> int:
    return (x + a - 1) & ~(a - 1)


def _dirname(path: str) -> str | None:
    slash = path.rfind("/")
    return path[:slash] if slash >= 0 else None


@dataclass
class SourceFile:
    """An open source file and the position reached in it."""

    name: str
    dir: str | None
    stream: IO[bytes] | None = field(default=None, repr=False, compare=False)
    lineno: int = 1
    colno: int = 1


@dataclass
class SourcePos:
    """A span of source text: first and last line and column, and its file."""

    first_line: int = 0
    first_column: int = 0
    last_line: int = 0
    last_column: int = 0
    file: SourceFile | None = None

    def __str__(self) -> str:
        fname = "<no-file>"
        if self.file is not None and self.file.name:
            fname = self.file.name
        if self.first_line != self.last_line:
            return (f"{fname}:{self.first_line}.{self.first_column}"
                    f"-{self.last_line}.{self.last_column}")
        if self.first_column != self.last_column:
            return (f"{fname}:{self.first_line}.{self.first_column}"
                    f"-{self.last_column}")
        return f"{fname}:{self.first_line}.{self.first_column}"


SRCPOS_EMPTY = SourcePos()


def format_error(pos: SourcePos, prefix: str, message: str) -> str:
    """An error message carrying the source position it refers to."""
    return f"{prefix}: {pos} {message}"


class SourceTracker:
    """Opens source files along a search path and tracks nested includes."""

    def __init__(self, depfile: TextIO | None = None) -> None:
        self.depfile = depfile
        self.search_paths: list[str] = []
        self._stack: list[SourceFile] = []
        self._depth = 0

    @property
    def current(self) -> SourceFile | None:
        """The source file being read, or None."""
        return self._stack[-1] if self._stack else None

    def add_search_path(self, dirname: str) -> None:
        """Add a directory at the end of the search path."""
        self.search_paths.append(dirname)

    @staticmethod
    def _try_open(dirname: str | None, fname: str):
        if dirname is None or fname.startswith("/"):
            fullname = fname
        else:
            fullname = join_path(dirname, fname)
        try:
            return open(fullname, "rb"), fullname, None
        except OSError as exc:
            return None, fullname, exc

    def relative_open(self, fname: str) -> tuple[IO[bytes], str]:
        """Open a file, trying the current file's directory then the search path.

        Returns the open binary stream and the name it was found under;
        "-" means standard input.
        """
        if fname == "-":
            stream: IO[bytes] = sys.stdin.buffer
            fullname = "<stdin>"
        else:
            cur_dir = self.current.dir if self.current is not None else None
            found, fullname, error = self._try_open(cur_dir, fname)
            for dirname in self.search_paths:
                if found is not None:
                    break
                found, fullname, error = self._try_open(dirname, fname)
            if found is None:
                code = error.errno if error and error.errno else errno.ENOENT
                raise OSError(
                    code, f'Couldn\'t open "{fname}": {os.strerror(code)}')
            stream = found
        if self.depfile is not None:
            self.depfile.write(f" {fullname}")
        return stream, fullname

    def push(self, fname: str) -> SourceFile:
        """Open a file and make it the current one."""
        if self._depth >= MAX_SRCFILE_DEPTH:
            raise RuntimeError("Includes nested too deeply")
        self._depth += 1
        stream, fullname = self.relative_open(fname)
        srcfile = SourceFile(fullname, _dirname(fullname), stream)
        self._stack.append(srcfile)
        return srcfile

    def pop(self) -> bool:
        """Close the current file; True if an enclosing file remains."""
        if not self._stack:
            raise RuntimeError("no source file is open")
        srcfile = self._stack.pop()
        stream = srcfile.stream
        if stream is not None and stream is not sys.stdin.buffer:
            try:
                stream.close()
            except OSError as exc:
                raise OSError(
                    exc.errno,
                    f'Error closing "{srcfile.name}": {exc.strerror}') from exc
        return bool(self._stack)

    def update(self, text: str) -> SourcePos:
        """Advance over text in the current file and return the span it covers."""
        srcfile = self.current
        if srcfile is None:
            raise RuntimeError("no source file is open")
        first_line, first_column = srcfile.lineno, srcfile.colno
        for ch in text:
            if ch == "\n":
                srcfile.lineno += 1
                srcfile.colno = 1
            elif ch == "\t":
                srcfile.colno = _align(srcfile.colno, TAB_SIZE)
            else:
                srcfile.colno += 1
        return SourcePos(first_line, first_column,
                         srcfile.lineno, srcfile.colno, srcfile)

    def set_line(self, name: str, line: int) -> None:
        """Set the current file's reported name and line number."""
        srcfile = self.current
        if srcfile is None:
            raise RuntimeError("no source file is open")
        srcfile.name = name
        srcfile.lineno = line