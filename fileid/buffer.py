"""In-memory view of examined data, with lazy access to the file's tail."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field


def _pread(fd: int, length: int, offset: int) -> bytes:
    if hasattr(os, "pread"):
        return os.pread(fd, length, offset)
    os.lseek(fd, offset, os.SEEK_SET)
    return os.read(fd, length)


@dataclass
class Buffer:
    """Data read from the start of a file, plus an optional file descriptor.

    ``fill()`` reads as many bytes from the end of the file as the buffer
    holds from its start, for tests that look at trailing data.
    """

    data: bytes
    fd: int = -1
    st: os.stat_result | None = None
    ebuf: bytes | None = field(default=None, init=False)
    eoff: int = field(default=0, init=False)
    _failed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.st is None and self.fd != -1:
            try:
                self.st = os.fstat(self.fd)
            except OSError:
                self.st = None

    @property
    def flen(self) -> int:
        return len(self.data)

    def fill(self) -> bytes:
        """Return the tail of the file, reading it on first use.

        Raises OSError when the tail cannot be read, and keeps raising on
        later calls once that has happened.
        """
        if self._failed:
            raise OSError("file tail is not available")
        if self.ebuf:
            return self.ebuf

        if self.st is None or not stat.S_ISREG(self.st.st_mode):
            self._failed = True
            raise OSError("not a regular file")

        length = min(self.st.st_size, self.flen)
        if length == 0:
            self.ebuf = None
            return b""

        self.eoff = self.st.st_size - length
        try:
            self.ebuf = _pread(self.fd, length, self.eoff)
        except OSError:
            self.ebuf = None
            self._failed = True
            raise
        return self.ebuf