"""
Growable path buffers with a hard length ceiling.

A BoundedPath is shared by every level of a recursive walk: descending
pushes one segment, returning pops it, so the buffer always holds the path
of the entry currently being processed. Lengths are counted in encoded
bytes plus a terminator, matching the host's PATH_MAX convention.
"""

import os
from contextlib import contextmanager
from typing import Callable, Iterator, List

from .errors import PathTooLongError

SEPARATOR = "/"


def encode_image_path(path: str) -> bytes:
    return path.encode("utf-8", "surrogateescape")


class BoundedPath:
    """
    Path text plus a stack of previous lengths.

    Args:
        initial: Starting path
        max_length: Ceiling, in bytes, including the terminator
        side: "source" or "target", used in error messages
        encode: Function giving the byte form used for length checks

    Raises:
        PathTooLongError: If ``initial`` does not fit
    """

    def __init__(
        self,
        initial: str,
        max_length: int,
        side: str,
        encode: Callable[[str], bytes] = os.fsencode,
    ):
        self.max_length = max_length
        self.side = side
        self._encode = encode
        self._byte_length = len(encode(initial))
        if self._byte_length + 1 > max_length:
            raise PathTooLongError(side, initial, max_length)
        self._text = initial
        self._marks: List[tuple] = []

    def __str__(self) -> str:
        return self._text

    def __len__(self) -> int:
        return self._byte_length

    @property
    def depth(self) -> int:
        return len(self._marks)

    def basename(self) -> str:
        return self._text.rsplit(SEPARATOR, 1)[-1]

    def push(self, segment: str) -> None:
        """
        Append ``/segment``.

        The length check happens before anything is changed, so a failed
        push leaves the buffer exactly as it was.
        """
        added = 1 + len(self._encode(segment))
        if self._byte_length + added >= self.max_length:
            raise PathTooLongError(self.side, self._text + SEPARATOR + segment, self.max_length)
        self._marks.append((len(self._text), self._byte_length))
        self._text = self._text + SEPARATOR + segment
        self._byte_length += added

    def pop(self) -> None:
        """Drop the most recently pushed segment."""
        text_length, self._byte_length = self._marks.pop()
        self._text = self._text[:text_length]

    @contextmanager
    def pushed(self, segment: str) -> Iterator["BoundedPath"]:
        """Push ``segment`` for the duration of the block, then pop it."""
        self.push(segment)
        try:
            yield self
        finally:
            self.pop()
