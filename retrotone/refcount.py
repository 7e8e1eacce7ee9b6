"""Explicit reference counting for objects shared between instruments.

Envelopes and generator class nodes are built once per instrument and shared
by every node (and every voice) that uses them.  Holders call `addref()` when
they keep an object and `release()` when they let go of it.  When the count
drops to zero, the object drops its own references in turn, so releasing the
root of a generator graph tears down every sub-graph nobody else holds.
"""

from __future__ import annotations


MAX_REFCOUNT = 2**31 - 1


class ReferenceCountError(RuntimeError):
    """Reference counting misuse: overflow, or touching a freed object."""


class RefCounted:
    _refcount: int = 0

    def _init_refcount(self) -> None:
        self._refcount = 1

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def alive(self) -> bool:
        return self._refcount > 0

    def check_alive(self) -> None:
        if self._refcount < 1:
            raise ReferenceCountError(f"{type(self).__name__} was already freed")

    def addref(self) -> None:
        self.check_alive()
        if self._refcount >= MAX_REFCOUNT:
            raise ReferenceCountError("reference count overflow")
        self._refcount += 1

    def release(self) -> None:
        self.check_alive()
        self._refcount -= 1
        if self._refcount == 0:
            self.free()

    def free(self) -> None:
        """Drop the references this object holds.  Called once, at zero."""
