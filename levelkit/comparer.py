"""Orderings over byte-string keys."""

from __future__ import annotations

from abc import ABC, abstractmethod

__all__ = ["BasicComparer", "Comparer", "BytesComparer", "DEFAULT_COMPARER"]


class BasicComparer(ABC):
    """Anything that can order two byte strings."""

    @abstractmethod
    def compare(self, a: bytes, b: bytes) -> int:
        """Return -1, 0 or +1 as ``a`` is less than, equal to or greater than ``b``.

        Two keys compare equal only if their contents are identical, and the
        empty key is less than any non-empty key.
        """


class Comparer(BasicComparer):
    """A total ordering over byte-string keys, with key-shortening helpers."""

    @abstractmethod
    def name(self) -> str:
        """Return the name of the ordering.

        The name is stored on disk; opening a database with a comparer of a
        different name is an error. Names starting with ``leveldb.`` are
        reserved.
        """

    @abstractmethod
    def separator(self, a: bytes, b: bytes) -> bytes | None:
        """Return a short key ``x`` with ``a <= x < b``, or None if ``x`` would equal ``a``."""

    @abstractmethod
    def successor(self, b: bytes) -> bytes | None:
        """Return a short key ``x`` with ``x >= b``, or None if ``x`` would equal ``b``."""


class BytesComparer(Comparer):
    """Natural lexicographic ordering of byte strings."""

    def compare(self, a: bytes, b: bytes) -> int:
        a, b = bytes(a), bytes(b)
        return (a > b) - (a < b)

    def name(self) -> str:
        return "leveldb.BytewiseComparator"

    def separator(self, a: bytes, b: bytes) -> bytes | None:
        common = 0
        for x, y in zip(a, b):
            if x != y:
                break
            common += 1
        if common >= min(len(a), len(b)):
            # One key is a prefix of the other: do not shorten.
            return None
        c = a[common]
        if c < 0xFF and c + 1 < b[common]:
            return bytes(a[:common]) + bytes([c + 1])
        return None

    def successor(self, b: bytes) -> bytes | None:
        for i, c in enumerate(b):
            if c != 0xFF:
                return bytes(b[:i]) + bytes([c + 1])
        return None

    def __repr__(self) -> str:
        return "BytesComparer()"


DEFAULT_COMPARER = BytesComparer()