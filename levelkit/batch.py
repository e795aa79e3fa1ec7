"""Write batches: an ordered list of put and delete records in one buffer."""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from enum import IntEnum
from typing import BinaryIO, Iterable, Iterator, NamedTuple

__all__ = [
    "KeyType",
    "BatchCorruptedError",
    "BatchReplay",
    "Batch",
    "BATCH_HEADER_LEN",
    "decode_batch",
    "encode_batch_header",
    "decode_batch_header",
    "batches_len",
    "write_batches_with_header",
]

BATCH_HEADER_LEN = 8 + 4
_HEADER = struct.Struct("<QI")
_MAX_VARINT_LEN64 = 10


class KeyType(IntEnum):
    """Kind of a batch record."""

    DELETE = 0
    VALUE = 1


class BatchCorruptedError(Exception):
    """Raised when encoded batch data cannot be decoded."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"leveldb: batch corrupted: {reason}")
        self.reason = reason


class BatchReplay(ABC):
    """Receiver of the operations held in a batch."""

    @abstractmethod
    def put(self, key: bytes, value: bytes) -> None:
        """Record a put of ``value`` under ``key``."""

    @abstractmethod
    def delete(self, key: bytes) -> None:
        """Record a deletion of ``key``."""


class _Index(NamedTuple):
    key_type: KeyType
    key_pos: int
    key_len: int
    value_pos: int
    value_len: int

    def key(self, data: bytes | bytearray) -> bytes:
        return bytes(data[self.key_pos : self.key_pos + self.key_len])

    def value(self, data: bytes | bytearray) -> bytes | None:
        if self.key_type is KeyType.DELETE:
            return None
        return bytes(data[self.value_pos : self.value_pos + self.value_len])

    def shifted(self, offset: int) -> _Index:
        value_pos = self.value_pos + offset if self.value_len else self.value_pos
        return self._replace(key_pos=self.key_pos + offset, value_pos=value_pos)

    @property
    def internal_len(self) -> int:
        return self.key_len + self.value_len + 8


def _put_uvarint(out: bytearray, x: int) -> None:
    while x >= 0x80:
        out.append((x & 0x7F) | 0x80)
        x >>= 7
    out.append(x)


def _read_uvarint(data: bytes | bytearray, pos: int) -> tuple[int, int] | None:
    """Decode a varint at ``pos``; return (value, next position) or None."""
    x = 0
    shift = 0
    for i, b in enumerate(data[pos : pos + _MAX_VARINT_LEN64]):
        if b < 0x80:
            if i == _MAX_VARINT_LEN64 - 1 and b > 1:
                return None
            return x | (b << shift), pos + i + 1
        x |= (b & 0x7F) << shift
        shift += 7
    return None


def _decode_index(data: bytes | bytearray) -> Iterator[_Index]:
    pos = 0
    end = len(data)
    while pos < end:
        raw_type = data[pos]
        if raw_type > KeyType.VALUE:
            raise BatchCorruptedError(f"bad record: invalid type {raw_type:#x}")
        key_type = KeyType(raw_type)
        pos += 1

        decoded = _read_uvarint(data, pos)
        if decoded is None or decoded[1] + decoded[0] > end:
            raise BatchCorruptedError("bad record: invalid key length")
        key_len, pos = decoded
        key_pos = pos
        pos += key_len

        value_pos = value_len = 0
        if key_type is KeyType.VALUE:
            decoded = _read_uvarint(data, pos)
            if decoded is None or decoded[1] + decoded[0] > end:
                raise BatchCorruptedError("bad record: invalid value length")
            value_len, pos = decoded
            value_pos = pos
            pos += value_len

        yield _Index(key_type, key_pos, key_len, value_pos, value_len)


def decode_batch(data: bytes) -> Iterator[tuple[KeyType, bytes, bytes | None]]:
    """Yield ``(key_type, key, value)`` for each record in encoded batch data.

    The value is None for deletions. Raises BatchCorruptedError on bad data.
    """
    for index in _decode_index(data):
        yield index.key_type, index.key(data), index.value(data)


class Batch(BatchReplay):
    """An ordered collection of put and delete operations."""

    def __init__(self) -> None:
        self._data = bytearray()
        self._index: list[_Index] = []
        # Sum of key and value lengths plus 8 bytes per record.
        self.internal_len = 0

    def _append_record(self, key_type: KeyType, key: bytes, value: bytes | None) -> None:
        data = self._data
        data.append(key_type)
        _put_uvarint(data, len(key))
        key_pos = len(data)
        data += key
        value_pos = value_len = 0
        if key_type is KeyType.VALUE:
            value = value or b""
            _put_uvarint(data, len(value))
            value_pos = len(data)
            value_len = len(value)
            data += value
        index = _Index(key_type, key_pos, len(key), value_pos, value_len)
        self._index.append(index)
        self.internal_len += index.internal_len

    def put(self, key: bytes, value: bytes) -> None:
        """Append a put of ``value`` under ``key``."""
        self._append_record(KeyType.VALUE, key, value)

    def delete(self, key: bytes) -> None:
        """Append a deletion of ``key``."""
        self._append_record(KeyType.DELETE, key, None)

    def dump(self) -> bytes:
        """Return the encoded contents, suitable for ``load``."""
        return bytes(self._data)

    def load(self, data: bytes) -> None:
        """Replace the contents with the given encoded data."""
        self._decode(data)

    def _decode(self, data: bytes, expected_len: int | None = None) -> None:
        buffer = bytearray(data)
        index = list(_decode_index(buffer))
        if expected_len is not None and len(index) != expected_len:
            raise BatchCorruptedError(
                f"invalid records length: {expected_len} vs {len(index)}"
            )
        self._data = buffer
        self._index = index
        self.internal_len = sum(i.internal_len for i in index)

    def replay(self, r: BatchReplay) -> None:
        """Apply every operation, in order, to ``r``."""
        for key_type, key, value in self.records():
            if key_type is KeyType.VALUE:
                r.put(key, value)
            else:
                r.delete(key)

    def records(self) -> Iterator[tuple[KeyType, bytes, bytes | None]]:
        """Yield ``(key_type, key, value)`` per record; value is None for deletions."""
        data = self._data
        for index in self._index:
            yield index.key_type, index.key(data), index.value(data)

    def reset(self) -> None:
        """Discard all records."""
        self._data = bytearray()
        self._index = []
        self.internal_len = 0

    def extend(self, other: Batch) -> None:
        """Append all records of ``other`` to this batch."""
        offset = len(self._data)
        self._data += other._data
        self._index.extend(i.shifted(offset) for i in other._index)
        self.internal_len += other.internal_len

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[tuple[KeyType, bytes, bytes | None]]:
        return self.records()

    def __repr__(self) -> str:
        return f"Batch(records={len(self)}, internal_len={self.internal_len})"


def encode_batch_header(seq: int, batch_len: int) -> bytes:
    """Encode the 12-byte header: sequence number and record count."""
    return _HEADER.pack(seq, batch_len & 0xFFFFFFFF)


def decode_batch_header(data: bytes) -> tuple[int, int]:
    """Decode a batch header into ``(seq, batch_len)``."""
    if len(data) < BATCH_HEADER_LEN:
        raise BatchCorruptedError("too short")
    seq, batch_len = _HEADER.unpack_from(data)
    return seq, batch_len


def batches_len(batches: Iterable[Batch]) -> int:
    """Total number of records in all the batches."""
    return sum(len(b) for b in batches)


def write_batches_with_header(wr: BinaryIO, batches: list[Batch], seq: int) -> None:
    """Write a header followed by the encoded contents of every batch."""
    wr.write(encode_batch_header(seq, batches_len(batches)))
    for batch in batches:
        wr.write(batch.dump())