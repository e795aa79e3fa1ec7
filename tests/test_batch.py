import io
import random

import pytest
from hypothesis import given
from hypothesis import strategies as st

from levelkit.batch import (
    Batch,
    BatchCorruptedError,
    KeyType,
    batches_len,
    decode_batch,
    decode_batch_header,
    encode_batch_header,
    write_batches_with_header,
)

_ops = st.lists(
    st.tuples(st.booleans(), st.binary(max_size=24), st.binary(max_size=24)),
    max_size=60,
)


def _apply(batch, ops):
    for is_put, key, value in ops:
        if is_put:
            batch.put(key, value)
        else:
            batch.delete(key)


def _expected(ops):
    records = []
    internal_len = 0
    for is_put, key, value in ops:
        if is_put:
            records.append((KeyType.VALUE, key, value))
            internal_len += len(key) + len(value) + 8
        else:
            records.append((KeyType.DELETE, key, None))
            internal_len += len(key) + 8
    return records, internal_len


@given(st.integers(0, 2**64 - 1), st.integers(0, 2**32 - 1))
def test_batch_header_round_trip(seq, length):
    encoded = encode_batch_header(seq, length)
    assert len(encoded) == 12
    assert decode_batch_header(encoded) == (seq, length)


def test_batch_header_wire_bytes():
    assert encode_batch_header(1, 2) == b"\x01" + b"\x00" * 7 + b"\x02\x00\x00\x00"


def test_batch_header_too_short():
    with pytest.raises(BatchCorruptedError, match="too short"):
        decode_batch_header(b"\x00" * 11)


def test_record_wire_bytes():
    batch = Batch()
    batch.put(b"k", b"v")
    batch.delete(b"k")
    assert batch.dump() == b"\x01\x01k\x01v\x00\x01k"
    assert batch.internal_len == (1 + 1 + 8) + (1 + 8)


@given(_ops)
def test_batch_records_and_internal_len(ops):
    batch = Batch()
    _apply(batch, ops)
    records, internal_len = _expected(ops)
    assert len(batch) == len(ops)
    assert batch.internal_len == internal_len
    assert list(batch.records()) == records


@given(_ops)
def test_dump_load_round_trip(ops):
    batch = Batch()
    _apply(batch, ops)
    loaded = Batch()
    loaded.load(batch.dump())
    records, internal_len = _expected(ops)
    assert len(loaded) == len(ops)
    assert loaded.internal_len == internal_len
    assert list(loaded.records()) == records
    assert list(decode_batch(batch.dump())) == records


@given(_ops, _ops)
def test_extend_concatenates(first, second):
    a = Batch()
    _apply(a, first)
    b = Batch()
    _apply(b, second)
    a.extend(b)
    records, internal_len = _expected(first + second)
    assert len(a) == len(first) + len(second)
    assert a.internal_len == internal_len
    assert list(a.records()) == records


@given(_ops)
def test_replay_into_batch(ops):
    batch = Batch()
    _apply(batch, ops)
    target = Batch()
    batch.replay(target)
    records, internal_len = _expected(ops)
    assert len(target) == len(ops)
    assert target.internal_len == internal_len
    assert list(target.records()) == records


def test_batch_sequence_like_source():
    rnd = random.Random(1234)
    batch, rbatch, abatch = Batch(), Batch(), Batch()
    ops = []
    for n in range(1, 3001):
        kt = rnd.randrange(256) % 2
        key = rnd.randbytes(rnd.randrange(30))
        value = rnd.randbytes(rnd.randrange(30))
        op = (kt == KeyType.VALUE, key, value)
        ops.append(op)
        _apply(batch, [op])
        _apply(rbatch, [op])
        records, internal_len = _expected(ops)
        assert len(batch) == len(ops)
        assert batch.internal_len == internal_len
        if n % 1000 == 0:
            assert list(batch.records()) == records
            abatch.extend(rbatch)
            rbatch.reset()
            assert len(abatch) == len(ops)
            assert abatch.internal_len == internal_len
            assert list(abatch.records()) == records
            nbatch = Batch()
            nbatch.load(batch.dump())
            assert len(nbatch) == len(ops)
            assert nbatch.internal_len == internal_len
            assert list(nbatch.records()) == records


def test_reset_empties_batch():
    batch = Batch()
    batch.put(b"a", b"b")
    batch.reset()
    assert len(batch) == 0
    assert batch.internal_len == 0
    assert batch.dump() == b""


def test_load_invalid_type():
    with pytest.raises(BatchCorruptedError, match="invalid type 0x2"):
        Batch().load(b"\x02\x01k")


def test_load_invalid_key_length():
    with pytest.raises(BatchCorruptedError, match="invalid key length"):
        Batch().load(b"\x00\x05ab")


def test_load_invalid_value_length():
    with pytest.raises(BatchCorruptedError, match="invalid value length"):
        Batch().load(b"\x01\x01k\x09v")


def test_load_truncated_varint():
    with pytest.raises(BatchCorruptedError, match="invalid key length"):
        Batch().load(b"\x01\x80")


def test_failed_load_keeps_previous_contents():
    batch = Batch()
    batch.put(b"x", b"y")
    with pytest.raises(BatchCorruptedError):
        batch.load(b"\x07")
    assert list(batch.records()) == [(KeyType.VALUE, b"x", b"y")]


def test_write_batches_with_header():
    first = Batch()
    first.put(b"a", b"1")
    second = Batch()
    second.delete(b"b")
    second.put(b"c", b"")
    out = io.BytesIO()
    write_batches_with_header(out, [first, second], 42)
    written = out.getvalue()
    assert batches_len([first, second]) == 3
    assert decode_batch_header(written) == (42, 3)
    assert list(decode_batch(written[12:])) == [
        (KeyType.VALUE, b"a", b"1"),
        (KeyType.DELETE, b"b", None),
        (KeyType.VALUE, b"c", b""),
    ]


def test_corrupted_error_message():
    err = BatchCorruptedError("too short")
    assert str(err) == "leveldb: batch corrupted: too short"
    assert err.reason == "too short"