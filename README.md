# levelkit

Core building blocks of a LevelDB-style key/value storage engine, written in
plain Python with no third-party dependencies:

- **`levelkit.comparer`**: key ordering. `BytesComparer` (also available as
  the ready-made instance `DEFAULT_COMPARER`) orders keys byte by byte and
  reports the name `leveldb.BytewiseComparator`. It can also produce short
  separators and successors for index blocks.
- **`levelkit.batch`**: write batches. A `Batch` collects puts and deletes and
  encodes them in the LevelDB batch record format. You can load it back from
  bytes and replay it.
- **`levelkit.cache`**: a namespaced, reference-counted cache map (`Cache`)
  with an optional `LRU` eviction policy.

## Installation

```
pip install .
```

To run the test suite:

```
pip install .[test]
pytest
```

## Comparing keys

```python
from levelkit.comparer import BytesComparer

cmp = BytesComparer()
cmp.name()                        # 'leveldb.BytewiseComparator'
cmp.compare(b"abc", b"abd")       # -1
cmp.separator(b"abc1", b"abe")    # b'abd'
cmp.successor(b"\xff\x01")        # b'\xff\x02'
```

`separator` and `successor` return `None` when no shorter key exists.
To define another ordering, subclass `Comparer` and implement `compare`,
`name`, `separator` and `successor`.

## Write batches

```python
import io
from levelkit.batch import (
    Batch, decode_batch, encode_batch_header, decode_batch_header,
    write_batches_with_header,
)

batch = Batch()
batch.put(b"foo", b"v1")
batch.delete(b"bar")
len(batch)                        # 2

for key_type, key, value in batch.records():   # or simply: for ... in batch
    print(key_type, key, value)   # value is None for deletions

copy = Batch()
copy.load(batch.dump())           # raises BatchCorruptedError on bad input
list(decode_batch(batch.dump()))  # the same records, straight from bytes

header = encode_batch_header(seq=42, batch_len=len(batch))
decode_batch_header(header)       # (42, 2)

out = io.BytesIO()
write_batches_with_header(out, [batch, copy], seq=42)
```

`Batch.replay` feeds the records to any `BatchReplay` – an object with
`put(key, value)` and `delete(key)` methods, such as another `Batch`.
`Batch.extend` appends the records of another batch, and `Batch.reset`
empties it. Record kinds are given by the `KeyType` enum (`DELETE`, `VALUE`).

## Caching

```python
from levelkit.cache import Cache, LRU, NamespaceGetter

cache = Cache(LRU(1000))

# Look up namespace 0, key 7; create the entry with size 1 if it is missing.
handle = cache.get(0, 7, lambda: (1, "value"))
handle.value                      # 'value'
handle.release()

# Lookup only: returns None on a miss. Handles are also context managers.
with cache.get(0, 7, None) as h:
    h.value                       # 'value'

cache.nodes(), cache.size()       # (1, 1)
cache.delete(0, 7, on_del=lambda: print("gone"))   # prints "gone"
cache.close()
```

A handle keeps its entry alive until you release it. Values that have a
`release()` method are released when the cache drops them. `cache.evict`,
`cache.evict_ns` and `cache.evict_all` ask the eviction policy to let go of
entries; `cache.delete` also bans the entry from being cached again.
`NamespaceGetter(cache, ns).get(key, set_func)` binds lookups to one
namespace. Custom eviction policies subclass `Cacher`.

## What this package does not do

levelkit is a set of components, not a database. It has no on-disk storage,
no journal or table files, no compaction and no `open`/`get`/`put` database
API; those are left to code built on top of these parts.