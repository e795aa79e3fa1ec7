"""A reference-counted cache map with a pluggable eviction policy (LRU)."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional, Protocol, Tuple, runtime_checkable

__all__ = [
    "Cacher",
    "Releaser",
    "Node",
    "Handle",
    "Cache",
    "NamespaceGetter",
    "LRU",
    "murmur32",
]

SetFunc = Callable[[], Tuple[int, Any]]

_MASK32 = 0xFFFFFFFF
_HASH_SEED = 0xF00


def murmur32(ns: int, key: int, seed: int) -> int:
    """Hash a (namespace, key) pair of 64-bit integers to 32 bits."""
    m = 0x5BD1E995
    r = 24

    def mix(k: int) -> int:
        k = (k * m) & _MASK32
        k ^= k >> r
        return (k * m) & _MASK32

    parts = (
        (ns >> 32) & _MASK32,
        ns & _MASK32,
        (key >> 32) & _MASK32,
        key & _MASK32,
    )
    h = seed & _MASK32
    for k in parts:
        h = (h * m) & _MASK32
        h ^= mix(k)
    h ^= h >> 13
    h = (h * m) & _MASK32
    h ^= h >> 15
    return h


@runtime_checkable
class Releaser(Protocol):
    """A cached value that wants to know when it leaves the cache."""

    def release(self) -> None:
        """Release resources held by the value."""


class Cacher(ABC):
    """Eviction policy plugged into a Cache. Must be safe for concurrent use."""

    @abstractmethod
    def capacity(self) -> int:
        """Return the cache capacity."""

    @abstractmethod
    def set_capacity(self, capacity: int) -> None:
        """Set the cache capacity, evicting as needed."""

    @abstractmethod
    def promote(self, n: Node) -> None:
        """Mark the node as recently used."""

    @abstractmethod
    def ban(self, n: Node) -> None:
        """Evict the node and prevent it from being promoted again."""

    @abstractmethod
    def evict(self, n: Node) -> None:
        """Evict the node."""

    @abstractmethod
    def evict_ns(self, ns: int) -> None:
        """Evict every node in the namespace."""

    @abstractmethod
    def evict_all(self) -> None:
        """Evict every node."""

    @abstractmethod
    def close(self) -> None:
        """Close the policy."""


class Node:
    """An entry of the cache map."""

    def __init__(self, cache: Cache, hash_value: int, ns: int, key: int) -> None:
        self._cache = cache
        self._hash = hash_value
        self._ns = ns
        self._key = key
        self._lock = threading.Lock()
        self._size = 0
        self._value: Any = None
        self._ref = 0
        self._on_del: list[Callable[[], None]] = []
        # Slot reserved for the eviction policy.
        self.cache_data: Any = None

    @property
    def hash(self) -> int:
        return self._hash

    @property
    def ns(self) -> int:
        return self._ns

    @property
    def key(self) -> int:
        return self._key

    @property
    def size(self) -> int:
        return self._size

    @property
    def value(self) -> Any:
        return self._value

    @property
    def ref(self) -> int:
        return self._ref

    def get_handle(self) -> Handle:
        """Return a new handle for this node; the node must still be referenced."""
        with self._cache._mu:
            if self._ref < 1:
                raise RuntimeError("Node.get_handle on zero ref")
            self._ref += 1
        return Handle(self)

    def _decref(self) -> bool:
        with self._cache._mu:
            self._ref -= 1
            return self._ref == 0

    def _unref(self) -> None:
        if self._decref():
            self._cache._delete(self)

    def _unref_locked(self) -> None:
        if self._decref() and not self._cache._closed:
            self._cache._delete(self)

    def __repr__(self) -> str:
        return f"Node(ns={self._ns}, key={self._key}, size={self._size}, ref={self._ref})"


class Handle:
    """A reference to a cache node; release it when done."""

    def __init__(self, node: Node) -> None:
        self._node: Optional[Node] = node
        self._lock = threading.Lock()

    @property
    def node(self) -> Optional[Node]:
        return self._node

    @property
    def value(self) -> Any:
        node = self._node
        return node.value if node is not None else None

    def release(self) -> None:
        """Drop the reference. Calling it more than once is harmless."""
        with self._lock:
            node, self._node = self._node, None
        if node is not None:
            node._unref_locked()

    def __enter__(self) -> Handle:
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


class Cache:
    """A map of (namespace, key) to reference-counted nodes."""

    def __init__(self, cacher: Optional[Cacher] = None) -> None:
        self._mu = threading.RLock()
        self._map: dict[tuple[int, int], Node] = {}
        self._nodes = 0
        self._size = 0
        self._cacher = cacher
        self._closed = False

    def _delete(self, n: Node) -> bool:
        with self._mu:
            if self._map.get((n.ns, n.key)) is not n or n._ref != 0:
                return False
            del self._map[(n.ns, n.key)]
            value, n._value = n._value, None
            self._nodes -= 1
            self._size -= n._size
        if isinstance(value, Releaser):
            value.release()
        for fn in n._on_del:
            fn()
        return True

    def _acquire(self, ns: int, key: int, create: bool) -> Optional[Node]:
        with self._mu:
            if self._closed:
                return None
            n = self._map.get((ns, key))
            if n is not None:
                n._ref += 1
                return n
            if not create:
                return None
            n = Node(self, murmur32(ns, key, _HASH_SEED), ns, key)
            n._ref = 1
            self._map[(ns, key)] = n
            self._nodes += 1
            return n

    def nodes(self) -> int:
        """Number of nodes in the map."""
        return self._nodes

    def size(self) -> int:
        """Sum of the sizes of nodes in the map."""
        return self._size

    def capacity(self) -> int:
        """Capacity of the eviction policy, 0 without one."""
        return self._cacher.capacity() if self._cacher is not None else 0

    def set_capacity(self, capacity: int) -> None:
        if self._cacher is not None:
            self._cacher.set_capacity(capacity)

    def get(self, ns: int, key: int, set_func: Optional[SetFunc] = None) -> Optional[Handle]:
        """Return a handle for the node, creating it with ``set_func`` if absent.

        ``set_func`` returns ``(size, value)``; a None value creates nothing.
        Returns None when the node is missing and cannot be created.
        """
        if self._closed:
            return None
        n = self._acquire(ns, key, set_func is not None)
        if n is None:
            return None
        with n._lock:
            ok = n._value is not None
            if not ok and set_func is not None:
                size, value = set_func()
                if value is not None:
                    n._size, n._value = size, value
                    with self._mu:
                        self._size += size
                    ok = True
        if not ok:
            n._unref()
            return None
        if self._cacher is not None:
            self._cacher.promote(n)
        return Handle(n)

    def delete(self, ns: int, key: int, on_del: Optional[Callable[[], None]] = None) -> bool:
        """Remove and ban the node; ``on_del`` runs once it is gone.

        If no such node exists ``on_del`` runs at once. Returns whether it existed.
        """
        if self._closed:
            return False
        n = self._acquire(ns, key, False)
        if n is None:
            if on_del is not None:
                on_del()
            return False
        if on_del is not None:
            with n._lock:
                n._on_del.append(on_del)
        if self._cacher is not None:
            self._cacher.ban(n)
        n._unref()
        return True

    def evict(self, ns: int, key: int) -> bool:
        """Ask the policy to evict the node. Returns whether it existed."""
        if self._closed:
            return False
        n = self._acquire(ns, key, False)
        if n is None:
            return False
        if self._cacher is not None:
            self._cacher.evict(n)
        n._unref()
        return True

    def evict_ns(self, ns: int) -> None:
        if not self._closed and self._cacher is not None:
            self._cacher.evict_ns(ns)

    def evict_all(self) -> None:
        if not self._closed and self._cacher is not None:
            self._cacher.evict_all()

    def close(self) -> None:
        """Close the map and forcefully release every node."""
        with self._mu:
            nodes: list[Node] = []
            if not self._closed:
                self._closed = True
                nodes = list(self._map.values())
        for n in nodes:
            value, n._value = n._value, None
            if isinstance(value, Releaser):
                value.release()
            callbacks, n._on_del = n._on_del, []
            for fn in callbacks:
                fn()
        if self._cacher is not None:
            self._cacher.close()

    def close_weak(self) -> None:
        """Close the map and evict everything from the policy without forcing release."""
        with self._mu:
            self._closed = True
        if self._cacher is not None:
            self._cacher.evict_all()
            self._cacher.close()

    def __enter__(self) -> Cache:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


@dataclass
class NamespaceGetter:
    """A cache bound to one namespace."""

    cache: Cache
    ns: int

    def get(self, key: int, set_func: Optional[SetFunc] = None) -> Optional[Handle]:
        return self.cache.get(self.ns, key, set_func)


@dataclass(eq=False)
class _LruEntry:
    node: Node
    handle: Optional[Handle]
    ban: bool = False


class LRU(Cacher):
    """Least-recently-used eviction policy bounded by total node size."""

    def __init__(self, capacity: int) -> None:
        self._lock = threading.Lock()
        self._capacity = capacity
        self._used = 0
        # Least recently used first.
        self._recent: OrderedDict[Node, _LruEntry] = OrderedDict()

    def _shrink(self) -> list[_LruEntry]:
        evicted = []
        while self._used > self._capacity:
            if not self._recent:
                raise RuntimeError("invalid LRU used or capacity counter")
            _, entry = self._recent.popitem(last=False)
            entry.node.cache_data = None
            self._used -= entry.node.size
            evicted.append(entry)
        return evicted

    @staticmethod
    def _release(entries: list[_LruEntry]) -> None:
        for entry in entries:
            if entry.handle is not None:
                entry.handle.release()

    def capacity(self) -> int:
        with self._lock:
            return self._capacity

    def set_capacity(self, capacity: int) -> None:
        with self._lock:
            self._capacity = capacity
            evicted = self._shrink()
        self._release(evicted)

    def promote(self, n: Node) -> None:
        evicted: list[_LruEntry] = []
        with self._lock:
            entry = n.cache_data
            if entry is None:
                if n.size <= self._capacity:
                    entry = _LruEntry(n, n.get_handle())
                    self._recent[n] = entry
                    n.cache_data = entry
                    self._used += n.size
                    evicted = self._shrink()
            elif not entry.ban:
                self._recent.move_to_end(n)
        self._release(evicted)

    def ban(self, n: Node) -> None:
        with self._lock:
            entry = n.cache_data
            if entry is None:
                n.cache_data = _LruEntry(n, None, ban=True)
                return
            if entry.ban:
                return
            self._recent.pop(n, None)
            entry.ban = True
            self._used -= n.size
            handle, entry.handle = entry.handle, None
        if handle is not None:
            handle.release()

    def evict(self, n: Node) -> None:
        with self._lock:
            entry = n.cache_data
            if entry is None or entry.ban:
                return
            n.cache_data = None
            if self._recent.pop(n, None) is not None:
                self._used -= n.size
        self._release([entry])

    def evict_ns(self, ns: int) -> None:
        with self._lock:
            evicted = [e for node, e in self._recent.items() if node.ns == ns]
            for entry in evicted:
                del self._recent[entry.node]
                entry.node.cache_data = None
                self._used -= entry.node.size
        self._release(evicted)

    def evict_all(self) -> None:
        with self._lock:
            evicted = list(self._recent.values())
            for entry in evicted:
                entry.node.cache_data = None
            self._recent.clear()
            self._used = 0
        self._release(evicted)

    def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"LRU(capacity={self._capacity}, used={self._used})"