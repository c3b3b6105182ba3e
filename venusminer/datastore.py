"""Hierarchical keys and simple key-value datastores."""

from __future__ import annotations

import posixpath
import threading
from dataclasses import dataclass
from typing import Iterator, Union


class DatastoreKeyNotFoundError(LookupError):
    """No value is stored under the requested key."""

    def __init__(self, message: str = "datastore: key not found") -> None:
        super().__init__(message)


def _clean(path: str) -> str:
    if not path:
        return "/"
    cleaned = posixpath.normpath("/" + path)
    return "/" + cleaned.lstrip("/")


@dataclass(frozen=True, order=True)
class Key:
    """A slash-separated hierarchical key, always cleaned and rooted at ``/``."""

    path: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", _clean(self.path))

    def __str__(self) -> str:
        return self.path

    def child(self, other: "Key | str") -> "Key":
        """The key formed by appending ``other`` below this key."""
        return Key(self.path + "/" + str(other))


KeyLike = Union[Key, str]


def _as_key(key: KeyLike) -> Key:
    return key if isinstance(key, Key) else Key(key)


def _under(key: Key, prefix: Key) -> bool:
    if prefix.path == "/":
        return True
    return key.path.startswith(prefix.path + "/")


class _MapBatch:
    """Buffered writes applied to a datastore on commit."""

    def __init__(self, store: "MapDatastore") -> None:
        self._store = store
        self._ops: list[tuple[Key, bytes | None]] = []

    def put(self, key: KeyLike, value: bytes) -> None:
        self._ops.append((_as_key(key), bytes(value)))

    def delete(self, key: KeyLike) -> None:
        self._ops.append((_as_key(key), None))

    def commit(self) -> None:
        ops, self._ops = self._ops, []
        for key, value in ops:
            if value is None:
                self._store.delete(key)
            else:
                self._store.put(key, value)


class MapDatastore:
    """A thread-safe datastore kept in a dictionary."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: dict[Key, bytes] = {}
        self.last_synced: Key | None = None
        self.closed = False

    def get(self, key: KeyLike) -> bytes:
        with self._lock:
            try:
                return self._values[_as_key(key)]
            except KeyError:
                raise DatastoreKeyNotFoundError() from None

    def has(self, key: KeyLike) -> bool:
        with self._lock:
            return _as_key(key) in self._values

    def get_size(self, key: KeyLike) -> int:
        return len(self.get(key))

    def put(self, key: KeyLike, value: bytes) -> None:
        with self._lock:
            self._values[_as_key(key)] = bytes(value)

    def delete(self, key: KeyLike) -> None:
        with self._lock:
            self._values.pop(_as_key(key), None)

    def query(self, prefix: KeyLike | None = None) -> Iterator[tuple[Key, bytes]]:
        """Iterate, in key order, over a snapshot of entries strictly below ``prefix``."""
        root = _as_key(prefix) if prefix is not None else Key("/")
        with self._lock:
            entries = sorted(item for item in self._values.items() if _under(item[0], root))
        return iter(entries)

    def sync(self, prefix: KeyLike | None = None) -> None:
        """Writes are immediate in memory; remember the prefix that was synced."""
        root = _as_key(prefix) if prefix is not None else Key("/")
        with self._lock:
            self.last_synced = root

    def close(self) -> None:
        """Mark the store closed; an in-memory store holds no resources."""
        with self._lock:
            self.closed = True

    def batch(self) -> _MapBatch:
        return _MapBatch(self)


class NamespacedDatastore:
    """A view of another datastore with every key placed below a fixed prefix."""

    def __init__(self, child, prefix: KeyLike) -> None:
        self.child = child
        self.prefix = _as_key(prefix)

    def _inner(self, key: KeyLike) -> Key:
        return self.prefix.child(_as_key(key))

    def _outer(self, key: Key) -> Key:
        if self.prefix.path == "/":
            return key
        return Key(key.path[len(self.prefix.path):])

    def get(self, key: KeyLike) -> bytes:
        return self.child.get(self._inner(key))

    def has(self, key: KeyLike) -> bool:
        return self.child.has(self._inner(key))

    def put(self, key: KeyLike, value: bytes) -> None:
        self.child.put(self._inner(key), value)

    def delete(self, key: KeyLike) -> None:
        self.child.delete(self._inner(key))

    def query(self, prefix: KeyLike | None = None) -> Iterator[tuple[Key, bytes]]:
        root = self._inner(prefix) if prefix is not None else self.prefix
        for key, value in self.child.query(root):
            yield self._outer(key), value