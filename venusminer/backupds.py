"""A datastore wrapper that can dump its contents as a checksummed CBOR backup."""

from __future__ import annotations

import hashlib
import logging
import threading
from contextlib import contextmanager
from typing import BinaryIO, Callable, Iterator

from venusminer.datastore import Key

log = logging.getLogger("backupds")

_MAJ_BYTE_STRING = 2
_MAJ_ARRAY = 4
_ARRAY2 = 0x82
_INDEFINITE_ARRAY = 0x9F
_BREAK = 0xFF
_MAX_FIELD_LENGTH = 1 << 40
_CHECKSUM_LENGTH = 32


class BackupFormatError(ValueError):
    """A backup stream is malformed or fails its checksum."""


class _RWLock:
    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def _header(major: int, length: int) -> bytes:
    lead = major << 5
    if length < 24:
        return bytes([lead | length])
    for info, size in ((24, 1), (25, 2), (26, 4), (27, 8)):
        if length < 1 << (8 * size):
            return bytes([lead | info]) + length.to_bytes(size, "big")
    raise ValueError(f"length too large for cbor header: {length}")


class BackupBatch:
    """A batch whose commit cannot overlap a running backup."""

    def __init__(self, batch, lock: _RWLock) -> None:
        self._batch = batch
        self._lock = lock

    def put(self, key, value: bytes) -> None:
        self._batch.put(key, value)

    def delete(self, key) -> None:
        self._batch.delete(key)

    def commit(self) -> None:
        with self._lock.read():
            self._batch.commit()


class BackupDatastore:
    """Proxies a datastore; writes are held off while a backup runs."""

    def __init__(self, child) -> None:
        self.child = child
        self._lock = _RWLock()

    def backup(self, out: BinaryIO) -> None:
        """Write ``[[* [key, value]], sha256]`` as CBOR to ``out``."""
        out.write(_header(_MAJ_ARRAY, 2))
        hasher = hashlib.sha256()

        def emit(data: bytes) -> None:
            hasher.update(data)
            out.write(data)

        emit(bytes([_INDEFINITE_ARRAY]))
        with self._lock.write():
            log.info("Starting datastore backup")
            for key, value in self.child.query():
                key_bytes = str(key).encode()
                emit(_header(_MAJ_ARRAY, 2))
                emit(_header(_MAJ_BYTE_STRING, len(key_bytes)))
                emit(key_bytes)
                emit(_header(_MAJ_BYTE_STRING, len(value)))
                emit(bytes(value))
            emit(bytes([_BREAK]))
            log.info("Datastore backup done")
        digest = hasher.digest()
        out.write(_header(_MAJ_BYTE_STRING, len(digest)) + digest)

    def get(self, key) -> bytes:
        return self.child.get(key)

    def has(self, key) -> bool:
        return self.child.has(key)

    def get_size(self, key) -> int:
        return self.child.get_size(key)

    def query(self, prefix=None):
        return self.child.query(prefix)

    def put(self, key, value: bytes) -> None:
        with self._lock.read():
            self.child.put(key, value)

    def delete(self, key) -> None:
        with self._lock.read():
            self.child.delete(key)

    def sync(self, prefix=None) -> None:
        with self._lock.read():
            self.child.sync(prefix)

    def close(self) -> None:
        with self._lock.read():
            self.child.close()

    def batch(self) -> BackupBatch:
        return BackupBatch(self.child.batch(), self._lock)


def wrap(child) -> BackupDatastore:
    """Wrap a datastore so that it can be backed up."""
    return BackupDatastore(child)


class _Reader:
    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.hasher = hashlib.sha256()
        self.hashing = False

    def read(self, n: int) -> bytes:
        data = self._stream.read(n) if n else b""
        if len(data) != n:
            raise BackupFormatError("unexpected EOF")
        if self.hashing:
            self.hasher.update(data)
        return data

    def byte(self) -> int:
        return self.read(1)[0]

    def byte_array(self, max_length: int) -> bytes:
        first = self.byte()
        major, info = first >> 5, first & 0x1F
        if info < 24:
            length = info
        elif info <= 27:
            size = 1 << (info - 24)
            length = int.from_bytes(self.read(size), "big")
            if length < (24 if size == 1 else 1 << (4 * size)):
                raise BackupFormatError("cbor input was not canonical")
        else:
            raise BackupFormatError(f"invalid cbor header byte {first:x}")
        if major != _MAJ_BYTE_STRING:
            raise BackupFormatError("expected cbor type 'byte string' in input")
        if length > max_length:
            raise BackupFormatError("string in cbor input too long")
        return self.read(length)


def read_backup(stream: BinaryIO, callback: Callable[[Key, bytes], object]) -> None:
    """Read a backup, calling ``callback(key, value)`` per entry, then verify its checksum."""
    reader = _Reader(stream)

    def step(what: str, fn):
        try:
            return fn()
        except BackupFormatError as exc:
            raise BackupFormatError(f"{what}: {exc}") from exc

    first = step("reading array header", reader.byte)
    if first != _ARRAY2:
        raise BackupFormatError(f"expected array(2) header byte 0x82, got {first:x}")

    reader.hashing = True
    second = step("reading array header", reader.byte)
    if second != _INDEFINITE_ARRAY:
        raise BackupFormatError(
            f"expected indefinite length array header byte 0x9f, got {second:x}"
        )

    while True:
        tuple_header = step("reading tuple header", reader.byte)
        if tuple_header == _BREAK:
            break
        if tuple_header != _ARRAY2:
            raise BackupFormatError(f"expected array(2) header 0x82, got {tuple_header:x}")
        key_bytes = step("reading key", lambda: reader.byte_array(_MAX_FIELD_LENGTH))
        value = step("reading value", lambda: reader.byte_array(_MAX_FIELD_LENGTH))
        callback(Key(key_bytes.decode()), value)

    reader.hashing = False
    actual = reader.hasher.digest()
    expected = step("reading expected checksum", lambda: reader.byte_array(_CHECKSUM_LENGTH))
    if actual != expected:
        raise BackupFormatError(
            f"checksum didn't match; expected {expected.hex()}, got {actual.hex()}"
        )