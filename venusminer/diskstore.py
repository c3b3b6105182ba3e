"""A block store kept on disk in a single-file database."""

from __future__ import annotations

import base64
import binascii
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, TypeVar

from venusminer.blockstore import (
    CODEC_RAW,
    Block,
    BlockNotFoundError,
    Cid,
    new_cid_v1,
)

log = logging.getLogger("badgerbs")

T = TypeVar("T")

DB_FILE_NAME = "blockstore.db"


class BlockstoreClosedError(RuntimeError):
    """The block store has been closed."""

    def __init__(self, message: str = "badger blockstore closed") -> None:
        super().__init__(message)


@dataclass
class Options:
    """Where the store lives and an optional prefix prepended to every key."""

    dir: str | Path
    prefix: str = ""


def default_options(path: str | Path) -> Options:
    """Options for a store in ``path`` with no key prefix."""
    return Options(dir=path, prefix="")


class _State(Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def _b32encode(data: bytes) -> bytes:
    return base64.b32encode(data).rstrip(b"=")


def _b32decode(data: bytes) -> bytes:
    padding = (-len(data)) % 8
    return base64.b32decode(data + b"=" * padding)


class DiskBlockstore:
    """A block store persisted on disk; keys are prefix + base32 of the multihash."""

    def __init__(self, opts: Options, conn: sqlite3.Connection) -> None:
        self.opts = opts
        self._conn = conn
        self._prefix = opts.prefix.encode()
        self._cond = threading.Condition()
        self._db_lock = threading.RLock()
        self._state = _State.OPEN
        self._viewers = 0
        self.hash_on_read_requested = False

    def __enter__(self) -> "DiskBlockstore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the store once all running operations finish; closing twice is a no-op."""
        with self._cond:
            if self._state is not _State.OPEN:
                return
            self._state = _State.CLOSING
            while self._viewers:
                self._cond.wait()
        try:
            with self._db_lock:
                self._conn.close()
        finally:
            with self._cond:
                self._state = _State.CLOSED

    def _is_open(self) -> bool:
        with self._cond:
            return self._state is _State.OPEN

    @contextmanager
    def _access(self) -> Iterator[sqlite3.Connection]:
        with self._cond:
            if self._state is not _State.OPEN:
                raise BlockstoreClosedError()
            self._viewers += 1
        try:
            with self._db_lock:
                yield self._conn
        finally:
            with self._cond:
                self._viewers -= 1
                if not self._viewers:
                    self._cond.notify_all()

    def storage_key(self, cid: Cid) -> bytes:
        """The key under which ``cid`` is stored."""
        return self._prefix + _b32encode(cid.hash)

    def size(self) -> int:
        """The total size in bytes of the files holding the store."""
        with self._access():
            return sum(
                entry.stat().st_size
                for entry in os.scandir(self.opts.dir)
                if entry.is_file()
            )

    def _value(self, conn: sqlite3.Connection, cid: Cid) -> bytes:
        row = conn.execute(
            "SELECT value FROM blocks WHERE key = ?", (self.storage_key(cid),)
        ).fetchone()
        if row is None:
            raise BlockNotFoundError()
        return bytes(row[0])

    def view(self, cid: Cid, callback: Callable[[bytes], T]) -> T:
        """Call ``callback`` with the block's data and return what it returns."""
        with self._access() as conn:
            return callback(self._value(conn, cid))

    def has(self, cid: Cid) -> bool:
        with self._access() as conn:
            row = conn.execute(
                "SELECT 1 FROM blocks WHERE key = ?", (self.storage_key(cid),)
            ).fetchone()
            return row is not None

    def get(self, cid: Cid) -> Block:
        if not cid.defined:
            raise BlockNotFoundError()
        with self._access() as conn:
            return Block(cid=cid, raw_data=self._value(conn, cid))

    def get_size(self, cid: Cid) -> int:
        with self._access() as conn:
            row = conn.execute(
                "SELECT length(value) FROM blocks WHERE key = ?",
                (self.storage_key(cid),),
            ).fetchone()
            if row is None:
                raise BlockNotFoundError()
            return int(row[0])

    def put(self, block: Block) -> None:
        with self._access() as conn:
            try:
                with conn:
                    conn.execute(
                        "INSERT OR REPLACE INTO blocks (key, value) VALUES (?, ?)",
                        (self.storage_key(block.cid), bytes(block.raw_data)),
                    )
            except sqlite3.Error as exc:
                raise OSError(f"failed to put block in badger blockstore: {exc}") from exc

    def put_many(self, blocks: Iterable[Block]) -> None:
        rows = [(self.storage_key(b.cid), bytes(b.raw_data)) for b in blocks]
        with self._access() as conn:
            try:
                with conn:
                    conn.executemany(
                        "INSERT OR REPLACE INTO blocks (key, value) VALUES (?, ?)", rows
                    )
            except sqlite3.Error as exc:
                raise OSError(f"failed to put blocks in badger blockstore: {exc}") from exc

    def delete_block(self, cid: Cid) -> None:
        with self._access() as conn:
            with conn:
                conn.execute("DELETE FROM blocks WHERE key = ?", (self.storage_key(cid),))

    def delete_many(self, cids: Iterable[Cid]) -> None:
        keys = [(self.storage_key(c),) for c in cids]
        with self._access() as conn:
            try:
                with conn:
                    conn.executemany("DELETE FROM blocks WHERE key = ?", keys)
            except sqlite3.Error as exc:
                raise OSError(f"failed to delete blocks from badger blockstore: {exc}") from exc

    def _stored_keys(self, conn: sqlite3.Connection) -> list[bytes]:
        if self._prefix:
            rows = conn.execute(
                "SELECT key FROM blocks WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(self._prefix), self._prefix),
            )
        else:
            rows = conn.execute("SELECT key FROM blocks ORDER BY key")
        cut = len(self._prefix)
        return [bytes(row[0])[cut:] for row in rows]

    def all_keys(self) -> Iterator[Cid]:
        """Iterate over stored identifiers as raw version 1 identifiers.

        Iteration stops early once the store is closed; undecodable keys are skipped.
        """
        with self._access() as conn:
            keys = self._stored_keys(conn)

        def generate() -> Iterator[Cid]:
            for key in keys:
                if not self._is_open():
                    return
                try:
                    multihash = _b32decode(key)
                except (binascii.Error, ValueError) as exc:
                    log.warning("failed to decode key %r in badger AllKeysChan; err: %s", key, exc)
                    continue
                yield new_cid_v1(CODEC_RAW, multihash)

        return generate()

    def for_each_key(self, fn: Callable[[Cid], object]) -> None:
        """Call ``fn`` on every stored identifier; errors propagate."""
        with self._access() as conn:
            keys = self._stored_keys(conn)
        for key in keys:
            if not self._is_open():
                raise BlockstoreClosedError()
            fn(new_cid_v1(CODEC_RAW, _b32decode(key)))

    def hash_on_read(self, enabled: bool) -> None:
        """Record the request and warn; reads are never rehashed by this store."""
        self.hash_on_read_requested = bool(enabled)
        log.warning("called HashOnRead on badger blockstore; function not supported; ignoring")


def open_blockstore(opts: Options) -> DiskBlockstore:
    """Open (creating if needed) a disk block store with the given options."""
    directory = Path(opts.dir)
    try:
        directory.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(directory / DB_FILE_NAME, check_same_thread=False)
        with conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS blocks "
                "(key BLOB PRIMARY KEY, value BLOB NOT NULL) WITHOUT ROWID"
            )
    except (OSError, sqlite3.Error) as exc:
        raise OSError(f"failed to open badger blockstore: {exc}") from exc
    return DiskBlockstore(opts, conn)