"""Content identifiers, blocks and in-memory block stores."""

from __future__ import annotations

import base64
import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, TypeVar

log = logging.getLogger("blockstore")

T = TypeVar("T")

CODEC_RAW = 0x55
CODEC_DAG_PROTOBUF = 0x70
CODEC_DAG_CBOR = 0x71

MULTIHASH_SHA2_256 = 0x12
_SHA2_256_LENGTH = 32

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _encode_varint(value: int) -> bytes:
    if value < 0:
        raise ValueError("varint must not be negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _decode_varint(data: bytes, offset: int) -> tuple[int, int]:
    value = 0
    shift = 0
    while offset < len(data):
        byte = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, offset
        shift += 7
        if shift > 63:
            raise ValueError("varint too long")
    raise ValueError("unexpected end of data while reading varint")


def _base58(data: bytes) -> str:
    number = int.from_bytes(data, "big")
    chars = []
    while number:
        number, rem = divmod(number, 58)
        chars.append(_BASE58_ALPHABET[rem])
    leading = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(chars))


def _check_multihash(multihash: bytes) -> None:
    _, offset = _decode_varint(multihash, 0)
    length, offset = _decode_varint(multihash, offset)
    if len(multihash) - offset != length:
        raise ValueError("multihash length does not match its digest")


def sha256_multihash(data: bytes) -> bytes:
    """The sha2-256 multihash of ``data``."""
    digest = hashlib.sha256(data).digest()
    return bytes([MULTIHASH_SHA2_256, _SHA2_256_LENGTH]) + digest


@dataclass(frozen=True)
class Cid:
    """A content identifier: version, codec and multihash."""

    version: int
    codec: int
    multihash: bytes

    @property
    def hash(self) -> bytes:
        return self.multihash

    @property
    def defined(self) -> bool:
        return bool(self.multihash)

    def to_bytes(self) -> bytes:
        """The binary form of this identifier."""
        if self.version == 0:
            return bytes(self.multihash)
        return _encode_varint(self.version) + _encode_varint(self.codec) + self.multihash

    @staticmethod
    def from_bytes(data: bytes) -> "Cid":
        """Decode a binary identifier; raises ValueError if malformed."""
        data = bytes(data)
        if len(data) == 34 and data[0] == MULTIHASH_SHA2_256 and data[1] == _SHA2_256_LENGTH:
            return Cid(version=0, codec=CODEC_DAG_PROTOBUF, multihash=data)
        version, offset = _decode_varint(data, 0)
        if version != 1:
            raise ValueError(f"invalid cid version: {version}")
        codec, offset = _decode_varint(data, offset)
        multihash = data[offset:]
        if not multihash:
            raise ValueError("cid is missing its multihash")
        _check_multihash(multihash)
        return Cid(version=1, codec=codec, multihash=multihash)

    def __str__(self) -> str:
        if not self.defined:
            return "b"
        if self.version == 0:
            return _base58(self.multihash)
        encoded = base64.b32encode(self.to_bytes()).decode("ascii").rstrip("=").lower()
        return "b" + encoded


UNDEF = Cid(version=0, codec=0, multihash=b"")


def new_cid_v0(multihash: bytes) -> Cid:
    """A version 0 identifier for a dag-protobuf multihash."""
    return Cid(version=0, codec=CODEC_DAG_PROTOBUF, multihash=bytes(multihash))


def new_cid_v1(codec: int, multihash: bytes) -> Cid:
    """A version 1 identifier with the given codec."""
    return Cid(version=1, codec=codec, multihash=bytes(multihash))


@dataclass(frozen=True)
class Block:
    """Raw data together with its identifier."""

    cid: Cid
    raw_data: bytes

    @property
    def multihash(self) -> bytes:
        return self.cid.multihash


def new_block(data: bytes) -> Block:
    """A block whose identifier is the version 0 sha2-256 identifier of ``data``."""
    data = bytes(data)
    return Block(cid=new_cid_v0(sha256_multihash(data)), raw_data=data)


class BlockNotFoundError(LookupError):
    """The requested block is not in the store."""

    def __init__(self, message: str = "blockstore: block not found") -> None:
        super().__init__(message)


class MemBlockstore:
    """A block store that keeps blocks in a dictionary."""

    def __init__(self) -> None:
        self._blocks: dict[Cid, Block] = {}
        self.hash_on_read_requested = False

    def __len__(self) -> int:
        return len(self._blocks)

    def delete_block(self, cid: Cid) -> None:
        self._blocks.pop(cid, None)

    def delete_many(self, cids: Iterable[Cid]) -> None:
        for cid in cids:
            self._blocks.pop(cid, None)

    def has(self, cid: Cid) -> bool:
        return cid in self._blocks

    def view(self, cid: Cid, callback: Callable[[bytes], T]) -> T:
        """Call ``callback`` with the block's data and return what it returns."""
        return callback(self.get(cid).raw_data)

    def get(self, cid: Cid) -> Block:
        try:
            return self._blocks[cid]
        except KeyError:
            raise BlockNotFoundError() from None

    def get_size(self, cid: Cid) -> int:
        return len(self.get(cid).raw_data)

    def put(self, block: Block) -> None:
        self._blocks[block.cid] = Block(cid=block.cid, raw_data=bytes(block.raw_data))

    def put_many(self, blocks: Iterable[Block]) -> None:
        for block in blocks:
            self.put(block)

    def all_keys(self) -> Iterator[Cid]:
        """Iterate over a snapshot of the stored identifiers."""
        return iter(list(self._blocks))

    def hash_on_read(self, enabled: bool) -> None:
        """Record the request; reads are never rehashed by this store."""
        self.hash_on_read_requested = bool(enabled)


def new_memory() -> MemBlockstore:
    """A temporary in-memory block store."""
    return MemBlockstore()


class SyncBlockstore:
    """A thread-safe in-memory block store."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._store = MemBlockstore()

    def delete_block(self, cid: Cid) -> None:
        with self._lock:
            self._store.delete_block(cid)

    def delete_many(self, cids: Iterable[Cid]) -> None:
        with self._lock:
            self._store.delete_many(cids)

    def has(self, cid: Cid) -> bool:
        with self._lock:
            return self._store.has(cid)

    def view(self, cid: Cid, callback: Callable[[bytes], T]) -> T:
        with self._lock:
            return self._store.view(cid, callback)

    def get(self, cid: Cid) -> Block:
        with self._lock:
            return self._store.get(cid)

    def get_size(self, cid: Cid) -> int:
        with self._lock:
            return self._store.get_size(cid)

    def put(self, block: Block) -> None:
        with self._lock:
            self._store.put(block)

    def put_many(self, blocks: Iterable[Block]) -> None:
        with self._lock:
            self._store.put_many(blocks)

    def all_keys(self) -> Iterator[Cid]:
        with self._lock:
            return self._store.all_keys()

    def hash_on_read(self, enabled: bool) -> None:
        """Record the request; reads are never rehashed by this store."""
        with self._lock:
            self._store.hash_on_read(enabled)

    @property
    def hash_on_read_requested(self) -> bool:
        with self._lock:
            return self._store.hash_on_read_requested


def new_memory_sync() -> SyncBlockstore:
    """A thread-safe in-memory block store."""
    return SyncBlockstore()


MissFn = Callable[[Cid], Block]


class FallbackStore:
    """A read-through store that fetches missing blocks elsewhere and keeps them."""

    def __init__(self, blockstore, miss_fn: MissFn | None = None, *, retry_delay: float = 5.0) -> None:
        self.blockstore = blockstore
        self.retry_delay = retry_delay
        self._lock = threading.Lock()
        self._miss_fn = miss_fn

    def set_fallback(self, miss_fn: MissFn | None) -> None:
        with self._lock:
            self._miss_fn = miss_fn

    def _current_miss_fn(self) -> MissFn | None:
        with self._lock:
            return self._miss_fn

    def _get_fallback(self, cid: Cid) -> Block:
        log.warning("fallbackstore: block not found locally, fetching from the network; cid: %s", cid)
        miss_fn = self._current_miss_fn()
        if miss_fn is None:
            # not configured yet; give it a moment and retry once
            time.sleep(self.retry_delay)
            miss_fn = self._current_miss_fn()
            if miss_fn is None:
                log.error("fallbackstore: missFn not configured yet")
                raise BlockNotFoundError()
        block = miss_fn(cid)
        try:
            self.blockstore.put(block)
        except Exception as exc:
            raise RuntimeError(f"persisting fallback-fetched block: {exc}") from exc
        return block

    def get(self, cid: Cid) -> Block:
        try:
            return self.blockstore.get(cid)
        except BlockNotFoundError:
            return self._get_fallback(cid)

    def get_size(self, cid: Cid) -> int:
        try:
            return self.blockstore.get_size(cid)
        except BlockNotFoundError:
            return len(self._get_fallback(cid).raw_data)

    def has(self, cid: Cid) -> bool:
        return self.blockstore.has(cid)

    def view(self, cid: Cid, callback: Callable[[bytes], T]) -> T:
        return self.blockstore.view(cid, callback)

    def put(self, block: Block) -> None:
        self.blockstore.put(block)

    def put_many(self, blocks: Iterable[Block]) -> None:
        self.blockstore.put_many(blocks)

    def delete_block(self, cid: Cid) -> None:
        self.blockstore.delete_block(cid)

    def delete_many(self, cids: Iterable[Cid]) -> None:
        self.blockstore.delete_many(cids)

    def all_keys(self) -> Iterator[Cid]:
        return self.blockstore.all_keys()

    def hash_on_read(self, enabled: bool) -> None:
        self.blockstore.hash_on_read(enabled)


def unwrap_fallback_store(bs):
    """The store inside a FallbackStore and True, or ``bs`` unchanged and False."""
    if isinstance(bs, FallbackStore):
        return bs.blockstore, True
    return bs, False