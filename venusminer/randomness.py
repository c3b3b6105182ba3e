"""Randomness derivation and VRF computation for block election."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable

MT_DRAW_RANDOM_PARAM = "drawrandomparam"


class SigType(IntEnum):
    """Signature schemes."""

    UNKNOWN = 255
    SECP256K1 = 1
    BLS = 2


@dataclass(frozen=True)
class Signature:
    """A signature and the scheme that produced it."""

    type: SigType
    data: bytes


class VRFError(ValueError):
    """A VRF could not be computed or verified."""


SignFunc = Callable[[str, Any, bytes, dict], Signature]


def _blake2b256(data: bytes = b"") -> "hashlib._Hash":
    return hashlib.blake2b(data, digest_size=32)


def _int64(value: int, what: str) -> bytes:
    try:
        return struct.pack(">q", value)
    except struct.error as exc:
        raise ValueError(f"deriving randomness: {what} out of range: {exc}") from exc


def draw_randomness(rbase: bytes, pers: int, round_: int, entropy: bytes) -> bytes:
    """Derive 32 bytes of randomness from a base, a domain tag, a round and entropy."""
    h = _blake2b256()
    h.update(_int64(int(pers), "domain separation tag"))
    h.update(_blake2b256(bytes(rbase)).digest())
    h.update(_int64(int(round_), "round"))
    h.update(bytes(entropy))
    return h.digest()


def compute_vrf(sign: SignFunc, account: str, worker: Any, sig_input: bytes) -> bytes:
    """Sign ``sig_input`` with the worker key and return the BLS signature bytes."""
    sig = sign(account, worker, sig_input, {"Type": MT_DRAW_RANDOM_PARAM})
    if sig.type != SigType.BLS:
        raise VRFError("miner worker address was not a BLS key")
    return sig.data