"""Key types and key records kept in a key store."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

log = logging.getLogger("types")

_SIG_TYPE_SECP256K1 = 1
_SIG_TYPE_BLS = 2


class KeyInfoNotFoundError(LookupError):
    """No key is stored under the requested name."""

    def __init__(self, message: str = "key info not found") -> None:
        super().__init__(message)


class KeyExistsError(ValueError):
    """A key is already stored under the name."""

    def __init__(self, message: str = "key already exists") -> None:
        super().__init__(message)


class KeyType(str):
    """The type of a key; any string is allowed, the known ones are class attributes."""

    BLS: "KeyType"
    SECP256K1: "KeyType"
    SECP256K1_LEDGER: "KeyType"


KeyType.BLS = KeyType("bls")
KeyType.SECP256K1 = KeyType("secp256k1")
KeyType.SECP256K1_LEDGER = KeyType("secp256k1-ledger")


def parse_key_type(value: str | bytes) -> KeyType:
    """Decode a key type from JSON, as a string or as a deprecated signature-type integer."""
    try:
        decoded = json.loads(value)
    except ValueError as exc:
        raise ValueError(f"could not unmarshal KeyType either as string nor integer: {exc}") from exc
    if decoded is None:
        return KeyType("")
    if isinstance(decoded, str):
        return KeyType(decoded)
    if not isinstance(decoded, int) or isinstance(decoded, bool) or not 0 <= decoded <= 255:
        raise ValueError(f"could not unmarshal KeyType either as string nor integer: {decoded!r}")
    if decoded == _SIG_TYPE_BLS:
        result = KeyType.BLS
    elif decoded == _SIG_TYPE_SECP256K1:
        result = KeyType.SECP256K1
    else:
        raise ValueError(f"unknown sigtype: {decoded}")
    log.warning("deprecation: integer style 'KeyType' is deprecated, switch to string style")
    return result


@dataclass(frozen=True)
class KeyInfo:
    """A key as stored in a key store."""

    type: KeyType
    private_key: bytes


class KeyStore(ABC):
    """Storage for secret keys."""

    @abstractmethod
    def list(self) -> list[str]:
        """Names of all stored keys."""

    @abstractmethod
    def get(self, name: str) -> KeyInfo:
        """The key stored under ``name``; raises KeyInfoNotFoundError if absent."""

    @abstractmethod
    def put(self, name: str, info: KeyInfo) -> None:
        """Store a key under ``name``; raises KeyExistsError if taken."""

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove the key stored under ``name``."""