import hashlib
import io

import pytest

from venusminer.backupds import BackupDatastore, BackupFormatError, read_backup, wrap
from venusminer.datastore import Key, MapDatastore


def _dump(store: BackupDatastore) -> bytes:
    out = io.BytesIO()
    store.backup(out)
    return out.getvalue()


def _restore(data: bytes) -> list[tuple[Key, bytes]]:
    entries = []
    read_backup(io.BytesIO(data), lambda k, v: entries.append((k, v)))
    return entries


def test_empty_backup_bytes():
    data = _dump(wrap(MapDatastore()))
    assert data == b"\x82\x9f\xff\x58\x20" + hashlib.sha256(b"\x9f\xff").digest()
    assert _restore(data) == []


def test_backup_structure_and_checksum():
    store = wrap(MapDatastore())
    store.put("/a", b"1")
    data = _dump(store)
    assert data[:2] == b"\x82\x9f"
    assert data[-34:-32] == b"\x58\x20"
    assert data[-32:] == hashlib.sha256(data[1:-34]).digest()


def test_round_trip():
    child = MapDatastore()
    store = wrap(child)
    store.put("/a/1", b"one")
    store.put("/b", b"")
    store.put("/c/long", b"x" * 300)
    store.put("/d/huge", bytes(range(256)) * 300)
    restored = MapDatastore()
    read_backup(io.BytesIO(_dump(store)), restored.put)
    assert list(restored.query()) == list(child.query())


@pytest.mark.parametrize("length", [23, 24, 255, 256, 65535, 65536])
def test_round_trip_value_lengths(length):
    store = wrap(MapDatastore())
    store.put("/k", b"v" * length)
    assert _restore(_dump(store)) == [(Key("/k"), b"v" * length)]


def test_wrong_outer_header():
    with pytest.raises(BackupFormatError, match="0x82"):
        _restore(b"\x83\x9f\xff")


def test_wrong_inner_header():
    with pytest.raises(BackupFormatError, match="0x9f"):
        _restore(b"\x82\x80\xff")


def test_empty_stream():
    with pytest.raises(BackupFormatError, match="reading array header"):
        _restore(b"")


def test_truncated_backup():
    store = wrap(MapDatastore())
    store.put("/a", b"value")
    data = _dump(store)
    with pytest.raises(BackupFormatError):
        _restore(data[:-10])


def test_tampered_checksum():
    store = wrap(MapDatastore())
    store.put("/a", b"value")
    data = bytearray(_dump(store))
    data[-1] ^= 0xFF
    with pytest.raises(BackupFormatError, match="checksum"):
        _restore(bytes(data))


def test_tampered_value_breaks_checksum():
    store = wrap(MapDatastore())
    store.put("/a", b"value")
    data = _dump(store)
    index = data.index(b"value")
    tampered = data[:index] + b"VALUE" + data[index + 5:]
    with pytest.raises(BackupFormatError, match="checksum"):
        _restore(tampered)


def test_key_must_be_byte_string():
    with pytest.raises(BackupFormatError, match="reading key"):
        _restore(b"\x82\x9f\x82\x61a\x41b\xff")


def test_callback_error_propagates():
    store = wrap(MapDatastore())
    store.put("/a", b"1")

    class Stop(Exception):
        pass

    def callback(key, value):
        raise Stop(str(key))

    with pytest.raises(Stop, match="/a"):
        read_backup(io.BytesIO(_dump(store)), callback)


def test_proxy_methods():
    child = MapDatastore()
    store = wrap(child)
    store.put("/x", b"abc")
    assert child.get("/x") == b"abc"
    assert store.get("/x") == b"abc"
    assert store.has("/x")
    assert store.get_size("/x") == 3
    assert list(store.query()) == [(Key("/x"), b"abc")]
    store.delete("/x")
    assert not child.has("/x")


def test_batch_commit():
    child = MapDatastore()
    store = wrap(child)
    batch = store.batch()
    batch.put("/p", b"q")
    assert not child.has("/p")
    batch.commit()
    assert child.get("/p") == b"q"
    batch.delete("/p")
    batch.commit()
    assert not store.has("/p")