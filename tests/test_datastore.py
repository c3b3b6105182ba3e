import pytest

from venusminer.datastore import (
    DatastoreKeyNotFoundError,
    Key,
    MapDatastore,
    NamespacedDatastore,
)


def test_key_is_cleaned():
    assert Key("a//b/") == Key("/a/b")
    assert str(Key("")) == "/"
    assert Key("/a/../b") == Key("/b")


def test_key_child():
    assert Key("/a").child("b") == Key("/a/b")
    assert Key("/a").child(Key("/c/d")) == Key("/a/c/d")


def test_put_get_has_size():
    ds = MapDatastore()
    ds.put("/x", b"hello")
    assert ds.get(Key("/x")) == b"hello"
    assert ds.has("/x")
    assert not ds.has("/y")
    assert ds.get_size("/x") == len(b"hello")


def test_missing_key_raises():
    ds = MapDatastore()
    with pytest.raises(DatastoreKeyNotFoundError):
        ds.get("/missing")
    with pytest.raises(DatastoreKeyNotFoundError):
        ds.get_size("/missing")


def test_delete():
    ds = MapDatastore()
    ds.put("/x", b"1")
    ds.delete("/x")
    ds.delete("/never-there")
    assert not ds.has("/x")


def test_query_prefix_strict_descendants():
    ds = MapDatastore()
    for path in ("/a/2", "/a/1", "/b/1", "/a", "/ab"):
        ds.put(path, path.encode())
    assert [k for k, _ in ds.query("/a")] == [Key("/a/1"), Key("/a/2")]
    everything = list(ds.query())
    assert [k for k, _ in everything] == sorted(Key(p) for p in ("/a/2", "/a/1", "/b/1", "/a", "/ab"))
    assert all(v == str(k).encode() for k, v in everything)


def test_query_is_a_snapshot():
    ds = MapDatastore()
    ds.put("/a/1", b"1")
    ds.put("/a/2", b"2")
    seen = []
    for key, _ in ds.query():
        ds.delete(key)
        seen.append(key)
    assert seen == [Key("/a/1"), Key("/a/2")]
    assert list(ds.query()) == []


def test_batch_applies_on_commit():
    ds = MapDatastore()
    ds.put("/old", b"x")
    batch = ds.batch()
    batch.put("/new", b"y")
    batch.delete("/old")
    assert ds.has("/old")
    assert not ds.has("/new")
    batch.commit()
    assert not ds.has("/old")
    assert ds.get("/new") == b"y"


def test_namespaced_datastore():
    base = MapDatastore()
    base.put("/other/x", b"outside")
    ns = NamespacedDatastore(base, Key("/ns"))
    ns.put("/x", b"1")
    ns.put("/sub/y", b"2")
    assert base.get("/ns/x") == b"1"
    assert ns.get("/x") == b"1"
    assert ns.has("/sub/y")
    assert not ns.has("/other/x")
    assert list(ns.query()) == [(Key("/sub/y"), b"2"), (Key("/x"), b"1")]
    assert list(ns.query("/sub")) == [(Key("/sub/y"), b"2")]
    ns.delete("/x")
    assert not base.has("/ns/x")
    with pytest.raises(DatastoreKeyNotFoundError):
        ns.get("/x")