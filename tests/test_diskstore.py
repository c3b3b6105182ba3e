import pytest

from venusminer.blockstore import (
    CODEC_DAG_PROTOBUF,
    CODEC_RAW,
    UNDEF,
    BlockNotFoundError,
    new_block,
    new_cid_v0,
    new_cid_v1,
    sha256_multihash,
)
from venusminer.diskstore import (
    BlockstoreClosedError,
    Options,
    default_options,
    open_blockstore,
)


def _prefixed(path):
    opts = default_options(path)
    opts.prefix = "/prefixed/"
    return opts


@pytest.fixture(params=[default_options, _prefixed], ids=["non_prefixed", "prefixed"])
def opts_supplier(request):
    return request.param


@pytest.fixture
def store(tmp_path, opts_supplier):
    bs = open_blockstore(opts_supplier(tmp_path / "bs"))
    yield bs
    bs.close()


def _insert_blocks(bs, count):
    keys = []
    for i in range(count):
        block = new_block(f"some data {i}".encode())
        bs.put(block)
        keys.append(new_cid_v1(CODEC_RAW, block.multihash))
    return keys


def test_get_when_key_not_present(store):
    cid = new_cid_v0(sha256_multihash(b"stuff"))
    with pytest.raises(BlockNotFoundError):
        store.get(cid)


def test_get_when_key_is_undefined(store):
    with pytest.raises(BlockNotFoundError):
        store.get(UNDEF)


def test_put_then_get_block(store):
    orig = new_block(b"some data")
    store.put(orig)
    assert store.get(orig.cid).raw_data == orig.raw_data


def test_has(store):
    orig = new_block(b"some data")
    store.put(orig)
    assert store.has(orig.cid) is True
    assert store.has(new_block(b"another thing").cid) is False


def test_cid_v0_v1(store):
    orig = new_block(b"some data")
    store.put(orig)
    fetched = store.get(new_cid_v1(CODEC_DAG_PROTOBUF, orig.cid.hash))
    assert fetched.raw_data == orig.raw_data


def test_put_then_get_size(store):
    block = new_block(b"some data")
    missing = new_block(b"missingBlock")
    empty = new_block(b"")

    store.put(block)
    assert store.get_size(block.cid) == len(block.raw_data)

    store.put(empty)
    assert store.get_size(empty.cid) == 0

    with pytest.raises(BlockNotFoundError):
        store.get_size(missing.cid)


def test_all_keys_simple(store):
    keys = _insert_blocks(store, 100)
    assert sorted(store.all_keys(), key=str) == sorted(keys, key=str)


def test_all_keys_stops_after_close(store):
    _insert_blocks(store, 100)
    it = store.all_keys()
    assert next(it).codec == CODEC_RAW
    assert next(it).codec == CODEC_RAW
    store.close()
    assert list(it) == []


def test_double_close(tmp_path):
    bs = open_blockstore(default_options(tmp_path))
    bs.close()
    bs.close()
    with pytest.raises(BlockstoreClosedError):
        bs.has(new_block(b"x").cid)


def test_operations_after_close_raise(store):
    block = new_block(b"some data")
    store.close()
    with pytest.raises(BlockstoreClosedError):
        store.put(block)
    with pytest.raises(BlockstoreClosedError):
        store.get(block.cid)
    with pytest.raises(BlockstoreClosedError):
        store.all_keys()


def test_reopen_put_get(tmp_path, opts_supplier):
    path = tmp_path / "bs"
    bs = open_blockstore(opts_supplier(path))
    orig = new_block(b"some data")
    bs.put(orig)
    bs.close()

    reopened = open_blockstore(opts_supplier(path))
    try:
        assert reopened.get(orig.cid).raw_data == orig.raw_data
    finally:
        reopened.close()


def test_put_many(store):
    blks = [new_block(b"foo1"), new_block(b"foo2"), new_block(b"foo3")]
    store.put_many(blks)
    for blk in blks:
        assert store.get(blk.cid).raw_data == blk.raw_data
        assert store.has(blk.cid) is True
    assert len(list(store.all_keys())) == 3


def test_delete(store):
    blks = [new_block(b"foo1"), new_block(b"foo2"), new_block(b"foo3")]
    store.put_many(blks)
    store.delete_block(blks[1].cid)

    cids = list(store.all_keys())
    assert len(cids) == 2
    assert set(cids) == {
        new_cid_v1(CODEC_RAW, blks[0].cid.hash),
        new_cid_v1(CODEC_RAW, blks[2].cid.hash),
    }
    assert store.has(blks[1].cid) is False


def test_delete_many(store):
    blks = [new_block(b"foo1"), new_block(b"foo2"), new_block(b"foo3")]
    store.put_many(blks)
    store.delete_many([blks[0].cid, blks[2].cid])
    assert list(store.all_keys()) == [new_cid_v1(CODEC_RAW, blks[1].cid.hash)]


def test_view_returns_callback_result(store):
    block = new_block(b"some data")
    store.put(block)
    assert store.view(block.cid, len) == 9
    with pytest.raises(BlockNotFoundError):
        store.view(new_block(b"nope").cid, len)


def test_for_each_key(store):
    keys = _insert_blocks(store, 5)
    seen = []
    store.for_each_key(seen.append)
    assert set(seen) == set(keys)


def test_for_each_key_propagates_errors(store):
    _insert_blocks(store, 3)

    def fail(cid):
        raise KeyError("stop")

    with pytest.raises(KeyError):
        store.for_each_key(fail)


def test_size_counts_files(store):
    store.put(new_block(b"x" * 4096))
    assert store.size() >= 4096


def test_storage_key(tmp_path):
    bs = open_blockstore(default_options(tmp_path))
    try:
        cid1 = new_block(b"some data").cid
        cid2 = new_block(b"more data").cid
        cid3 = new_block(b"a little more data").cid
        k1 = bs.storage_key(cid1)
        k2 = bs.storage_key(cid2)
        k3 = bs.storage_key(cid3)
        assert len(k1) == 55
        assert len(k2) == 55
        assert len(k3) == 55
        assert len({k1, k2, k3}) == 3
        assert k1.startswith(b"CIQ")
    finally:
        bs.close()


def test_storage_key_prefixed(tmp_path):
    bs = open_blockstore(Options(dir=tmp_path, prefix="/prefixed/"))
    try:
        key = bs.storage_key(new_block(b"some data").cid)
        assert key.startswith(b"/prefixed/")
        assert len(key) == len(b"/prefixed/") + 55
    finally:
        bs.close()


def test_prefixes_isolate_keys(tmp_path):
    plain = open_blockstore(default_options(tmp_path))
    block = new_block(b"some data")
    plain.put(block)
    plain.close()

    prefixed = open_blockstore(_prefixed(tmp_path))
    try:
        assert prefixed.has(block.cid) is False
        assert list(prefixed.all_keys()) == []
    finally:
        prefixed.close()


def test_context_manager_closes(tmp_path):
    with open_blockstore(default_options(tmp_path)) as bs:
        bs.put(new_block(b"data"))
    with pytest.raises(BlockstoreClosedError):
        bs.size()