# venusminer

Library components for a Filecoin block-producing miner. The package uses only
the Python standard library.

## Modules

- **`venusminer.journal`** is the event journal model. It provides `EventType`
  (only types handed out by a registry can be enabled), `Event`,
  `EventTypeRegistry`, the abstract `Journal`, and `NilJournal`, which records
  nothing and is shared through `nil_journal()`.
  `parse_disabled_events("system:event,...")` parses a list of disabled events and
  raises `ValueError` on a malformed entry. `env_disabled_events()` reads the list
  from the `VENUS_MINER_JOURNAL_DISABLED_EVENTS` environment variable. If that
  variable is unset or invalid, it falls back to the defaults (`mpool:add`,
  `mpool:remove`).
- **`venusminer.fsjournal`** provides `FSJournal`, a journal that writes
  newline-delimited JSON files. A background thread does the writing, and the
  journal moves to a new file once the size limit is reached.
  `open_fs_journal(repo_path, disabled)` creates `<repo_path>/journal` and opens a
  journal there with a 1 GiB limit per file.
- **`venusminer.keytypes`** defines `KeyType` (`KeyType.BLS`, `KeyType.SECP256K1`,
  `KeyType.SECP256K1_LEDGER`), `KeyInfo` and the abstract `KeyStore`, along with
  the errors `KeyInfoNotFoundError` and `KeyExistsError`. `parse_key_type` decodes
  a key type from JSON. It accepts either a string or the deprecated integer
  signature type (1 or 2).
- **`venusminer.apiinfo`** defines `APIInfo(addr, token)`:
  - `dial_args(version)` builds the RPC URL. A multiaddr becomes `ws://host:port/rpc/<version>`.
  - `host()` returns the host and port.
  - `auth_header()` returns a Bearer `Authorization` header.

  `parse_api_info(s)` splits a `token:address` string into its token and address.
- **`venusminer.metrics`** provides `since_in_milliseconds(start)`, which works on
  `time.monotonic()` readings. It also provides `timer(record)`, which starts a
  stopwatch and returns a function that reports the elapsed milliseconds to
  `record` and also returns them.
- **`venusminer.blockstore`** covers content identifiers and in-memory block stores:
  - Identifiers: `Cid` (binary form via `to_bytes` and `from_bytes`), `new_cid_v0` and `new_cid_v1`.
  - Blocks: `Block` and `new_block(data)`, which uses a sha2-256 v0 identifier.
  - Stores: `MemBlockstore`, the thread-safe `SyncBlockstore`, and `FallbackStore`.
    On a local miss, `FallbackStore` fetches the block through a configurable function and stores it.
  - `unwrap_fallback_store` returns the store inside a `FallbackStore`.
  - A missing block raises `BlockNotFoundError`.
- **`venusminer.diskstore`** provides `DiskBlockstore`, a persistent block store kept in
  one SQLite file. Its keys are an optional prefix plus the unpadded base32 form of
  the multihash. Open it with `open_blockstore(default_options(path))`. Once it is
  closed, any operation raises `BlockstoreClosedError`. Closing twice does nothing.
- **`venusminer.randomness`** provides `draw_randomness(rbase, pers, round_, entropy)`,
  a blake2b-256 derivation. It also provides `compute_vrf(sign, account, worker,
  sig_input)`, which calls the given signing function and raises `VRFError` unless
  the signature is BLS.
- **`venusminer.datastore`** provides:
  - `Key`, a cleaned hierarchical key.
  - `MapDatastore`, an in-memory store with batches.
  - `NamespacedDatastore`, a view of another store below a prefix.

  A missing key raises `DatastoreKeyNotFoundError`.
- **`venusminer.backupds`** has `wrap(child)`, which returns a `BackupDatastore`.
  Its `backup(out)` writes every entry as CBOR with a SHA-256 checksum, and writes
  are held off while the backup runs. `read_backup(stream, callback)` reads such a
  backup back and verifies the checksum. It raises `BackupFormatError` on bad input.
- **`venusminer.slashfilter`** has `SlashFilter`, which records mined `BlockHeader`s
  in a datastore. `mined_block` raises `ConsensusFaultError` for three faults:
  - double-fork (two blocks at one height);
  - time-offset (two blocks on the same parents);
  - parent-grinding (not building on the miner's own block from the parent epoch).

  No checks are made within `finality` epochs of an optional `upgrade_height`.

## Examples

Recording journal events:

```python
from venusminer.journal import parse_disabled_events
from venusminer.fsjournal import open_fs_journal

journal = open_fs_journal("/tmp/miner-repo", parse_disabled_events("mpool:add"))
evt = journal.register_event_type("miner", "block_mined")
journal.record_event(evt, lambda: {"epoch": 100})
journal.close()
```

Storing blocks on disk:

```python
from venusminer.blockstore import new_block
from venusminer.diskstore import default_options, open_blockstore

with open_blockstore(default_options("/tmp/blocks")) as store:
    block = new_block(b"some data")
    store.put(block)
    assert store.get(block.cid).raw_data == b"some data"
```

Backing up a datastore:

```python
import io
from venusminer.datastore import Key, MapDatastore
from venusminer.backupds import wrap, read_backup

ds = wrap(MapDatastore())
ds.put(Key("/a"), b"value")
buf = io.BytesIO()
ds.backup(buf)
buf.seek(0)
read_backup(buf, lambda key, value: print(key, value))
```

Building a dial URL and header:

```python
from venusminer.apiinfo import APIInfo

info = APIInfo(addr="/ip4/127.0.0.1/tcp/1234", token="token")
info.dial_args("v0")   # 'ws://127.0.0.1:1234/rpc/v0'
info.auth_header()     # {'Authorization': 'Bearer token'}
```

## What this package does not do

The package is a set of library pieces. The following are not part of it:

- a command-line program;
- an RPC server or client;
- a mining loop;
- connections to a chain node.

It does not create or verify BLS or secp256k1 signatures. `compute_vrf` relies on a
signing function that you pass in. The slash filter keeps its records only in a
datastore you provide; it has no database backend.

## Tests

```
pip install -e .[test]
pytest
```