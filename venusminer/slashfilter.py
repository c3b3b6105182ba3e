"""Refuses to record blocks that would trigger consensus faults."""

from __future__ import annotations

from dataclasses import dataclass

from venusminer.blockstore import Cid
from venusminer.datastore import DatastoreKeyNotFoundError, Key, NamespacedDatastore

FINALITY = 900


class ConsensusFaultError(Exception):
    """Producing the block would trigger a consensus fault."""


@dataclass(frozen=True)
class BlockHeader:
    """The parts of a block header the slash filter looks at."""

    miner: str
    height: int
    parents: tuple[Cid, ...]
    cid: Cid


def _tipset_key_bytes(parents: tuple[Cid, ...]) -> bytes:
    return b"".join(c.to_bytes() for c in parents)


class SlashFilter:
    """Tracks mined blocks in a datastore and rejects faulty new ones.

    Near ``upgrade_height`` (within ``finality`` epochs) no checks are made.
    """

    def __init__(self, dstore, *, upgrade_height: int | None = None, finality: int = FINALITY) -> None:
        self.by_epoch = NamespacedDatastore(dstore, Key("/slashfilter/epoch"))
        self.by_parents = NamespacedDatastore(dstore, Key("/slashfilter/parents"))
        self.upgrade_height = upgrade_height
        self.finality = finality

    def _near_upgrade(self, epoch: int) -> bool:
        if self.upgrade_height is None:
            return False
        return self.upgrade_height - self.finality < epoch < self.upgrade_height + self.finality

    @staticmethod
    def _stored_cid(store: NamespacedDatastore, key: Key) -> Cid | None:
        if not store.has(key):
            return None
        try:
            data = store.get(key)
        except DatastoreKeyNotFoundError as exc:
            raise LookupError(f"getting other block cid: {exc}") from exc
        return Cid.from_bytes(data)

    def _check_fault(self, store: NamespacedDatastore, key: Key, header: BlockHeader, fault: str) -> None:
        other = self._stored_cid(store, key)
        if other is None or other == header.cid:
            return
        raise ConsensusFaultError(
            f"produced block would trigger '{fault}' consensus fault; "
            f"miner: {header.miner}; bh: {header.cid}, other: {other}"
        )

    def mined_block(self, header: BlockHeader, parent_epoch: int) -> None:
        """Record ``header``, or raise ConsensusFaultError if it would be a fault."""
        if self._near_upgrade(header.height):
            return

        epoch_key = Key(f"/{header.miner}/{header.height}")
        self._check_fault(self.by_epoch, epoch_key, header, "double-fork mining faults")

        parents_key = Key(f"/{header.miner}/{_tipset_key_bytes(header.parents).hex()}")
        self._check_fault(self.by_parents, parents_key, header, "time-offset mining faults")

        parent = self._stored_cid(self.by_epoch, Key(f"/{header.miner}/{parent_epoch}"))
        if parent is not None and parent not in header.parents:
            raise ConsensusFaultError(
                "produced block would trigger 'parent-grinding fault' consensus fault; "
                f"miner: {header.miner}; bh: {header.cid}, expected parent: {parent}"
            )

        self.by_parents.put(parents_key, header.cid.to_bytes())
        self.by_epoch.put(epoch_key, header.cid.to_bytes())