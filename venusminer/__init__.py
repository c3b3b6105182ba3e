"""Components for a Filecoin block-producing miner: journal, block stores, datastore backups and slash filtering."""

__version__ = "0.1.0"