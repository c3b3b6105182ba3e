"""A rolling journal written as newline-delimited JSON files."""

from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, BinaryIO, Callable, Iterable

from venusminer.journal import Event, EventType, EventTypeRegistry, Journal

log = logging.getLogger("journal")

DEFAULT_SIZE_LIMIT = 1 << 30
_STOP = object()


def _local_now() -> datetime:
    return datetime.now().astimezone()


def _file_stamp(moment: datetime) -> str:
    offset = moment.utcoffset()
    if offset is None:
        zone = ""
    elif offset == timedelta(0):
        zone = "Z"
    else:
        zone = moment.strftime("%z")
    return moment.strftime("%Y-%m-%dT%H%M%S") + zone


class FSJournal(EventTypeRegistry, Journal):
    """A journal backed by files in one directory, rolled over at a size limit."""

    def __init__(
        self,
        directory: str | Path,
        disabled: Iterable[EventType] = (),
        *,
        size_limit: int = DEFAULT_SIZE_LIMIT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        EventTypeRegistry.__init__(self, disabled)
        self.directory = Path(directory)
        self.size_limit = size_limit
        self._clock = clock or _local_now
        self._file: BinaryIO | None = None
        self._size = 0
        self._incoming: queue.Queue[Any] = queue.Queue(maxsize=32)
        self._closing = threading.Event()
        self._roll()
        self._worker = threading.Thread(target=self._run, name="fs-journal", daemon=True)
        self._worker.start()

    def record_event(self, evt_type: EventType, supplier: Callable[[], Any]) -> None:
        if not evt_type.is_enabled():
            return
        try:
            data = supplier()
        except Exception as exc:  # the supplier is caller code; never let it escape
            log.warning("recovered from error while recording journal event; type=%s, err=%s", evt_type, exc)
            return
        evt = Event(event_type=evt_type, timestamp=self._clock(), data=data)
        while not self._closing.is_set():
            try:
                self._incoming.put(evt, timeout=0.05)
                return
            except queue.Full:
                continue
        log.warning("journal closed but tried to log event %s", evt)

    def close(self) -> None:
        if self._closing.is_set():
            return
        self._closing.set()
        self._incoming.put(_STOP)
        self._worker.join()

    def _roll(self) -> None:
        if self._file is not None:
            self._file.close()
        name = f"venus-miner-journal-{_file_stamp(self._clock())}.ndjson"
        self._file = open(self.directory / name, "wb")
        self._size = 0

    def _put_event(self, evt: Event) -> None:
        line = json.dumps(evt.to_json_dict(), default=str).encode() + b"\n"
        assert self._file is not None
        self._size += self._file.write(line)
        self._file.flush()
        if self._size >= self.size_limit:
            try:
                self._roll()
            except OSError as exc:
                log.error("failed to roll journal file: %s", exc)

    def _write(self, evt: Event) -> None:
        try:
            self._put_event(evt)
        except (OSError, TypeError, ValueError) as exc:
            log.error("failed to write out journal event %s: %s", evt, exc)

    def _run(self) -> None:
        while True:
            item = self._incoming.get()
            if item is _STOP:
                break
            self._write(item)
        while True:
            try:
                item = self._incoming.get_nowait()
            except queue.Empty:
                break
            if item is not _STOP:
                self._write(item)
        if self._file is not None:
            self._file.close()


def open_fs_journal(repo_path: str | Path, disabled: Iterable[EventType]) -> FSJournal:
    """Open a rolling journal in ``<repo_path>/journal`` with a 1 GiB file limit."""
    directory = Path(repo_path) / "journal"
    directory.mkdir(parents=True, exist_ok=True)
    return FSJournal(directory, disabled)