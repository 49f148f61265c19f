"""A patch session: one store, one synchronizer, one event queue."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Optional

from patch_sync.buses import BusAllocator
from patch_sync.config import SyncConfig
from patch_sync.engine import Engine
from patch_sync.store import GraphStore
from patch_sync.sync import Synchronizer, SyncReport

logger = logging.getLogger(__name__)

Edit = Callable[[GraphStore], Any]


class PatchSession:
    """Serializes graph edits and synchronization passes.

    Every store mutation enqueues a pass. Events run strictly one after
    another: an edit made while a pass is running (say, by a listener) is
    queued behind it rather than interleaved with it.

    Only the most recent ``history`` pass reports are kept in ``reports``.
    """

    def __init__(
        self,
        engine: Engine,
        store: Optional[GraphStore] = None,
        config: Optional[SyncConfig] = None,
        *,
        history: int = 16,
    ) -> None:
        if history < 1:
            raise ValueError("history must keep at least one report")
        self.config = config or SyncConfig()
        self.store = store or GraphStore()
        self.synchronizer = Synchronizer(engine, BusAllocator(self.config), self.config)
        self.reports: deque[SyncReport] = deque(maxlen=history)
        self._queue: deque[Callable[[], Any]] = deque()
        self._draining = False
        self._unsubscribe = self.store.subscribe(self._on_change)

    @property
    def engine(self) -> Engine:
        return self.synchronizer.engine

    @property
    def last_report(self) -> Optional[SyncReport]:
        return self.reports[-1] if self.reports else None

    def submit(self, edit: Edit) -> None:
        """Queue ``edit(store)`` and run the queue unless it is already running."""
        self._queue.append(lambda: edit(self.store))
        self._drain()

    def sync(self) -> SyncReport:
        """Run a pass now, outside of any edit, and return its report.

        Raises RuntimeError when called from inside a queued event (an edit
        or a store listener), where the pass could only be queued.
        """
        if self._draining:
            raise RuntimeError("sync() cannot run while the session queue is draining")
        done: list[SyncReport] = []
        self._queue.append(lambda: done.append(self._pass()))
        self._drain()
        return done[0]

    def close(self) -> None:
        """Stop listening to the store and stop every running instance."""
        self._unsubscribe()
        self._queue.clear()
        self.synchronizer.reset()

    def _on_change(self) -> None:
        self._queue.append(self._pass)
        self._drain()

    def _pass(self) -> SyncReport:
        report = self.synchronizer.sync(self.store.get_nodes(), self.store.get_connections())
        self.reports.append(report)
        return report

    def _drain(self) -> None:
        if self._draining:
            return
        self._draining = True
        try:
            while self._queue:
                event = self._queue.popleft()
                event()
        finally:
            self._draining = False
