"""Audio and control bus allocation."""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from patch_sync.config import SyncConfig
from patch_sync.models import Connection

logger = logging.getLogger(__name__)

ControlKey = tuple[str, str]  # (target node id, parameter name)


class BusExhaustedError(RuntimeError):
    """Raised when a bus space has no free index left."""


class BusAllocator:
    """Owns the audio-bus and control-bus tables of one patch.

    Audio buses are held per connection: a connection keeps its stereo pair
    for as long as it keeps qualifying, and a connection that stops qualifying
    gives its pair back. New pairs come from a counter that only moves forward
    (a just-released pair may still be written by an instance that is fading
    out), wrapping to the first private bus only when the space runs out.

    Control buses live in a separate numeric space, one per (node, param) key.
    """

    def __init__(self, config: Optional[SyncConfig] = None) -> None:
        self.config = config or SyncConfig()
        self._audio: dict[int, int] = {}
        self._next_audio = self.config.first_audio_bus
        self._control: dict[ControlKey, int] = {}
        self._next_control = 0

    # -- audio ---------------------------------------------------------------

    def assign_audio(
        self,
        live: set[str],
        connections: Sequence[Connection],
        sink_id: str,
    ) -> dict[int, int]:
        """Assign buses to every qualifying connection; return {connection id: bus}.

        A connection qualifies when it carries audio (plain cable or audio-rate
        modulation) and both ends are live, the mix destination counting as live.
        Connections into the mix destination share the sink bus.
        """
        table: dict[int, int] = {}
        private: list[Connection] = []
        for conn in connections:
            if not conn.carries_audio:
                continue
            if conn.from_node not in live:
                continue
            if conn.to_node not in live and conn.to_node != sink_id:
                continue
            if conn.to_node == sink_id and not conn.is_modulation:
                table[conn.id] = self.config.sink_bus
                continue
            private.append(conn)

        # Pairs still held by qualifying connections are off limits to new ones
        in_use = {self._audio[c.id] for c in private if c.id in self._audio}
        for conn in private:
            held = self._audio.get(conn.id)
            if held is None or held == self.config.sink_bus:
                held = self._take_audio(in_use)
                in_use.add(held)
            table[conn.id] = held

        released = set(self._audio) - set(table)
        if released:
            logger.debug("released audio buses for connections %s", sorted(released))
        self._audio = table
        return dict(table)

    def audio_bus(self, conn_id: int) -> Optional[int]:
        return self._audio.get(conn_id)

    def _take_audio(self, in_use: set[int]) -> int:
        first = self.config.first_audio_bus
        limit = self.config.audio_bus_count
        span = (limit - first) // 2
        bus = self._next_audio
        for _ in range(span):
            if bus + 2 > limit:
                bus = first
            if bus not in in_use:
                self._next_audio = bus + 2
                return bus
            bus += 2
        raise BusExhaustedError(f"No free audio bus in [{first}, {limit})")

    # -- control -------------------------------------------------------------

    def allocate_control(self, key: ControlKey) -> int:
        """Return the control bus for *key*, allocating one on first request."""
        bus = self._control.get(key)
        if bus is not None:
            return bus
        bus = self._take_control()
        self._control[key] = bus
        logger.debug("control bus %d -> %s:%s", bus, key[0], key[1])
        return bus

    def control_bus(self, key: ControlKey) -> Optional[int]:
        return self._control.get(key)

    def free_control(self, key: ControlKey) -> None:
        self._control.pop(key, None)

    def release_unused_control(self, active: Iterable[ControlKey]) -> list[ControlKey]:
        """Free every control bus whose key is not in *active*; return the freed keys."""
        keep = set(active)
        freed = [key for key in self._control if key not in keep]
        for key in freed:
            del self._control[key]
        return freed

    def control_table(self) -> dict[ControlKey, int]:
        return dict(self._control)

    def reset(self) -> None:
        """Drop every assignment. Counters keep moving forward."""
        self._audio.clear()
        self._control.clear()

    def _take_control(self) -> int:
        in_use = set(self._control.values())
        limit = self.config.control_bus_count
        bus = self._next_control
        for _ in range(limit):
            if bus >= limit:
                bus = 0
            if bus not in in_use:
                self._next_control = bus + 1
                return bus
            bus += 1
        raise BusExhaustedError(f"No free control bus in [0, {limit})")
