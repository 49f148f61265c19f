"""Engine command interface and an in-memory recording engine.

The synchronizer talks to the synthesis engine only through the ``Engine``
protocol. How commands are encoded and sent is up to the adapter;
``RecordingEngine`` keeps them as typed ``Command`` models instead, which is
what the tests and the ``plan`` CLI command use.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated, Callable, Literal, Mapping, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, Field

from patch_sync.config import SyncConfig

logger = logging.getLogger(__name__)

Group = Literal["sources", "effects"]
Rate = Literal["control", "audio"]
MeterKind = Literal["control_bus", "buffer"]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class EngineError(Exception):
    """Base class for engine command failures."""


class InstanceGoneError(EngineError):
    """The addressed instance no longer exists; safe to ignore."""


class TransportError(EngineError):
    """The command could not be delivered; must surface to the caller."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class Engine(Protocol):
    def is_running(self, node_id: str) -> bool: ...

    def start_instance(
        self,
        node_id: str,
        program: str,
        wiring: Mapping[str, int],
        params: Mapping[str, float],
        *,
        group: Group,
    ) -> None: ...

    def stop_instance(self, node_id: str) -> None: ...

    def set_parameter(self, node_id: str, name: str, value: float) -> None: ...

    def set_control_bus(self, bus: int, value: float) -> None: ...

    def map_parameter(self, node_id: str, name: str, bus: int, rate: Rate) -> None: ...

    def unmap_parameter(self, node_id: str, name: str, restore_value: float, rate: Rate) -> None: ...

    def reorder_instances(self, node_ids: Sequence[str]) -> None: ...

    def allocate_meter(self, node_id: str, kind: MeterKind) -> int: ...

    def release_meter(self, node_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Commands (discriminated union on "op")
# ---------------------------------------------------------------------------


class StartInstance(BaseModel):
    op: Literal["start"] = "start"
    node_id: str
    instance_id: int
    program: str
    group: Group
    params: dict[str, float]


class StopInstance(BaseModel):
    op: Literal["stop"] = "stop"
    node_id: str
    instance_id: int
    fade_ms: int


class FreeInstance(BaseModel):
    op: Literal["free"] = "free"
    instance_id: int


class SetParameter(BaseModel):
    op: Literal["set"] = "set"
    node_id: str
    instance_id: int
    name: str
    value: float


class SetControlBus(BaseModel):
    op: Literal["c_set"] = "c_set"
    bus: int
    value: float


class MapParameter(BaseModel):
    op: Literal["map"] = "map"
    node_id: str
    instance_id: int
    name: str
    bus: int
    rate: Rate


class UnmapParameter(BaseModel):
    op: Literal["unmap"] = "unmap"
    node_id: str
    instance_id: int
    name: str
    restore_value: float
    rate: Rate


class ReorderInstances(BaseModel):
    op: Literal["reorder"] = "reorder"
    node_ids: list[str]
    instance_ids: list[int]


class AllocateMeter(BaseModel):
    op: Literal["meter_alloc"] = "meter_alloc"
    node_id: str
    kind: MeterKind
    index: int


class ReleaseMeter(BaseModel):
    op: Literal["meter_release"] = "meter_release"
    node_id: str
    kind: MeterKind
    index: int


Command = Annotated[
    Union[
        StartInstance,
        StopInstance,
        FreeInstance,
        SetParameter,
        SetControlBus,
        MapParameter,
        UnmapParameter,
        ReorderInstances,
        AllocateMeter,
        ReleaseMeter,
    ],
    Field(discriminator="op"),
]


def format_command(cmd: BaseModel) -> str:
    """One-line human-readable rendering of a command."""
    fields = cmd.model_dump(exclude={"op"})
    body = " ".join(f"{k}={v}" for k, v in fields.items())
    return f"{getattr(cmd, 'op')} {body}"


# ---------------------------------------------------------------------------
# Recording engine
# ---------------------------------------------------------------------------


class RecordingEngine:
    """An Engine that tracks instance state and records every command it accepts.

    Sources are added at the head of the source group and effects at the tail
    of the effect group. Stopping an instance fades it and frees it after
    ``config.fade_ms``; fading instances are freed by :meth:`collect`.
    Instance ids are global and never reused.

    Commands addressed to a node with no running instance are dropped, or
    raise :class:`InstanceGoneError` when ``strict`` is set.
    """

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        *,
        strict: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or SyncConfig()
        self.strict = strict
        self._clock = clock
        self._next_id = self.config.first_instance_id
        self._active: dict[str, int] = {}
        self._groups: dict[Group, list[int]] = {"sources": [], "effects": []}
        self._fading: dict[int, float] = {}
        self._meters: dict[str, tuple[MeterKind, int]] = {}
        self._next_meter: dict[MeterKind, int] = {"control_bus": 0, "buffer": 0}
        self.params: dict[int, dict[str, float]] = {}
        self.mapped: dict[int, dict[str, tuple[int, Rate]]] = {}
        self.control_buses: dict[int, float] = {}
        self.commands: list[Command] = []

    # -- queries -------------------------------------------------------------

    def is_running(self, node_id: str) -> bool:
        return node_id in self._active

    def instance_id(self, node_id: str) -> Optional[int]:
        return self._active.get(node_id)

    def running(self) -> dict[str, int]:
        return dict(self._active)

    def group_order(self, group: Group) -> list[int]:
        """Instance ids of *group* in evaluation order (head first)."""
        return list(self._groups[group])

    def fading(self) -> list[int]:
        return sorted(self._fading)

    def drain(self) -> list[Command]:
        """Return and clear the recorded commands."""
        out, self.commands = self.commands, []
        return out

    # -- lifecycle -----------------------------------------------------------

    def start_instance(
        self,
        node_id: str,
        program: str,
        wiring: Mapping[str, int],
        params: Mapping[str, float],
        *,
        group: Group,
    ) -> None:
        if node_id in self._active:
            return
        iid = self._next_id
        self._next_id += 1
        self._active[node_id] = iid
        merged = {k: float(v) for k, v in params.items()}
        merged.update({k: float(v) for k, v in wiring.items()})
        self.params[iid] = merged
        if group == "sources":
            self._groups[group].insert(0, iid)
        else:
            self._groups[group].append(iid)
        self._record(
            StartInstance(node_id=node_id, instance_id=iid, program=program, group=group, params=merged)
        )

    def stop_instance(self, node_id: str) -> None:
        iid = self._require(node_id)
        if iid is None:
            return
        del self._active[node_id]
        for members in self._groups.values():
            if iid in members:
                members.remove(iid)
        self._fading[iid] = self._clock() + self.config.fade_ms / 1000.0
        self._record(StopInstance(node_id=node_id, instance_id=iid, fade_ms=self.config.fade_ms))

    def collect(self, now: Optional[float] = None) -> list[int]:
        """Free every fading instance whose grace period has elapsed."""
        now = self._clock() if now is None else now
        done = sorted(iid for iid, at in self._fading.items() if at <= now)
        for iid in done:
            del self._fading[iid]
            self.params.pop(iid, None)
            self.mapped.pop(iid, None)
            self._record(FreeInstance(instance_id=iid))
        return done

    # -- parameters ----------------------------------------------------------

    def set_parameter(self, node_id: str, name: str, value: float) -> None:
        iid = self._require(node_id)
        if iid is None:
            return
        self.params[iid][name] = float(value)
        # A fixed write replaces any bus mapping on the engine side
        self.mapped.get(iid, {}).pop(name, None)
        self._record(SetParameter(node_id=node_id, instance_id=iid, name=name, value=value))

    def set_control_bus(self, bus: int, value: float) -> None:
        self.control_buses[bus] = float(value)
        self._record(SetControlBus(bus=bus, value=value))

    def map_parameter(self, node_id: str, name: str, bus: int, rate: Rate) -> None:
        iid = self._require(node_id)
        if iid is None:
            return
        self.mapped.setdefault(iid, {})[name] = (bus, rate)
        self._record(MapParameter(node_id=node_id, instance_id=iid, name=name, bus=bus, rate=rate))

    def unmap_parameter(self, node_id: str, name: str, restore_value: float, rate: Rate) -> None:
        iid = self._require(node_id)
        if iid is None:
            return
        self.mapped.get(iid, {}).pop(name, None)
        self.params[iid][name] = float(restore_value)
        self._record(
            UnmapParameter(
                node_id=node_id,
                instance_id=iid,
                name=name,
                restore_value=restore_value,
                rate=rate,
            )
        )

    def reorder_instances(self, node_ids: Sequence[str]) -> None:
        """Move each instance to just after its predecessor in *node_ids*."""
        ids = [self._active[nid] for nid in node_ids if nid in self._active]
        if len(ids) < 2:
            return
        members = self._groups["effects"]
        for prev, cur in zip(ids, ids[1:]):
            if prev not in members or cur not in members:
                continue
            members.remove(cur)
            members.insert(members.index(prev) + 1, cur)
        self._record(
            ReorderInstances(
                node_ids=[nid for nid in node_ids if nid in self._active], instance_ids=ids
            )
        )

    # -- meters --------------------------------------------------------------

    def allocate_meter(self, node_id: str, kind: MeterKind) -> int:
        held = self._meters.get(node_id)
        if held is not None:
            return held[1]
        index = self._next_meter[kind]
        self._next_meter[kind] += 1
        self._meters[node_id] = (kind, index)
        self._record(AllocateMeter(node_id=node_id, kind=kind, index=index))
        return index

    def release_meter(self, node_id: str) -> None:
        held = self._meters.pop(node_id, None)
        if held is None:
            return
        self._record(ReleaseMeter(node_id=node_id, kind=held[0], index=held[1]))

    def meter(self, node_id: str) -> Optional[int]:
        held = self._meters.get(node_id)
        return None if held is None else held[1]

    # -- internals -----------------------------------------------------------

    def _require(self, node_id: str) -> Optional[int]:
        iid = self._active.get(node_id)
        if iid is None and self.strict:
            raise InstanceGoneError(f"No running instance for node '{node_id}'")
        return iid

    def _record(self, cmd: Command) -> None:
        logger.debug("engine <- %s", format_command(cmd))
        self.commands.append(cmd)
