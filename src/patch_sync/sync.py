"""Routing synchronizer: keeps a running engine in step with the patch graph."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, TypeVar

from patch_sync.buses import BusAllocator, ControlKey
from patch_sync.config import SyncConfig
from patch_sync.engine import Engine, InstanceGoneError
from patch_sync.kinds import KINDS, quantize_freq
from patch_sync.models import Connection, Node
from patch_sync.routing import Mapping, RoutingPlan, RoutingRecord, plan_routing

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass
class SyncReport:
    """What a single pass decided."""

    live: set[str] = field(default_factory=set)
    started: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    restarted: list[str] = field(default_factory=list)
    mapped: list[ControlKey] = field(default_factory=list)
    unmapped: list[ControlKey] = field(default_factory=list)
    effect_order: list[str] = field(default_factory=list)
    unplaced_effects: list[str] = field(default_factory=list)
    skipped_writes: list[tuple[str, str]] = field(default_factory=list)


class Synchronizer:
    """Diffs each pass's routing plan against the last applied one.

    Call :meth:`sync` after every graph edit. The pass recomputes liveness,
    buses and order from scratch but only emits the engine commands needed to
    move from the previously applied state to the new one. A fixed-value
    write is never issued for a parameter that is currently bus-mapped.
    """

    def __init__(
        self,
        engine: Engine,
        buses: Optional[BusAllocator] = None,
        config: Optional[SyncConfig] = None,
    ) -> None:
        self.engine = engine
        self.config = config or (buses.config if buses is not None else SyncConfig())
        self.buses = buses or BusAllocator(self.config)
        self._routing: dict[str, RoutingRecord] = {}
        self._mappings: dict[ControlKey, Mapping] = {}
        self._applied: dict[str, dict[str, float]] = {}
        self._guard: set[tuple[str, str]] = set()

    @property
    def routing(self) -> dict[str, RoutingRecord]:
        return dict(self._routing)

    @property
    def mappings(self) -> dict[ControlKey, Mapping]:
        return dict(self._mappings)

    def is_mapped(self, node_id: str, name: str) -> bool:
        return (node_id, name) in self._guard

    # -- pass ----------------------------------------------------------------

    def sync(self, nodes: Iterable[Node], connections: Iterable[Connection]) -> SyncReport:
        nodes = list(nodes)
        connections = list(connections)
        report = SyncReport()

        plan = plan_routing(nodes, connections, self.buses, self.config)
        if plan.sink_id is None:
            if nodes:
                logger.warning("patch has no mix destination; nothing to synchronize")
            return report

        node_map = {node.id: node for node in nodes}
        report.live = set(plan.live)
        report.unplaced_effects = list(plan.unplaced)
        # Mapped now, or mapped last pass and not yet released
        self._guard = plan.control_guard() | {
            (m.target, m.engine_param) for m in self._mappings.values() if m.rate == "control"
        }

        self._stop_dead(plan, node_map, report)
        self._stop_rewired_effects(plan, report)
        started = self._update_sources(plan, node_map, report)
        started |= self._update_effects(plan, node_map, report)

        running_fx = [nid for nid in plan.effects if self.engine.is_running(nid)]
        report.effect_order = running_fx
        if len(running_fx) > 1:
            self._send(self.engine.reorder_instances, running_fx)

        self._apply_mappings(plan, node_map, started, report)

        self._routing = plan.records
        self._guard = plan.control_guard()
        return report

    def write_parameter(self, node_id: str, name: str, value: float) -> bool:
        """Send a user edit straight to a running instance.

        Returns False (and sends nothing) when the instance is not running or
        the parameter is currently bus-mapped.
        """
        if not self.engine.is_running(node_id):
            return False
        if (node_id, name) in self._guard:
            logger.debug("not writing %s:%s, parameter is bus-mapped", node_id, name)
            return False
        rec = self._routing.get(node_id)
        if name == "amp" and rec is not None and rec.amp_scale is not None:
            value *= rec.amp_scale
        self._send(self.engine.set_parameter, node_id, name, value)
        self._applied.setdefault(node_id, {})[name] = value
        return True

    def reset(self) -> None:
        """Stop every instance this synchronizer started and forget all state."""
        for nid, rec in self._routing.items():
            if self.engine.is_running(nid):
                self._stop(nid, rec.kind)
        self._routing = {}
        self._mappings = {}
        self._applied = {}
        self._guard = set()
        self.buses.reset()

    # -- steps ---------------------------------------------------------------

    def _stop_dead(self, plan: RoutingPlan, node_map: dict[str, Node], report: SyncReport) -> None:
        unplaced = set(plan.unplaced)
        candidates = list(node_map) + [nid for nid in self._routing if nid not in node_map]
        for nid in candidates:
            rec = plan.records.get(nid)
            keep = nid in plan.live and nid not in unplaced
            if keep and rec is not None and rec.is_effect and rec.input_bus is None:
                keep = False
            if keep or not self.engine.is_running(nid):
                continue
            kind = node_map[nid].kind if nid in node_map else self._routing[nid].kind
            logger.info("stopping %s (%s)", nid, kind)
            self._stop(nid, kind)
            report.stopped.append(nid)

    def _stop_rewired_effects(self, plan: RoutingPlan, report: SyncReport) -> None:
        for nid in plan.effects:
            if not self.engine.is_running(nid):
                continue
            prev = self._routing.get(nid)
            cur = plan.records[nid]
            if (
                prev is None
                or prev.input_bus != cur.input_bus
                or prev.effective_output_bus != cur.effective_output_bus
            ):
                logger.info(
                    "restarting %s: buses %s->%s changed",
                    nid,
                    cur.input_bus,
                    cur.effective_output_bus,
                )
                self._stop(nid, cur.kind)
                report.restarted.append(nid)

    def _update_sources(
        self, plan: RoutingPlan, node_map: dict[str, Node], report: SyncReport
    ) -> set[str]:
        started: set[str] = set()
        for nid in plan.sources:
            node = node_map[nid]
            program = node.descriptor.program
            if program is None:
                continue
            rec = plan.records[nid]
            amp = node.params.get("amp")
            if amp is not None and rec.amp_scale is not None:
                amp *= rec.amp_scale

            if not self.engine.is_running(nid):
                params = dict(node.params)
                if node.quantize and "freq" in params:
                    params["freq"] = quantize_freq(params["freq"])
                if amp is not None:
                    params["amp"] = amp
                params["pan"] = rec.pan
                wiring = {"out_bus": rec.effective_output_bus}
                self._start(nid, program, wiring, params, "sources")
                started.add(nid)
                report.started.append(nid)
                continue

            self._write(nid, "pan", rec.pan, report)
            self._write(nid, "out_bus", rec.effective_output_bus, report)
            if amp is not None:
                self._write(nid, "amp", amp, report)
        return started

    def _update_effects(
        self, plan: RoutingPlan, node_map: dict[str, Node], report: SyncReport
    ) -> set[str]:
        started: set[str] = set()
        for nid in plan.effects:
            node = node_map[nid]
            desc = node.descriptor
            rec = plan.records[nid]
            if desc.program is None or rec.input_bus is None:
                continue

            if not self.engine.is_running(nid):
                if desc.meter is not None and desc.meter_param is not None:
                    index = self._send(self.engine.allocate_meter, nid, desc.meter)
                    wiring = {"in_bus": rec.input_bus, desc.meter_param: index}
                    params: dict[str, float] = {}
                else:
                    wiring = {"in_bus": rec.input_bus, "out_bus": rec.effective_output_bus}
                    params = dict(node.params)
                self._start(nid, desc.program, wiring, params, "effects")
                started.add(nid)
                report.started.append(nid)
                continue

            for name, value in node.params.items():
                self._write(nid, name, value, report)
            self._write(nid, "in_bus", rec.input_bus, report)
            if desc.meter is None:
                self._write(nid, "out_bus", rec.effective_output_bus, report)
        return started

    def _apply_mappings(
        self,
        plan: RoutingPlan,
        node_map: dict[str, Node],
        started: set[str],
        report: SyncReport,
    ) -> None:
        previous = self._mappings
        current = plan.mappings

        for key, m in current.items():
            if m.rate == "control" and m.value is not None:
                self._send(self.engine.set_control_bus, m.bus, m.value)

            old = previous.get(key)
            if old is not None and (old.rate != m.rate or old.engine_param != m.engine_param):
                self._unmap(old, plan, node_map, report)
                old = None

            fresh = (
                old is None
                or old.bus != m.bus
                or not old.applied
                or m.target in started
            )
            if not fresh:
                m.applied = True
                continue
            if self.engine.is_running(m.target):
                logger.info("mapping %s:%s <- %s bus %d", m.target, m.engine_param, m.rate, m.bus)
                self._send(self.engine.map_parameter, m.target, m.engine_param, m.bus, m.rate)
                m.applied = True
                report.mapped.append(key)
            else:
                m.applied = False

        for key, old in previous.items():
            if key not in current:
                self._unmap(old, plan, node_map, report)

        self._mappings = current

    # -- helpers -------------------------------------------------------------

    def _unmap(
        self,
        old: Mapping,
        plan: RoutingPlan,
        node_map: dict[str, Node],
        report: SyncReport,
    ) -> None:
        restore = self._restore_value(old, plan, node_map)
        logger.info("unmapping %s:%s, restoring %s", old.target, old.engine_param, restore)
        if self.engine.is_running(old.target):
            self._send(
                self.engine.unmap_parameter, old.target, old.engine_param, restore, old.rate
            )
            self._applied.setdefault(old.target, {})[old.engine_param] = restore
        report.unmapped.append((old.target, old.param))

    def _restore_value(self, old: Mapping, plan: RoutingPlan, node_map: dict[str, Node]) -> float:
        if old.rate == "audio":
            return 0.0
        node = node_map.get(old.target)
        base = node.params.get(old.param, 0.0) if node is not None else 0.0
        rec = plan.records.get(old.target) or self._routing.get(old.target)
        if old.param == "amp" and rec is not None and rec.amp_scale is not None:
            base *= rec.amp_scale
        return base

    def _write(self, node_id: str, name: str, value: float, report: SyncReport) -> None:
        if (node_id, name) in self._guard:
            report.skipped_writes.append((node_id, name))
            return
        applied = self._applied.setdefault(node_id, {})
        if applied.get(name) == value:
            return
        self._send(self.engine.set_parameter, node_id, name, value)
        applied[name] = value

    def _start(
        self,
        node_id: str,
        program: str,
        wiring: dict[str, int],
        params: dict[str, float],
        group: str,
    ) -> None:
        logger.info("starting %s (%s) %s", node_id, program, wiring)
        self._send(self.engine.start_instance, node_id, program, wiring, params, group=group)
        self._applied[node_id] = {**params, **wiring}

    def _stop(self, node_id: str, kind: str) -> None:
        desc = KINDS.get(kind)
        if desc is not None and desc.meter is not None:
            self._send(self.engine.release_meter, node_id)
        self._send(self.engine.stop_instance, node_id)
        self._applied.pop(node_id, None)

    def _send(self, command: Callable[..., _T], *args: Any, **kwargs: Any) -> Optional[_T]:
        """Dispatch one engine command; an instance that is already gone is not an error."""
        try:
            return command(*args, **kwargs)
        except InstanceGoneError as e:
            logger.debug("ignored: %s", e)
            return None
