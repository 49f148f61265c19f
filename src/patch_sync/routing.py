"""Per-pass routing plan: buses, pan, evaluation order and modulation mappings.

Everything here is recomputed from scratch on every pass. The only state it
touches is the BusAllocator, whose tables keep bus numbers stable between
passes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from pydantic import BaseModel

from patch_sync._deps import find_mix_destination, first_audio_input
from patch_sync.buses import BusAllocator, ControlKey
from patch_sync.config import SyncConfig
from patch_sync.liveness import resolve_live
from patch_sync.models import Connection, Node
from patch_sync.toposort import order_effects, order_sources

logger = logging.getLogger(__name__)

Rate = Literal["control", "audio"]

# ---------------------------------------------------------------------------
# Plan records
# ---------------------------------------------------------------------------


class ModTarget(BaseModel):
    """An audio-rate modulation cable leaving a node, with its bus."""

    conn_id: int
    bus: int
    to_node: str
    to_param: str


class RoutingRecord(BaseModel):
    node_id: str
    kind: str
    output_bus: int = 0
    effective_output_bus: int = 0
    input_bus: Optional[int] = None
    pan: float = 0.0
    is_effect: bool = False
    is_modulator: bool = False
    mod_targets: list[ModTarget] = []
    amp_scale: Optional[float] = None  # set only for audio-rate modulators


class Mapping(BaseModel):
    """A target parameter reading a bus instead of a fixed value."""

    target: str
    param: str
    engine_param: str  # `param` for control rate, `<param>_mod` for audio rate
    bus: int
    rate: Rate
    value: Optional[float] = None  # control-rate value written to the bus this pass
    applied: bool = False


@dataclass
class RoutingPlan:
    sink_id: Optional[str] = None
    live: set[str] = field(default_factory=set)
    audio_buses: dict[int, int] = field(default_factory=dict)
    records: dict[str, RoutingRecord] = field(default_factory=dict)
    sources: list[str] = field(default_factory=list)
    effects: list[str] = field(default_factory=list)
    unplaced: list[str] = field(default_factory=list)
    mappings: dict[ControlKey, Mapping] = field(default_factory=dict)

    def control_guard(self) -> set[tuple[str, str]]:
        """(node, engine param) pairs that must not receive fixed-value writes."""
        return {(m.target, m.engine_param) for m in self.mappings.values() if m.rate == "control"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _output_connection(
    node_id: str, connections: Sequence[Connection], live: set[str], sink_id: str
) -> Optional[Connection]:
    """A node writes one bus: prefer its cable into the mix, else one into a live node."""
    to_live: Optional[Connection] = None
    for conn in connections:
        if conn.is_modulation or conn.from_node != node_id:
            continue
        if conn.to_node == sink_id:
            return conn
        if to_live is None and conn.to_node in live:
            to_live = conn
    return to_live


def compute_pan(
    node_id: str,
    connections: Sequence[Connection],
    live: set[str],
    sink_id: str,
    config: SyncConfig,
) -> float:
    """Follow the node's forward chain to the mix and pan by the port it lands on.

    The first node on the chain that is cabled into the mix decides: port 0
    pans left, port 1 right, both ports (a split) or no arrival at all center.
    """
    current = node_id
    visited: set[str] = set()
    while current not in visited:
        visited.add(current)
        onward = [
            c
            for c in connections
            if not c.is_modulation
            and c.from_node == current
            and (c.to_node in live or c.to_node == sink_id)
        ]
        if not onward:
            break
        ports = {c.to_port for c in onward if c.to_node == sink_id}
        if ports:
            if ports == {0}:
                return config.pan_left
            if ports == {1}:
                return config.pan_right
            return config.pan_center
        current = onward[0].to_node
    return config.pan_center


def _control_value(source: Node, from_port: int) -> float:
    if source.category == "script":
        params = source.params
        return params.get(f"out_{from_port}", params.get("value", 0.0))
    return source.params.get("value", 0.0)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def plan_routing(
    nodes: Sequence[Node],
    connections: Sequence[Connection],
    buses: BusAllocator,
    config: Optional[SyncConfig] = None,
) -> RoutingPlan:
    """Compute this pass's routing for the given graph state.

    Returns an empty plan (``sink_id is None``) when the patch has no mix
    destination. Connections that reference missing nodes are skipped.
    """
    config = config or buses.config
    out = find_mix_destination(nodes)
    if out is None:
        return RoutingPlan()

    node_map = {node.id: node for node in nodes}
    live = resolve_live(nodes, connections)
    audio_buses = buses.assign_audio(live, connections, out.id)

    audio_rate = [c for c in connections if c.is_modulation and c.is_audio_rate]
    modulator_ids = {c.from_node for c in audio_rate}
    live_order = [node.id for node in nodes if node.id in live]

    # 1. Output buses
    records: dict[str, RoutingRecord] = {}
    for nid in live_order:
        node = node_map[nid]
        out_conn = _output_connection(nid, connections, live, out.id)
        out_bus = config.sink_bus
        if out_conn is not None:
            out_bus = audio_buses.get(out_conn.id, config.sink_bus)

        targets = [
            ModTarget(conn_id=c.id, bus=audio_buses[c.id], to_node=c.to_node, to_param=c.to_param)
            for c in audio_rate
            if c.from_node == nid and c.id in audio_buses and c.to_param is not None
        ]
        is_modulator = nid in modulator_ids
        effective = out_bus
        amp_scale: Optional[float] = None
        if is_modulator and targets:
            effective = targets[0].bus
            amp_scale = config.mod_depth_scales.get(targets[0].to_param, 1.0)

        records[nid] = RoutingRecord(
            node_id=nid,
            kind=node.kind,
            output_bus=out_bus,
            effective_output_bus=effective,
            is_effect=node.descriptor.is_effect,
            is_modulator=is_modulator,
            mod_targets=targets,
            amp_scale=amp_scale,
        )

    # 2. Input buses: read whatever bus the feeding node actually writes
    for nid in live_order:
        rec = records[nid]
        if not rec.is_effect:
            continue
        in_conn = first_audio_input(nid, connections, live)
        if in_conn is not None and in_conn.from_node in records:
            rec.input_bus = records[in_conn.from_node].effective_output_bus

    # 3. Pan
    for nid in live_order:
        rec = records[nid]
        if rec.is_effect:
            continue
        if rec.is_modulator:
            rec.pan = config.modulator_pan
        else:
            rec.pan = compute_pan(nid, connections, live, out.id, config)

    # 4. Evaluation order
    source_ids = [nid for nid in live_order if not records[nid].is_effect]
    effect_ids = [nid for nid in live_order if records[nid].is_effect]
    sources = order_sources(source_ids, modulator_ids)
    effects = order_effects(effect_ids, connections, placed=set(sources) | {out.id})
    if effects.unplaced:
        logger.warning("effects on a cycle left unplaced: %s", ", ".join(effects.unplaced))

    # 5. Modulation mappings
    mappings: dict[ControlKey, Mapping] = {}
    for conn in connections:
        if not conn.is_modulation or conn.to_param is None:
            continue
        source = node_map.get(conn.from_node)
        target = node_map.get(conn.to_node)
        if source is None or target is None:
            continue
        key = (conn.to_node, conn.to_param)
        if key in mappings:
            continue

        if conn.is_audio_rate:
            bus = audio_buses.get(conn.id)
            if bus is None:
                continue
            if conn.to_param not in target.descriptor.audio_rate:
                logger.warning("%s has no audio-rate input for '%s'", target.id, conn.to_param)
                continue
            mappings[key] = Mapping(
                target=target.id,
                param=conn.to_param,
                engine_param=f"{conn.to_param}_mod",
                bus=bus,
                rate="audio",
            )
        else:
            if source.category not in ("control", "script"):
                logger.warning(
                    "ignoring control-rate modulation %d from %s (%s)",
                    conn.id,
                    source.id,
                    source.category,
                )
                continue
            if conn.to_param not in target.modulatable:
                logger.warning("%s: '%s' is not modulatable", target.id, conn.to_param)
                continue
            value = _control_value(source, conn.from_port)
            rec = records.get(target.id)
            if conn.to_param == "amp" and rec is not None and rec.amp_scale is not None:
                value *= rec.amp_scale
            mappings[key] = Mapping(
                target=target.id,
                param=conn.to_param,
                engine_param=conn.to_param,
                bus=buses.allocate_control(key),
                rate="control",
                value=value,
            )

    buses.release_unused_control(k for k, m in mappings.items() if m.rate == "control")

    return RoutingPlan(
        sink_id=out.id,
        live=live,
        audio_buses=audio_buses,
        records=records,
        sources=sources,
        effects=effects.order,
        unplaced=effects.unplaced,
        mappings=mappings,
    )
