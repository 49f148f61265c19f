"""Tests for the recording engine and command models."""

from __future__ import annotations

import pytest
from pydantic import TypeAdapter

from patch_sync import Command, InstanceGoneError, RecordingEngine, format_command
from patch_sync.engine import (
    FreeInstance,
    MapParameter,
    ReorderInstances,
    SetParameter,
    StartInstance,
    StopInstance,
)

from conftest import FakeClock


class TestLifecycle:
    def test_instance_ids_from_3000(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "sin_osc", {"out_bus": 0}, {"freq": 440}, group="sources")
        engine.start_instance("b", "sin_osc", {"out_bus": 0}, {"freq": 220}, group="sources")
        assert engine.instance_id("a") == 3000
        assert engine.instance_id("b") == 3001

    def test_start_merges_params_and_wiring(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "sin_osc", {"out_bus": 16}, {"amp": 0.5}, group="sources")
        (cmd,) = engine.drain()
        assert isinstance(cmd, StartInstance)
        assert cmd.params == {"amp": 0.5, "out_bus": 16.0}
        assert engine.params[3000]["out_bus"] == 16.0

    def test_start_twice_is_noop(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "p", {}, {}, group="sources")
        engine.start_instance("a", "p", {}, {}, group="sources")
        assert len(engine.drain()) == 1

    def test_ids_never_reused(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "p", {}, {}, group="sources")
        engine.stop_instance("a")
        engine.start_instance("a", "p", {}, {}, group="sources")
        assert engine.instance_id("a") == 3001

    def test_sources_at_head_effects_at_tail(self, engine: RecordingEngine) -> None:
        engine.start_instance("s1", "p", {}, {}, group="sources")
        engine.start_instance("s2", "p", {}, {}, group="sources")
        engine.start_instance("e1", "fx", {}, {}, group="effects")
        engine.start_instance("e2", "fx", {}, {}, group="effects")
        assert engine.group_order("sources") == [3001, 3000]
        assert engine.group_order("effects") == [3002, 3003]

    def test_stop_fades_then_collect_frees(self, engine: RecordingEngine, clock: FakeClock) -> None:
        engine.start_instance("a", "p", {}, {}, group="sources")
        engine.stop_instance("a")
        assert not engine.is_running("a")
        assert engine.fading() == [3000]
        assert engine.collect() == []
        clock.advance(0.4)
        assert engine.collect() == [3000]
        assert engine.fading() == []
        cmds = engine.drain()
        assert isinstance(cmds[1], StopInstance)
        assert cmds[1].fade_ms == 400
        assert cmds[2] == FreeInstance(instance_id=3000)

    def test_stop_unknown_is_noop(self, engine: RecordingEngine) -> None:
        engine.stop_instance("ghost")
        assert engine.drain() == []

    def test_strict_raises_for_gone_instance(self, clock: FakeClock) -> None:
        engine = RecordingEngine(strict=True, clock=clock)
        with pytest.raises(InstanceGoneError, match="ghost"):
            engine.set_parameter("ghost", "amp", 0.1)
        with pytest.raises(InstanceGoneError):
            engine.stop_instance("ghost")


class TestParameters:
    def test_set_parameter(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "p", {}, {"amp": 0.5}, group="sources")
        engine.set_parameter("a", "amp", 0.2)
        assert engine.params[3000]["amp"] == 0.2
        assert engine.drain()[-1] == SetParameter(node_id="a", instance_id=3000, name="amp", value=0.2)

    def test_fixed_write_drops_mapping(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "p", {}, {"amp": 0.5}, group="sources")
        engine.map_parameter("a", "amp", 3, "control")
        assert engine.mapped[3000] == {"amp": (3, "control")}
        engine.set_parameter("a", "amp", 0.2)
        assert engine.mapped[3000] == {}

    def test_unmap_restores(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "p", {}, {"freq": 440}, group="sources")
        engine.map_parameter("a", "freq_mod", 16, "audio")
        engine.unmap_parameter("a", "freq_mod", 0.0, "audio")
        assert engine.mapped[3000] == {}
        assert engine.params[3000]["freq_mod"] == 0.0

    def test_control_bus(self, engine: RecordingEngine) -> None:
        engine.set_control_bus(4, 0.25)
        assert engine.control_buses == {4: 0.25}

    def test_map_records_command(self, engine: RecordingEngine) -> None:
        engine.start_instance("a", "p", {}, {}, group="sources")
        engine.map_parameter("a", "amp", 0, "control")
        assert engine.drain()[-1] == MapParameter(
            node_id="a", instance_id=3000, name="amp", bus=0, rate="control"
        )


class TestReorder:
    def test_reorder_places_each_after_predecessor(self, engine: RecordingEngine) -> None:
        for nid in ("x", "y", "z"):
            engine.start_instance(nid, "fx", {}, {}, group="effects")
        engine.reorder_instances(["z", "x", "y"])
        assert engine.group_order("effects") == [3002, 3000, 3001]
        cmd = engine.drain()[-1]
        assert isinstance(cmd, ReorderInstances)
        assert cmd.instance_ids == [3002, 3000, 3001]

    def test_reorder_skips_stopped(self, engine: RecordingEngine) -> None:
        engine.start_instance("x", "fx", {}, {}, group="effects")
        engine.start_instance("y", "fx", {}, {}, group="effects")
        engine.stop_instance("x")
        engine.drain()
        engine.reorder_instances(["x", "y"])
        assert engine.drain() == []


class TestMeters:
    def test_allocate_is_per_node_and_kind(self, engine: RecordingEngine) -> None:
        assert engine.allocate_meter("p1", "control_bus") == 0
        assert engine.allocate_meter("p2", "control_bus") == 1
        assert engine.allocate_meter("s1", "buffer") == 0
        assert engine.allocate_meter("p1", "control_bus") == 0
        assert engine.meter("p2") == 1

    def test_release(self, engine: RecordingEngine) -> None:
        engine.allocate_meter("s1", "buffer")
        engine.release_meter("s1")
        engine.release_meter("s1")
        assert engine.meter("s1") is None
        ops = [c.op for c in engine.drain()]
        assert ops == ["meter_alloc", "meter_release"]


class TestCommands:
    def test_discriminated_union(self) -> None:
        adapter = TypeAdapter(Command)
        cmd = adapter.validate_python({"op": "free", "instance_id": 3001})
        assert cmd == FreeInstance(instance_id=3001)

    def test_format_command(self) -> None:
        text = format_command(SetParameter(node_id="a", instance_id=3000, name="amp", value=0.5))
        assert text == "set node_id=a instance_id=3000 name=amp value=0.5"
