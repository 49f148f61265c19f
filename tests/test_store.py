"""Tests for the graph store authoring rules."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from patch_sync import GraphStore, Patch


@pytest.fixture
def store() -> GraphStore:
    s = GraphStore()
    s.add_node("audio_out", "out")
    s.add_node("sin_osc", "osc")
    s.add_node("fx_lpf", "lpf")
    return s


class TestNodes:
    def test_defaults_and_overrides(self, store: GraphStore) -> None:
        node = store.add_node("saw_osc", "saw", amp=0.1)
        assert node.params == {"freq": 440.0, "amp": 0.1}

    def test_generated_ids_unique(self) -> None:
        s = GraphStore()
        a = s.add_node("sin_osc")
        b = s.add_node("sin_osc")
        assert a.id != b.id

    def test_duplicate_id_rejected(self, store: GraphStore) -> None:
        with pytest.raises(ValueError, match="already exists"):
            store.add_node("sin_osc", "osc")

    def test_unknown_kind_rejected(self, store: GraphStore) -> None:
        with pytest.raises(ValidationError):
            store.add_node("theremin")

    def test_remove_node_drops_connections(self, store: GraphStore) -> None:
        store.connect("osc", "lpf")
        store.connect("lpf", "out", 0)
        removed = store.remove_node("lpf")
        assert len(removed) == 2
        assert store.get_connections() == []
        assert {n.id for n in store.get_nodes()} == {"out", "osc"}

    def test_remove_unknown(self, store: GraphStore) -> None:
        with pytest.raises(KeyError):
            store.remove_node("ghost")

    def test_set_param(self, store: GraphStore) -> None:
        store.set_param("osc", "freq", 220)
        assert store.node("osc").params["freq"] == 220.0

    def test_set_unknown_param_rejected(self, store: GraphStore) -> None:
        with pytest.raises(ValueError, match="no parameter"):
            store.set_param("osc", "cutoff", 1.0)

    def test_modulation_sources_accept_any_value(self, store: GraphStore) -> None:
        store.add_node("script", "s")
        store.set_param("s", "out_3", 0.5)
        assert store.node("s").params["out_3"] == 0.5


class TestConnections:
    def test_connect(self, store: GraphStore) -> None:
        conn = store.connect("osc", "out", 1)
        assert (conn.from_node, conn.to_node, conn.to_port) == ("osc", "out", 1)

    def test_new_cable_supersedes_old(self, store: GraphStore) -> None:
        store.add_node("saw_osc", "saw")
        first = store.connect("osc", "lpf")
        second = store.connect("saw", "lpf")
        ids = [c.id for c in store.get_connections()]
        assert first.id not in ids
        assert second.id in ids

    def test_bad_ports_rejected(self, store: GraphStore) -> None:
        with pytest.raises(ValueError, match="input port 2"):
            store.connect("osc", "out", 2)
        with pytest.raises(ValueError, match="output port"):
            store.connect("out", "lpf")

    def test_unknown_node(self, store: GraphStore) -> None:
        with pytest.raises(KeyError, match="ghost"):
            store.connect("ghost", "out")

    def test_modulate_supersedes_per_param(self, store: GraphStore) -> None:
        store.add_node("envelope", "env")
        store.add_node("constant", "c")
        store.modulate("env", "osc", "amp")
        store.modulate("c", "osc", "amp")
        (conn,) = store.get_connections()
        assert conn.from_node == "c"

    def test_modulate_rejects_unknown_param(self, store: GraphStore) -> None:
        store.add_node("envelope", "env")
        with pytest.raises(ValueError, match="control-rate"):
            store.modulate("env", "osc", "cutoff")

    def test_audio_rate_needs_audio_input(self, store: GraphStore) -> None:
        store.add_node("sin_osc", "mod")
        conn = store.modulate("mod", "osc", "freq", audio_rate=True)
        assert conn.is_audio_rate
        with pytest.raises(ValueError, match="audio-rate"):
            store.modulate("mod", "lpf", "cutoff", audio_rate=True)

    def test_disconnect(self, store: GraphStore) -> None:
        conn = store.connect("osc", "out")
        assert store.disconnect(conn.id) == conn
        with pytest.raises(KeyError):
            store.disconnect(conn.id)

    def test_shrinking_script_outputs_prunes(self, store: GraphStore) -> None:
        store.add_node("script", "s")
        store.set_output_count("s", 3)
        keep = store.modulate("s", "osc", "amp", from_port=0)
        store.modulate("s", "osc", "freq", from_port=2)
        removed = store.set_output_count("s", 2)
        assert [c.to_param for c in removed] == ["freq"]
        assert store.get_connections() == [keep]

    def test_output_count_only_for_scripts(self, store: GraphStore) -> None:
        with pytest.raises(ValueError, match="fixed output count"):
            store.set_output_count("osc", 2)


class TestBulkAndListeners:
    def test_snapshot_is_a_copy(self, store: GraphStore) -> None:
        snap = store.snapshot()
        snap.nodes[1].params["freq"] = 1.0
        assert store.node("osc").params["freq"] == 440.0

    def test_load_replaces_and_continues_ids(self, store: GraphStore, fm_patch: Patch) -> None:
        store.load(fm_patch)
        assert store.name == "fm"
        assert {n.id for n in store.get_nodes()} == {"out", "car", "mod"}
        conn = store.connect("mod", "out", 1)
        assert conn.id == 4

    def test_subscribe_and_unsubscribe(self, store: GraphStore) -> None:
        calls: list[int] = []
        unsubscribe = store.subscribe(lambda: calls.append(1))
        store.set_param("osc", "amp", 0.2)
        store.connect("osc", "out")
        unsubscribe()
        store.set_param("osc", "amp", 0.3)
        assert len(calls) == 2

    def test_failed_edit_does_not_notify(self, store: GraphStore) -> None:
        calls: list[int] = []
        store.subscribe(lambda: calls.append(1))
        with pytest.raises(KeyError):
            store.remove_node("ghost")
        assert calls == []
