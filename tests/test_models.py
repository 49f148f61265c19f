from __future__ import annotations

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from patch_sync import Connection, Node, Patch, load_patch


class TestNode:
    def test_default_params_filled(self) -> None:
        node = Node(id="osc", kind="sin_osc")
        assert node.params == {"freq": 440.0, "amp": 0.5}

    def test_explicit_params_override_defaults(self) -> None:
        node = Node(id="osc", kind="sin_osc", params={"amp": 0.1})
        assert node.params["amp"] == 0.1
        assert node.params["freq"] == 440.0

    def test_defaults_not_shared_between_nodes(self) -> None:
        a = Node(id="a", kind="sin_osc")
        b = Node(id="b", kind="sin_osc")
        a.params["amp"] = 0.9
        assert b.params["amp"] == 0.5

    def test_unknown_kind_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Node(id="x", kind="theremin")  # type: ignore[arg-type]

    def test_category_and_ports(self) -> None:
        node = Node(id="verb", kind="fx_reverb")
        assert node.category == "effect"
        assert node.inputs == ("in",)
        assert node.outputs == ("out",)

    def test_mix_destination_ports(self) -> None:
        node = Node(id="out", kind="audio_out")
        assert node.category == "output"
        assert node.inputs == ("L", "R")
        assert node.outputs == ()

    def test_script_output_resize(self) -> None:
        node = Node(id="s", kind="script", num_outputs=3)
        assert node.outputs == ("out 0", "out 1", "out 2")

    def test_script_single_output(self) -> None:
        node = Node(id="s", kind="script", num_outputs=1)
        assert node.outputs == ("out",)

    def test_num_outputs_ignored_for_fixed_kinds(self) -> None:
        node = Node(id="osc", kind="sin_osc", num_outputs=4)
        assert node.outputs == ("out",)

    def test_modulatable(self) -> None:
        assert Node(id="e", kind="envelope").modulatable == frozenset({"trig"})
        assert "cutoff" in Node(id="f", kind="fx_lpf").modulatable


class TestConnection:
    def test_audio_connection(self) -> None:
        conn = Connection(id=1, from_node="a", to_node="b", to_port=0)
        assert not conn.is_modulation
        assert conn.carries_audio

    def test_control_modulation(self) -> None:
        conn = Connection(id=1, from_node="a", to_node="b", to_param="amp")
        assert conn.is_modulation
        assert not conn.carries_audio

    def test_audio_rate_modulation_carries_audio(self) -> None:
        conn = Connection(id=1, from_node="a", to_node="b", to_param="freq", is_audio_rate=True)
        assert conn.is_modulation
        assert conn.carries_audio

    def test_both_targets_rejected(self) -> None:
        with pytest.raises(ValidationError, match="exactly one"):
            Connection(id=1, from_node="a", to_node="b", to_port=0, to_param="amp")

    def test_no_target_rejected(self) -> None:
        with pytest.raises(ValidationError, match="exactly one"):
            Connection(id=1, from_node="a", to_node="b")

    def test_audio_rate_requires_param(self) -> None:
        with pytest.raises(ValidationError, match="is_audio_rate"):
            Connection(id=1, from_node="a", to_node="b", to_port=0, is_audio_rate=True)


class TestPatch:
    def test_node_map(self, mono_patch: Patch) -> None:
        assert set(mono_patch.node_map()) == {"out", "osc"}

    def test_json_round_trip(self, fm_patch: Patch) -> None:
        data = json.loads(fm_patch.model_dump_json())
        restored = Patch.model_validate(data)
        assert restored == fm_patch

    def test_load_patch(self, tmp_path: Path) -> None:
        p = tmp_path / "patch.json"
        p.write_text(
            json.dumps(
                {
                    "name": "file_patch",
                    "nodes": [{"id": "out", "kind": "audio_out"}, {"id": "o", "kind": "saw_osc"}],
                    "connections": [{"id": 1, "from_node": "o", "to_node": "out", "to_port": 0}],
                }
            )
        )
        patch = load_patch(p)
        assert patch.name == "file_patch"
        assert patch.node_map()["o"].params["amp"] == 0.5
        assert patch.connections[0].to_port == 0
