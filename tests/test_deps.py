"""Tests for the shared audio-adjacency helpers."""

from __future__ import annotations

from patch_sync import Connection
from patch_sync._deps import audio_connections, build_reverse_audio, first_audio_input

CONNS = [
    Connection(id=1, from_node="osc", to_node="lpf", to_port=0),
    Connection(id=2, from_node="env", to_node="lpf", to_param="cutoff"),
    Connection(id=3, from_node="mod", to_node="osc", to_param="freq", is_audio_rate=True),
    Connection(id=4, from_node="saw", to_node="lpf", to_port=0),
]


class TestAudioAdjacency:
    def test_audio_connections_skip_all_modulation(self) -> None:
        assert [c.id for c in audio_connections(CONNS)] == [1, 4]

    def test_reverse_audio(self) -> None:
        upstream = build_reverse_audio(CONNS)
        assert upstream["lpf"] == ["osc", "saw"]
        assert "osc" not in upstream

    def test_first_audio_input_needs_live_source(self) -> None:
        first = first_audio_input("lpf", CONNS, {"saw", "env"})
        assert first is not None
        assert first.id == 4
        assert first_audio_input("lpf", CONNS, {"env"}) is None
