from __future__ import annotations

import pytest

from patch_sync import (
    BusAllocator,
    Connection,
    Node,
    Patch,
    RecordingEngine,
    SyncConfig,
    Synchronizer,
)


class FakeClock:
    """Manually advanced monotonic clock for fade timing."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig()


@pytest.fixture
def engine(config: SyncConfig, clock: FakeClock) -> RecordingEngine:
    return RecordingEngine(config, clock=clock)


@pytest.fixture
def buses(config: SyncConfig) -> BusAllocator:
    return BusAllocator(config)


@pytest.fixture
def synchronizer(engine: RecordingEngine, buses: BusAllocator, config: SyncConfig) -> Synchronizer:
    return Synchronizer(engine, buses, config)


@pytest.fixture
def mono_patch() -> Patch:
    """One oscillator cabled into both mix inputs."""
    return Patch(
        name="mono",
        nodes=[
            Node(id="out", kind="audio_out"),
            Node(id="osc", kind="sin_osc"),
        ],
        connections=[
            Connection(id=1, from_node="osc", to_node="out", to_port=0),
            Connection(id=2, from_node="osc", to_node="out", to_port=1),
        ],
    )


@pytest.fixture
def chain_patch() -> Patch:
    """osc -> lpf -> verb -> mix (both sides), effects listed out of order."""
    return Patch(
        name="chain",
        nodes=[
            Node(id="out", kind="audio_out"),
            Node(id="osc", kind="saw_osc"),
            Node(id="verb", kind="fx_reverb"),
            Node(id="lpf", kind="fx_lpf"),
        ],
        connections=[
            Connection(id=1, from_node="osc", to_node="lpf", to_port=0),
            Connection(id=2, from_node="lpf", to_node="verb", to_port=0),
            Connection(id=3, from_node="verb", to_node="out", to_port=0),
            Connection(id=4, from_node="verb", to_node="out", to_port=1),
        ],
    )


@pytest.fixture
def fm_patch() -> Patch:
    """A carrier whose frequency is driven at audio rate by a modulator."""
    return Patch(
        name="fm",
        nodes=[
            Node(id="out", kind="audio_out"),
            Node(id="car", kind="sin_osc", params={"freq": 220}),
            Node(id="mod", kind="sin_osc", params={"freq": 110, "amp": 0.5}),
        ],
        connections=[
            Connection(id=1, from_node="car", to_node="out", to_port=0),
            Connection(id=2, from_node="car", to_node="out", to_port=1),
            Connection(id=3, from_node="mod", to_node="car", to_param="freq", is_audio_rate=True),
        ],
    )


@pytest.fixture
def envelope_patch() -> Patch:
    """An envelope driving an oscillator's amplitude at control rate."""
    return Patch(
        name="env",
        nodes=[
            Node(id="out", kind="audio_out"),
            Node(id="osc", kind="sin_osc", params={"amp": 0.3}),
            Node(id="env", kind="envelope", params={"value": 0.7}),
        ],
        connections=[
            Connection(id=1, from_node="osc", to_node="out", to_port=0),
            Connection(id=2, from_node="osc", to_node="out", to_port=1),
            Connection(id=3, from_node="env", to_node="osc", to_param="amp"),
        ],
    )
