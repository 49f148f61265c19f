"""Static descriptors for every node kind a patch can contain."""

from __future__ import annotations

import math
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

Category = Literal["source", "effect", "control", "script", "sink", "output"]

KindName = Literal[
    # fixed-program sources
    "sine",
    "saw",
    "bell",
    "blade",
    "pad",
    "hollow",
    "noise",
    "pluck",
    # oscillators with audio-rate modulation inputs
    "sin_osc",
    "saw_osc",
    "pulse_osc",
    "tri_osc",
    "blip_osc",
    "formant_osc",
    "white_noise",
    "lfnoise1",
    "buchla_osc",
    # effects
    "fx_reverb",
    "fx_echo",
    "fx_lpf",
    "fx_hpf",
    "fx_distortion",
    "fx_flanger",
    "lowpass_gate",
    # modulation sources
    "constant",
    "envelope",
    "pulser",
    "sequencer",
    "midi_in",
    "script",
    # inspection modules
    "print",
    "scope",
    # mix destination
    "audio_out",
]

MIX_DESTINATION: KindName = "audio_out"

# Scale applied to an audio-rate modulator's amplitude, keyed by the parameter it drives.
MOD_DEPTH_SCALES: dict[str, float] = {
    "freq": 400.0,
    "amp": 1.0,
    "phase": 6.283,
    "width": 1.0,
    "numharm": 40.0,
    "formfreq": 400.0,
    "bwfreq": 400.0,
    "density": 20.0,
    "chaos": 0.5,
    "timbre": 1.0,
    "level": 1.0,
    "gate": 1.0,
}


class KindDescriptor(BaseModel):
    """Everything the router needs to know about a node kind."""

    model_config = ConfigDict(frozen=True)

    name: str
    category: Category
    program: Optional[str] = None  # engine program; None = nothing to instantiate
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    params: dict[str, float] = {}
    modulatable: frozenset[str] = frozenset()
    audio_rate: frozenset[str] = frozenset()  # params with a `<name>_mod` audio input
    meter: Optional[Literal["control_bus", "buffer"]] = None
    meter_param: Optional[str] = None

    @property
    def is_effect(self) -> bool:
        """Effects and sink modules read an input bus and are ordered together."""
        return self.category in ("effect", "sink")

    @property
    def produces_audio(self) -> bool:
        return self.program is not None and bool(self.outputs)


_ENVELOPE_PARAMS = {"attack": 0.1, "sustain": 9999.0, "release": 1.0}


def _source(
    name: str,
    program: str,
    params: dict[str, float],
    *,
    audio_rate: tuple[str, ...] = (),
) -> KindDescriptor:
    return KindDescriptor(
        name=name,
        category="source",
        program=program,
        outputs=("out",),
        params=params,
        modulatable=frozenset(params),
        audio_rate=frozenset(audio_rate),
    )


def _effect(
    name: str,
    program: str,
    params: dict[str, float],
    *,
    audio_rate: tuple[str, ...] = (),
) -> KindDescriptor:
    return KindDescriptor(
        name=name,
        category="effect",
        program=program,
        inputs=("in",),
        outputs=("out",),
        params=params,
        modulatable=frozenset(params),
        audio_rate=frozenset(audio_rate),
    )


def _control(name: str, params: dict[str, float], modulatable: tuple[str, ...] = ()) -> KindDescriptor:
    return KindDescriptor(
        name=name,
        category="control",
        outputs=("out",),
        params=params,
        modulatable=frozenset(modulatable),
    )


KINDS: dict[str, KindDescriptor] = {
    d.name: d
    for d in (
        _source("sine", "sonic-pi-beep", {"note": 60, "amp": 0.4, **_ENVELOPE_PARAMS}),
        _source("saw", "sonic-pi-saw", {"note": 60, "amp": 0.25, **_ENVELOPE_PARAMS, "cutoff": 80}),
        _source(
            "bell",
            "sonic-pi-pretty_bell",
            {"note": 72, "amp": 0.5, "attack": 0.01, "sustain": 9999, "release": 2},
        ),
        _source(
            "blade",
            "sonic-pi-blade",
            {
                "note": 64,
                "amp": 0.2,
                "attack": 1,
                "sustain": 9999,
                "release": 2,
                "cutoff": 80,
                "vibrato_rate": 3,
                "vibrato_depth": 0.06,
            },
        ),
        _source(
            "pad",
            "sonic-pi-dark_ambience",
            {
                "note": 57,
                "amp": 0.3,
                "attack": 3,
                "sustain": 9999,
                "release": 5,
                "cutoff": 72,
                "res": 0.05,
                "room": 0.9,
                "reverb_damp": 0.5,
            },
        ),
        _source(
            "hollow",
            "sonic-pi-hollow",
            {
                "note": 69,
                "amp": 0.15,
                "attack": 2,
                "sustain": 9999,
                "release": 5,
                "cutoff": 80,
                "res": 0.1,
            },
        ),
        _source(
            "noise",
            "sonic-pi-bnoise",
            {"amp": 0.08, "attack": 1, "sustain": 9999, "release": 5, "cutoff": 95, "res": 0.05},
        ),
        _source("pluck", "sonic-pi-pluck", {"note": 60, "amp": 0.5, "sustain": 9999, "release": 1}),
        _source("sin_osc", "sin_osc", {"freq": 440, "amp": 0.5}, audio_rate=("freq", "amp")),
        _source("saw_osc", "saw_osc", {"freq": 440, "amp": 0.5}, audio_rate=("freq", "amp")),
        _source(
            "pulse_osc",
            "pulse_osc",
            {"freq": 440, "amp": 0.5, "width": 0.5},
            audio_rate=("freq", "amp", "width"),
        ),
        _source("tri_osc", "tri_osc", {"freq": 440, "amp": 0.5}, audio_rate=("freq", "amp")),
        _source(
            "blip_osc",
            "blip_osc",
            {"freq": 440, "amp": 0.5, "numharm": 20},
            audio_rate=("freq", "amp", "numharm"),
        ),
        _source(
            "formant_osc",
            "formant_osc",
            {"freq": 440, "amp": 0.5, "formfreq": 1760, "bwfreq": 880},
            audio_rate=("freq", "amp", "formfreq", "bwfreq"),
        ),
        _source("white_noise", "white_noise", {"amp": 0.5}, audio_rate=("amp",)),
        _source("lfnoise1", "lfnoise1", {"freq": 4, "amp": 0.5}, audio_rate=("freq", "amp")),
        _source(
            "buchla_osc",
            "buchla_osc",
            {"freq": 220, "amp": 0.5, "timbre": 0.0},
            audio_rate=("freq", "amp", "timbre"),
        ),
        _effect("fx_reverb", "sonic-pi-fx_reverb", {"mix": 0.4, "room": 0.6, "damp": 0.5}),
        _effect("fx_echo", "sonic-pi-fx_echo", {"mix": 1, "phase": 0.25, "decay": 2}),
        _effect("fx_lpf", "sonic-pi-fx_lpf", {"cutoff": 80}),
        _effect("fx_hpf", "sonic-pi-fx_hpf", {"cutoff": 30}),
        _effect("fx_distortion", "sonic-pi-fx_distortion", {"distort": 0.5, "mix": 1}),
        _effect(
            "fx_flanger",
            "sonic-pi-fx_flanger",
            {"phase": 4, "depth": 5, "feedback": 0, "mix": 1},
        ),
        _effect(
            "lowpass_gate",
            "lowpass_gate",
            {"level": 0.5, "gate": 1},
            audio_rate=("level", "gate"),
        ),
        _control("constant", {"value": 60}),
        _control("envelope", {"value": 0, "trig": 0}, modulatable=("trig",)),
        _control("pulser", {"value": 0, "rate": 1}, modulatable=("rate",)),
        _control("sequencer", {"value": 0, "trig": 0}, modulatable=("trig",)),
        _control("midi_in", {"value": 0}),
        KindDescriptor(
            name="script",
            category="script",
            outputs=("out",),
            params={"value": 0},
        ),
        KindDescriptor(
            name="print",
            category="sink",
            program="print_module",
            inputs=("in",),
            meter="control_bus",
            meter_param="out_c_bus",
        ),
        KindDescriptor(
            name="scope",
            category="sink",
            program="scope_module",
            inputs=("in",),
            meter="buffer",
            meter_param="bufnum",
        ),
        KindDescriptor(name="audio_out", category="output", inputs=("L", "R")),
    )
}


def descriptor(kind: str) -> KindDescriptor:
    """Return the descriptor for *kind*; raises KeyError for unknown kinds."""
    return KINDS[kind]


def quantize_freq(hz: float) -> float:
    """Snap a frequency to the nearest 12-TET pitch (A4 = 440 Hz)."""
    if hz <= 0:
        return hz
    semitone = 12 * math.log2(hz / 440.0)
    return 440.0 * 2 ** (math.floor(semitone + 0.5) / 12)
