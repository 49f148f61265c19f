from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, model_validator

from patch_sync.kinds import KINDS, KindDescriptor, KindName

# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class Node(BaseModel):
    id: str
    kind: KindName
    params: dict[str, float] = {}
    num_outputs: Optional[int] = None  # script nodes resize their output ports
    quantize: bool = False  # snap `freq` to 12-TET on instantiation

    @model_validator(mode="after")
    def _fill_defaults(self) -> Node:
        for name, default in self.descriptor.params.items():
            self.params.setdefault(name, default)
        return self

    @property
    def descriptor(self) -> KindDescriptor:
        return KINDS[self.kind]

    @property
    def category(self) -> str:
        return self.descriptor.category

    @property
    def inputs(self) -> tuple[str, ...]:
        return self.descriptor.inputs

    @property
    def outputs(self) -> tuple[str, ...]:
        if self.category == "script" and self.num_outputs is not None and self.num_outputs > 1:
            return tuple(f"out {i}" for i in range(self.num_outputs))
        return self.descriptor.outputs

    @property
    def modulatable(self) -> frozenset[str]:
        return self.descriptor.modulatable


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


class Connection(BaseModel):
    """A cable: audio when ``to_port`` is set, modulation when ``to_param`` is set."""

    id: int
    from_node: str
    from_port: int = 0
    to_node: str
    to_port: Optional[int] = None
    to_param: Optional[str] = None
    is_audio_rate: bool = False

    @model_validator(mode="after")
    def _audio_xor_modulation(self) -> Connection:
        if (self.to_port is None) == (self.to_param is None):
            raise ValueError(
                f"Connection {self.id}: exactly one of 'to_port' or 'to_param' must be set"
            )
        if self.is_audio_rate and self.to_param is None:
            raise ValueError(f"Connection {self.id}: 'is_audio_rate' requires 'to_param'")
        return self

    @property
    def is_modulation(self) -> bool:
        return self.to_param is not None

    @property
    def carries_audio(self) -> bool:
        """True for audio cables and audio-rate modulation (both need an audio bus)."""
        return self.to_param is None or self.is_audio_rate


# ---------------------------------------------------------------------------
# Top-level patch
# ---------------------------------------------------------------------------


class Patch(BaseModel):
    name: str = "untitled"
    nodes: list[Node] = []
    connections: list[Connection] = []

    def node_map(self) -> dict[str, Node]:
        return {node.id: node for node in self.nodes}


def load_patch(path: str | Path) -> Patch:
    """Load and parse a patch JSON file."""
    data = json.loads(Path(path).read_text())
    return Patch.model_validate(data)
