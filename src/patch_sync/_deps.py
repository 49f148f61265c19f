"""Shared audio-adjacency helpers for patch analysis."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterable, Optional

from patch_sync.kinds import MIX_DESTINATION
from patch_sync.models import Connection, Node


def find_mix_destination(nodes: Iterable[Node]) -> Optional[Node]:
    """Return the first mix-destination node, or None if the patch has none."""
    for node in nodes:
        if node.kind == MIX_DESTINATION:
            return node
    return None


def audio_connections(connections: Iterable[Connection]) -> list[Connection]:
    """Return plain audio cables (modulation cables excluded, audio-rate or not)."""
    return [c for c in connections if not c.is_modulation]


def build_reverse_audio(connections: Iterable[Connection]) -> dict[str, list[str]]:
    """Build {node_id: [ids of nodes feeding its audio inputs]} in connection order."""
    upstream: dict[str, list[str]] = defaultdict(list)
    for conn in audio_connections(connections):
        upstream[conn.to_node].append(conn.from_node)
    return upstream


def first_audio_input(
    node_id: str, connections: Iterable[Connection], live: set[str]
) -> Optional[Connection]:
    """Return the first audio cable into *node_id* whose source is live."""
    for conn in audio_connections(connections):
        if conn.to_node == node_id and conn.from_node in live:
            return conn
    return None
