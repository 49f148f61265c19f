"""Liveness resolution: which nodes must currently be instantiated."""

from __future__ import annotations

from collections import deque
from typing import Sequence

from patch_sync._deps import build_reverse_audio, find_mix_destination
from patch_sync.models import Connection, Node


def _walk_upstream(start: str, upstream: dict[str, list[str]], live: set[str]) -> None:
    """Add *start* and everything feeding it (breadth-first) to *live*."""
    queue = deque([start])
    visited: set[str] = set()
    while queue:
        current = queue.popleft()
        if current in visited:
            continue
        visited.add(current)
        live.add(current)
        queue.extend(upstream.get(current, ()))


def resolve_live(nodes: Sequence[Node], connections: Sequence[Connection]) -> set[str]:
    """Return the IDs of nodes that must be running.

    A node is live when it has an audio path to the mix destination, is an
    audio-rate modulator of a live node, or is a sink module with a connected
    audio input (plus that module's whole upstream chain). The mix destination
    itself is never live. A patch without a mix destination has no live nodes.
    """
    out = find_mix_destination(nodes)
    if out is None:
        return set()

    node_ids = {node.id for node in nodes}
    upstream = build_reverse_audio(connections)

    live: set[str] = set()
    _walk_upstream(out.id, upstream, live)

    # Sink modules monitor any signal, not only ones reaching the mix
    for node in nodes:
        if node.category == "sink" and upstream.get(node.id):
            _walk_upstream(node.id, upstream, live)

    # Audio-rate modulators of live nodes, to a fixpoint over modulator chains
    audio_rate = [c for c in connections if c.is_modulation and c.is_audio_rate]
    changed = True
    while changed:
        changed = False
        for conn in audio_rate:
            if conn.to_node in live and conn.from_node not in live:
                _walk_upstream(conn.from_node, upstream, live)
                changed = True

    live.discard(out.id)
    # Dangling references never become live
    return live & node_ids
