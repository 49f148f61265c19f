"""Evaluation order for live effect and source nodes."""

from __future__ import annotations

from typing import Iterable, NamedTuple, Sequence

from patch_sync._deps import audio_connections
from patch_sync.models import Connection


class EffectOrder(NamedTuple):
    order: list[str]
    unplaced: list[str]  # effects caught in a cycle


def order_effects(
    effect_ids: Sequence[str],
    connections: Sequence[Connection],
    placed: Iterable[str],
) -> EffectOrder:
    """Order effects so each one comes after the node feeding its audio input.

    Kahn-style: repeatedly place any effect whose input source is already
    placed or absent. *placed* holds the nodes that evaluate before every
    effect (sources and the mix destination). Sweeps are bounded by
    ``len(effect_ids) + 1``; effects left over at the end sit on a cycle and
    are returned in ``unplaced`` in their original order.
    """
    done = set(placed)
    effect_set = set(effect_ids)
    feeders: dict[str, list[str]] = {nid: [] for nid in effect_ids}
    for conn in audio_connections(connections):
        if conn.to_node not in feeders:
            continue
        # Feeders that are neither effects nor placed never become available
        if conn.from_node in effect_set or conn.from_node in done:
            feeders[conn.to_node].append(conn.from_node)

    order: list[str] = []
    remaining = list(effect_ids)
    sweeps = len(remaining) + 1
    while remaining and sweeps > 0:
        sweeps -= 1
        for nid in list(remaining):
            if all(src in done for src in feeders[nid]):
                order.append(nid)
                done.add(nid)
                remaining.remove(nid)

    return EffectOrder(order, remaining)


def order_sources(source_ids: Sequence[str], modulators: set[str]) -> list[str]:
    """Put carriers before audio-rate modulators.

    The engine adds each new source at the head of its group, so the nodes
    instantiated last evaluate first: modulators must be started after the
    carriers that read them.
    """
    carriers = [nid for nid in source_ids if nid not in modulators]
    mods = [nid for nid in source_ids if nid in modulators]
    return carriers + mods
