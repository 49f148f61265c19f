"""Graphviz DOT visualization for patches."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Optional

from patch_sync.models import Node, Patch
from patch_sync.routing import RoutingPlan

_CATEGORY_STYLE: dict[str, tuple[str, str]] = {
    "source": ("box", "#e2d5f1"),
    "effect": ("box", "#fde0c8"),
    "control": ("ellipse", "#cce5ff"),
    "script": ("ellipse", "#cce5ff"),
    "sink": ("box3d", "#fff3cd"),
    "output": ("box", "#f8d7da"),
}


def _node_attrs(node: Node, plan: Optional[RoutingPlan]) -> tuple[str, str, str, str]:
    """Return (shape, style, fillcolor, label) for a patch node."""
    shape, color = _CATEGORY_STYLE.get(node.category, ("box", "#ffffff"))
    style = "filled"
    if node.category == "output":
        style = "rounded,filled"
    label = f"{node.id}\\n{node.kind}"
    if plan is not None and plan.sink_id is not None and node.id != plan.sink_id:
        rec = plan.records.get(node.id)
        if rec is None:
            style += ",dashed"
            color = "#e9ecef"
        elif rec.is_effect:
            label += f"\\nin={rec.input_bus} out={rec.effective_output_bus}"
        else:
            label += f"\\nout={rec.effective_output_bus} pan={rec.pan:g}"
    return shape, style, color, label


def patch_to_dot(patch: Patch, plan: Optional[RoutingPlan] = None) -> str:
    """Convert a patch to a Graphviz DOT string.

    With a routing *plan*, live nodes are annotated with their buses and pan,
    non-live nodes are greyed out and audio edges carry their bus number.
    """
    lines: list[str] = []
    w = lines.append

    w(f'digraph "{patch.name}" {{')
    w("    rankdir=LR;")
    w('    node [fontname="Helvetica" fontsize=10];')
    w("")

    node_ids = {node.id for node in patch.nodes}
    for node in patch.nodes:
        shape, style, color, label = _node_attrs(node, plan)
        w(f'    "{node.id}" [shape={shape} style="{style}" fillcolor="{color}" label="{label}"];')

    w("")

    for conn in patch.connections:
        if conn.from_node not in node_ids or conn.to_node not in node_ids:
            continue
        attrs: list[str] = []
        if conn.is_modulation:
            attrs.append("style=dashed")
            rate = "ar" if conn.is_audio_rate else "kr"
            attrs.append(f'label="{conn.to_param} ({rate})"')
        elif plan is not None and conn.id in plan.audio_buses:
            attrs.append(f'label="bus {plan.audio_buses[conn.id]}"')
        if attrs:
            w(f'    "{conn.from_node}" -> "{conn.to_node}" [{" ".join(attrs)}];')
        else:
            w(f'    "{conn.from_node}" -> "{conn.to_node}";')

    w("}")
    return "\n".join(lines) + "\n"


def patch_to_dot_file(
    patch: Patch, output_dir: str | Path, plan: Optional[RoutingPlan] = None
) -> Path:
    """Write a DOT file for the patch to output_dir/{name}.dot.

    If the ``dot`` binary is on PATH, also renders a PDF to
    ``output_dir/{name}.pdf``.

    Returns the path to the written ``.dot`` file.
    """
    dot_src = patch_to_dot(patch, plan)
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)
    dot_path = out / f"{patch.name}.dot"
    dot_path.write_text(dot_src)

    dot_bin = shutil.which("dot")
    if dot_bin is not None:
        pdf_path = out / f"{patch.name}.pdf"
        subprocess.run(
            [dot_bin, "-Tpdf", str(dot_path), "-o", str(pdf_path)],
            check=True,
        )

    return dot_path
