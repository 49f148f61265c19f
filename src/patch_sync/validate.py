from __future__ import annotations

from collections import Counter

from patch_sync.kinds import MIX_DESTINATION
from patch_sync.models import Patch
from patch_sync.toposort import order_effects


class PatchValidationError(str):
    """A structured validation error that behaves as a plain string.

    Subclasses ``str`` so call sites can compare, join and print errors
    directly while still reading ``kind``/``node_id``/``severity``.
    """

    kind: str
    node_id: str | None
    field_name: str | None
    severity: str  # "error" | "warning"

    def __new__(
        cls,
        kind: str,
        message: str,
        *,
        node_id: str | None = None,
        field_name: str | None = None,
        severity: str = "error",
    ) -> PatchValidationError:
        return super().__new__(cls, message)

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        node_id: str | None = None,
        field_name: str | None = None,
        severity: str = "error",
    ) -> None:
        self.kind = kind
        self.node_id = node_id
        self.field_name = field_name
        self.severity = severity


def validate_patch(patch: Patch) -> list[PatchValidationError]:
    """Validate a patch and return a list of errors (empty = valid).

    The synchronizer tolerates every problem reported here; validation only
    tells the author which parts of the patch will be silently ignored.
    """
    errors: list[PatchValidationError] = []
    node_map = patch.node_map()

    # 1. Unique node IDs
    for nid, count in Counter(node.id for node in patch.nodes).items():
        if count > 1:
            errors.append(
                PatchValidationError("duplicate_id", f"Duplicate node ID: '{nid}'", node_id=nid)
            )

    # 2. Exactly one mix destination
    outs = [node.id for node in patch.nodes if node.kind == MIX_DESTINATION]
    if not outs:
        errors.append(
            PatchValidationError(
                "no_output", f"Patch has no '{MIX_DESTINATION}' node; nothing will sound"
            )
        )
    elif len(outs) > 1:
        for nid in outs[1:]:
            errors.append(
                PatchValidationError(
                    "multiple_outputs",
                    f"Extra '{MIX_DESTINATION}' node '{nid}' is ignored",
                    node_id=nid,
                    severity="warning",
                )
            )

    # 3. Connections
    conn_ids: set[int] = set()
    audio_bindings: set[tuple[str, int]] = set()
    mod_bindings: set[tuple[str, str]] = set()
    for conn in patch.connections:
        if conn.id in conn_ids:
            errors.append(
                PatchValidationError("duplicate_connection", f"Duplicate connection ID: {conn.id}")
            )
        conn_ids.add(conn.id)

        src = node_map.get(conn.from_node)
        dst = node_map.get(conn.to_node)
        if src is None:
            errors.append(
                PatchValidationError(
                    "dangling_ref",
                    f"Connection {conn.id} starts at unknown node '{conn.from_node}'",
                    field_name="from_node",
                )
            )
        if dst is None:
            errors.append(
                PatchValidationError(
                    "dangling_ref",
                    f"Connection {conn.id} ends at unknown node '{conn.to_node}'",
                    field_name="to_node",
                )
            )
        if src is None or dst is None:
            continue

        if conn.from_port >= len(src.outputs):
            errors.append(
                PatchValidationError(
                    "bad_port",
                    f"Connection {conn.id}: node '{src.id}' has no output port {conn.from_port}",
                    node_id=src.id,
                    field_name="from_port",
                )
            )

        if conn.to_port is not None:
            if conn.to_port >= len(dst.inputs):
                errors.append(
                    PatchValidationError(
                        "bad_port",
                        f"Connection {conn.id}: node '{dst.id}' has no input port {conn.to_port}",
                        node_id=dst.id,
                        field_name="to_port",
                    )
                )
            binding = (dst.id, conn.to_port)
            if binding in audio_bindings:
                errors.append(
                    PatchValidationError(
                        "duplicate_binding",
                        f"Connection {conn.id}: input {conn.to_port} of '{dst.id}'"
                        " is already connected",
                        node_id=dst.id,
                        field_name="to_port",
                        severity="warning",
                    )
                )
            audio_bindings.add(binding)
            continue

        param = conn.to_param or ""
        key = (dst.id, param)
        if key in mod_bindings:
            errors.append(
                PatchValidationError(
                    "duplicate_binding",
                    f"Connection {conn.id}: '{dst.id}.{param}' is already modulated;"
                    " only the first connection applies",
                    node_id=dst.id,
                    field_name=param,
                    severity="warning",
                )
            )
        mod_bindings.add(key)

        if conn.is_audio_rate:
            if param not in dst.descriptor.audio_rate:
                errors.append(
                    PatchValidationError(
                        "bad_param",
                        f"Connection {conn.id}: '{dst.id}' has no audio-rate input for '{param}'",
                        node_id=dst.id,
                        field_name=param,
                    )
                )
            if not src.descriptor.produces_audio:
                errors.append(
                    PatchValidationError(
                        "bad_source",
                        f"Connection {conn.id}: '{src.id}' produces no audio signal",
                        node_id=src.id,
                    )
                )
        else:
            if param not in dst.modulatable:
                errors.append(
                    PatchValidationError(
                        "bad_param",
                        f"Connection {conn.id}: '{dst.id}.{param}' is not modulatable",
                        node_id=dst.id,
                        field_name=param,
                    )
                )
            if src.category not in ("control", "script"):
                errors.append(
                    PatchValidationError(
                        "bad_source",
                        f"Connection {conn.id}: control-rate source '{src.id}'"
                        f" is a {src.category}, not a control or script node",
                        node_id=src.id,
                        severity="warning",
                    )
                )

    # 4. Effect cycles
    effects = [node.id for node in patch.nodes if node.descriptor.is_effect]
    if effects:
        others = {node.id for node in patch.nodes if not node.descriptor.is_effect}
        result = order_effects(effects, patch.connections, placed=others)
        for nid in result.unplaced:
            errors.append(
                PatchValidationError(
                    "cycle",
                    f"Effect '{nid}' is on or behind an audio cycle and will not run",
                    node_id=nid,
                )
            )

    return errors
