"""Audio-rate FM into a filter and reverb, planned in one pass."""

from patch_sync import (
    BusAllocator,
    Connection,
    Node,
    Patch,
    RecordingEngine,
    Synchronizer,
    format_command,
    patch_to_dot_file,
    plan_routing,
    validate_patch,
)

patch = Patch(
    name="fm_bell",
    nodes=[
        Node(id="out", kind="audio_out"),
        Node(id="carrier", kind="sin_osc", params={"freq": 330, "amp": 0.4}),
        Node(id="modulator", kind="sin_osc", params={"freq": 660, "amp": 0.6}),
        Node(id="sweep", kind="constant", params={"value": 70}),
        Node(id="lpf", kind="fx_lpf", params={"cutoff": 90}),
        Node(id="verb", kind="fx_reverb"),
    ],
    connections=[
        Connection(id=1, from_node="carrier", to_node="lpf", to_port=0),
        Connection(id=2, from_node="lpf", to_node="verb", to_port=0),
        Connection(id=3, from_node="verb", to_node="out", to_port=0),
        Connection(id=4, from_node="verb", to_node="out", to_port=1),
        Connection(
            id=5, from_node="modulator", to_node="carrier", to_param="freq", is_audio_rate=True
        ),
        Connection(id=6, from_node="sweep", to_node="lpf", to_param="cutoff"),
    ],
)

if __name__ == "__main__":
    errors = validate_patch(patch)
    if errors:
        print("Validation problems:")
        for e in errors:
            print(f"  - {e.severity}: {e}")
    else:
        print("Patch is valid.")
    print()

    plan = plan_routing(patch.nodes, patch.connections, BusAllocator())
    for rec in plan.records.values():
        print(f"{rec.node_id:>10}  out={rec.effective_output_bus:<4} pan={rec.pan:g}")
    print()

    engine = RecordingEngine()
    Synchronizer(engine).sync(patch.nodes, patch.connections)
    for cmd in engine.drain():
        print(format_command(cmd))

    dot_path = patch_to_dot_file(patch, "build", plan)
    print(f"\nDOT: {dot_path}")
