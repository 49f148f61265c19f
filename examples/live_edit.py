"""Drive a recording engine from a sequence of live patch edits."""

from patch_sync import GraphStore, PatchSession, RecordingEngine, format_command

engine = RecordingEngine()
session = PatchSession(engine)
store = session.store


def show(title: str) -> None:
    print(f"--- {title}")
    for cmd in engine.drain():
        print(f"  {format_command(cmd)}")


def build(s: GraphStore) -> None:
    s.add_node("audio_out", "out")
    s.add_node("saw_osc", "osc", freq=110)
    s.add_node("fx_echo", "echo")
    s.connect("osc", "echo")
    s.connect("echo", "out", 0)
    s.connect("echo", "out", 1)


if __name__ == "__main__":
    session.submit(build)
    show("build")

    store.add_node("envelope", "env", value=0.8)
    store.modulate("env", "osc", "amp")
    show("envelope on amp")

    store.set_param("env", "value", 0.2)
    show("envelope moves")

    store.remove_node("echo")
    show("echo removed")

    store.connect("osc", "out", 0)
    show("osc straight to the left side")

    session.close()
    show("closed")
