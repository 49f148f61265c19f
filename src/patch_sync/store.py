"""Graph Store: the authoring API over a patch's nodes and connections.

The store enforces the editing rules (one cable per input port, one
modulation per parameter, connections die with their nodes) and tells
subscribers after every change. Mutations are strict and raise; the
synchronizer that reads the store is lenient.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from patch_sync.models import Connection, Node, Patch

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class GraphStore:
    def __init__(self, patch: Optional[Patch] = None) -> None:
        self.name = "untitled"
        self._nodes: dict[str, Node] = {}
        self._connections: dict[int, Connection] = {}
        self._next_conn_id = 1
        self._next_node_id = 1
        self._listeners: list[Listener] = []
        if patch is not None:
            self._replace(patch)

    # -- reads ---------------------------------------------------------------

    def get_nodes(self) -> list[Node]:
        return list(self._nodes.values())

    def get_connections(self) -> list[Connection]:
        return list(self._connections.values())

    def node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise KeyError(f"Unknown node '{node_id}'") from None

    def snapshot(self) -> Patch:
        """Return a deep copy of the current state as a Patch."""
        return Patch(
            name=self.name,
            nodes=[n.model_copy(deep=True) for n in self._nodes.values()],
            connections=[c.model_copy() for c in self._connections.values()],
        )

    # -- subscription --------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call *listener* after every mutation; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    # -- nodes ---------------------------------------------------------------

    def add_node(self, kind: str, node_id: Optional[str] = None, **params: float) -> Node:
        """Add a node of *kind* with its default parameters, overridden by *params*."""
        if node_id is None:
            node_id = self._fresh_node_id(kind)
        elif node_id in self._nodes:
            raise ValueError(f"Node '{node_id}' already exists")
        node = Node.model_validate({"id": node_id, "kind": kind, "params": params})
        self._nodes[node_id] = node
        logger.debug("added node %s (%s)", node_id, kind)
        self._notify()
        return node

    def remove_node(self, node_id: str) -> list[Connection]:
        """Remove a node and every connection touching it; return those connections."""
        self.node(node_id)
        del self._nodes[node_id]
        removed = [
            c for c in self._connections.values() if node_id in (c.from_node, c.to_node)
        ]
        for conn in removed:
            del self._connections[conn.id]
        logger.debug("removed node %s and %d connection(s)", node_id, len(removed))
        self._notify()
        return removed

    def set_param(self, node_id: str, name: str, value: float) -> None:
        """Set a parameter value.

        Modulation sources accept any name (scripts publish ``out_<i>``);
        other nodes only accept the parameters their kind declares.
        """
        node = self.node(node_id)
        if node.category not in ("control", "script") and name not in node.descriptor.params:
            raise ValueError(f"Node '{node_id}' ({node.kind}) has no parameter '{name}'")
        node.params[name] = float(value)
        self._notify()

    def set_output_count(self, node_id: str, count: int) -> list[Connection]:
        """Resize a script node's outputs; drop connections from ports that vanish."""
        node = self.node(node_id)
        if node.category != "script":
            raise ValueError(f"Node '{node_id}' ({node.kind}) has a fixed output count")
        if count < 1:
            raise ValueError(f"Output count must be at least 1, got {count}")
        node.num_outputs = count
        removed = [
            c for c in self._connections.values() if c.from_node == node_id and c.from_port >= count
        ]
        for conn in removed:
            del self._connections[conn.id]
        self._notify()
        return removed

    # -- connections ---------------------------------------------------------

    def connect(
        self, from_node: str, to_node: str, to_port: int = 0, from_port: int = 0
    ) -> Connection:
        """Add an audio cable, superseding any cable already on that input port."""
        src = self.node(from_node)
        dst = self.node(to_node)
        self._check_output(src, from_port)
        if not 0 <= to_port < len(dst.inputs):
            raise ValueError(f"Node '{to_node}' ({dst.kind}) has no input port {to_port}")
        for old in self._connections.values():
            if old.to_node == to_node and old.to_port == to_port:
                logger.debug("connection %d superseded on %s:%d", old.id, to_node, to_port)
                del self._connections[old.id]
                break
        conn = Connection(
            id=self._take_conn_id(),
            from_node=from_node,
            from_port=from_port,
            to_node=to_node,
            to_port=to_port,
        )
        self._connections[conn.id] = conn
        self._notify()
        return conn

    def modulate(
        self,
        from_node: str,
        to_node: str,
        param: str,
        *,
        from_port: int = 0,
        audio_rate: bool = False,
    ) -> Connection:
        """Add a modulation cable, superseding any modulation of the same parameter."""
        src = self.node(from_node)
        dst = self.node(to_node)
        self._check_output(src, from_port)
        allowed = dst.descriptor.audio_rate if audio_rate else dst.modulatable
        if param not in allowed:
            rate = "audio-rate" if audio_rate else "control-rate"
            raise ValueError(f"'{to_node}.{param}' does not accept {rate} modulation")
        for old in self._connections.values():
            if old.to_node == to_node and old.to_param == param:
                logger.debug("modulation %d superseded on %s.%s", old.id, to_node, param)
                del self._connections[old.id]
                break
        conn = Connection(
            id=self._take_conn_id(),
            from_node=from_node,
            from_port=from_port,
            to_node=to_node,
            to_param=param,
            is_audio_rate=audio_rate,
        )
        self._connections[conn.id] = conn
        self._notify()
        return conn

    def disconnect(self, conn_id: int) -> Connection:
        try:
            conn = self._connections.pop(conn_id)
        except KeyError:
            raise KeyError(f"Unknown connection {conn_id}") from None
        self._notify()
        return conn

    # -- bulk ----------------------------------------------------------------

    def load(self, patch: Patch) -> None:
        """Replace the whole graph with *patch* (graph reload)."""
        self._replace(patch)
        self._notify()

    def _replace(self, patch: Patch) -> None:
        self.name = patch.name
        self._nodes = {n.id: n.model_copy(deep=True) for n in patch.nodes}
        self._connections = {c.id: c.model_copy() for c in patch.connections}
        self._next_conn_id = max(self._connections, default=0) + 1

    # -- internals -----------------------------------------------------------

    def _check_output(self, node: Node, port: int) -> None:
        if not 0 <= port < len(node.outputs):
            raise ValueError(f"Node '{node.id}' ({node.kind}) has no output port {port}")

    def _take_conn_id(self) -> int:
        cid = self._next_conn_id
        self._next_conn_id += 1
        return cid

    def _fresh_node_id(self, kind: str) -> str:
        while True:
            nid = f"{kind}_{self._next_node_id}"
            self._next_node_id += 1
            if nid not in self._nodes:
                return nid
