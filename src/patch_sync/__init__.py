"""patch-sync: keep a live synthesis engine in step with a modular patch graph."""

from patch_sync.buses import BusAllocator, BusExhaustedError
from patch_sync.config import SyncConfig, load_config
from patch_sync.engine import (
    Command,
    Engine,
    EngineError,
    InstanceGoneError,
    RecordingEngine,
    TransportError,
    format_command,
)
from patch_sync.kinds import KINDS, MIX_DESTINATION, KindDescriptor, descriptor, quantize_freq
from patch_sync.liveness import resolve_live
from patch_sync.models import Connection, Node, Patch, load_patch
from patch_sync.routing import Mapping, RoutingPlan, RoutingRecord, compute_pan, plan_routing
from patch_sync.session import PatchSession
from patch_sync.store import GraphStore
from patch_sync.sync import Synchronizer, SyncReport
from patch_sync.toposort import EffectOrder, order_effects, order_sources
from patch_sync.validate import PatchValidationError, validate_patch
from patch_sync.visualize import patch_to_dot, patch_to_dot_file

__all__ = [
    "KINDS",
    "MIX_DESTINATION",
    "BusAllocator",
    "BusExhaustedError",
    "Command",
    "Connection",
    "EffectOrder",
    "Engine",
    "EngineError",
    "GraphStore",
    "InstanceGoneError",
    "KindDescriptor",
    "Mapping",
    "Node",
    "Patch",
    "PatchSession",
    "PatchValidationError",
    "RecordingEngine",
    "RoutingPlan",
    "RoutingRecord",
    "SyncConfig",
    "SyncReport",
    "Synchronizer",
    "TransportError",
    "compute_pan",
    "descriptor",
    "format_command",
    "load_config",
    "load_patch",
    "order_effects",
    "order_sources",
    "patch_to_dot",
    "patch_to_dot_file",
    "plan_routing",
    "quantize_freq",
    "resolve_live",
    "validate_patch",
]
