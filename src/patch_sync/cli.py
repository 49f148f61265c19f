"""Command-line interface for patch-sync."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from pydantic import ValidationError

from patch_sync.buses import BusAllocator, BusExhaustedError
from patch_sync.config import SyncConfig, load_config
from patch_sync.engine import RecordingEngine, format_command
from patch_sync.models import load_patch
from patch_sync.routing import plan_routing
from patch_sync.sync import Synchronizer
from patch_sync.validate import validate_patch
from patch_sync.visualize import patch_to_dot, patch_to_dot_file


def _config(args: argparse.Namespace) -> SyncConfig:
    if args.config:
        return load_config(args.config)
    return SyncConfig()


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_validate(args: argparse.Namespace) -> int:
    patch = load_patch(args.file)
    errors = validate_patch(patch)

    has_errors = any(e.severity == "error" for e in errors)
    has_warnings = any(e.severity == "warning" for e in errors)

    for err in errors:
        prefix = "warning" if err.severity == "warning" else "error"
        print(f"{prefix}: {err}", file=sys.stderr)

    if has_errors:
        return 1
    if has_warnings:
        print("valid (with warnings)")
    else:
        print("valid")
    return 0


def _cmd_plan(args: argparse.Namespace) -> int:
    config = _config(args)
    engine = RecordingEngine(config)
    sync = Synchronizer(engine, BusAllocator(config), config)

    for i, path in enumerate(args.files, start=1):
        patch = load_patch(path)
        report = sync.sync(patch.nodes, patch.connections)
        print(f"# pass {i}: {patch.name} ({path})")
        print(f"# live: {', '.join(sorted(report.live)) or '-'}")
        if report.effect_order:
            print(f"# effect order: {' -> '.join(report.effect_order)}")
        for nid in report.unplaced_effects:
            print(f"warning: effect '{nid}' is on an audio cycle, not started", file=sys.stderr)
        for cmd in engine.drain():
            print(format_command(cmd))
    return 0


def _cmd_dot(args: argparse.Namespace) -> int:
    patch = load_patch(args.file)
    plan = None
    if args.plan:
        config = _config(args)
        plan = plan_routing(patch.nodes, patch.connections, BusAllocator(config), config)
    if args.output:
        patch_to_dot_file(patch, args.output, plan)
    else:
        sys.stdout.write(patch_to_dot(patch, plan))
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the patch-sync CLI."""
    parser = argparse.ArgumentParser(
        prog="patch-sync",
        description="Validate, plan and visualize modular synth patches.",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="More logging (repeat for debug)"
    )
    parser.add_argument("--config", help="SyncConfig JSON file")
    sub = parser.add_subparsers(dest="command")

    # validate
    p_validate = sub.add_parser("validate", help="Validate patch JSON")
    p_validate.add_argument("file", help="Patch JSON file")

    # plan
    p_plan = sub.add_parser(
        "plan", help="Synchronize patches in sequence and print the engine commands"
    )
    p_plan.add_argument("files", nargs="+", metavar="FILE", help="Patch JSON files, one per pass")

    # dot
    p_dot = sub.add_parser("dot", help="Generate DOT visualization")
    p_dot.add_argument("file", help="Patch JSON file")
    p_dot.add_argument("-o", "--output", help="Output directory")
    p_dot.add_argument("--plan", action="store_true", help="Annotate with liveness and buses")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose > 1 else logging.INFO,
            format="%(levelname)s %(name)s: %(message)s",
        )

    if not args.command:
        parser.print_help(sys.stderr)
        return 1

    try:
        if args.command == "validate":
            return _cmd_validate(args)
        elif args.command == "plan":
            return _cmd_plan(args)
        elif args.command == "dot":
            return _cmd_dot(args)
    except FileNotFoundError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"error: invalid JSON: {e}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"error: invalid patch: {e}", file=sys.stderr)
        return 1
    except BusExhaustedError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 0  # pragma: no cover


if __name__ == "__main__":
    sys.exit(main())
