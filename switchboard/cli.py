from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, List, Optional

from switchboard.backend_server import Registry, serve_ws
from switchboard.bundle import export_bundle, import_bundle
from switchboard.coordinator import ActivationResult, CategoryMode, Coordinator, PendingResolution, Resolution
from switchboard.logging_setup import configure_logging
from switchboard.midi_ports import PortWatcher, list_input_ports
from switchboard.storage import JsonFileStorage
from switchboard.store import SwitchboardError
from switchboard.ws_backend import BackendUnavailable, WsBackend


logger = logging.getLogger(__name__)

DEFAULT_URL = "ws://127.0.0.1:8766"

_CHOICES = {"r": Resolution.REPLACE, "k": Resolution.KEEP_EXISTING, "c": Resolution.CANCEL, "s": Resolution.KEEP_SELECTED}


def default_data_dir() -> str:
    return os.environ.get("SWITCHBOARD_DATA_DIR") or str(Path.home() / ".switchboard")


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _describe(p: PendingResolution) -> str:
    lines = [f"{p.kind} activation of {', '.join(p.group_keys)} collides with:"]
    for m in p.conflicts:
        lines.append(f"  {m.id}  {m.name or '(unnamed)'}  [{m.category}]")
    return "\n".join(lines)


def _prompt(p: PendingResolution):
    allowed = "r/k/c/s" if p.kind == "category-internal" else "r/k/c"
    print(_describe(p))
    while True:
        ans = input(f"replace / keep existing / cancel{' / select' if 's' in allowed else ''} [{allowed}]: ").strip().lower()[:1]
        if ans in allowed.split("/"):
            break
    keep: List[str] = []
    if ans == "s":
        keep = input("macro ids to keep (space separated): ").split()
    return _CHOICES[ans], keep


async def _settle(coord: Coordinator, outcome, on_conflict: Optional[str]) -> ActivationResult:
    """Drive PendingResolution values to a final result."""
    while isinstance(outcome, PendingResolution):
        if on_conflict:
            print(_describe(outcome), file=sys.stderr)
            outcome = await coord.resolve(outcome, Resolution(on_conflict))
        else:
            resolution, keep = _prompt(outcome)
            outcome = await coord.resolve(outcome, resolution, keep=keep)
    return outcome


def cmd_list(coord: Coordinator, args: argparse.Namespace) -> int:
    for cat in coord.store.categories():
        mark = "*" if coord.is_category_active(cat.id) else " "
        print(f"{mark} {cat.name} ({cat.id})")
        for key in coord.ordering.ordered_keys(coord.store, cat.id):
            state = coord.group_state(key).value
            members = coord.store.group_members(key)
            label = members[0].name or key
            print(f"    {key:<24} {state:<12} {label}")
            if args.verbose and len(members) > 1:
                for m in members:
                    print(f"      - {m.id} ({m.effective_role})")
    return 0


def cmd_conflicts(coord: Coordinator, args: argparse.Namespace) -> int:
    if args.macro_id not in coord.store:
        print(f"unknown macro: {args.macro_id}", file=sys.stderr)
        return 1
    _print([{"id": m.id, "name": m.name, "groupKey": m.group_key} for m in coord.preview_conflicts(args.macro_id)])
    return 0


def cmd_export(coord: Coordinator, args: argparse.Namespace) -> int:
    data = export_bundle(coord)
    if args.out:
        Path(args.out).write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        logger.info("exported %d macros to %s", len(data["macros"]), args.out)
    else:
        _print(data)
    return 0


async def _with_backend(args: argparse.Namespace) -> int:
    storage = JsonFileStorage(args.data_dir)
    async with WsBackend(args.url) as backend:
        coord = Coordinator.from_storage(storage, backend)
        if args.cmd == "sync":
            res = await coord.restore()
        elif args.cmd == "activate":
            res = await _settle(coord, await coord.activate(args.macro_id), args.on_conflict)
        elif args.cmd == "deactivate":
            res = await coord.deactivate(args.macro_id)
        elif args.cmd == "activate-category":
            mode = CategoryMode.EXCLUSIVE if args.exclusive else CategoryMode.ADDITIVE
            res = await _settle(coord, await coord.activate_category(args.category_id, mode), args.on_conflict)
        elif args.cmd == "deactivate-category":
            res = await coord.deactivate_category(args.category_id)
        else:  # import
            data = json.loads(Path(args.file).read_text(encoding="utf-8"))
            report = await import_bundle(coord, data)
            print(report.summary())
            _print(report.to_dict())
            return 0
    _print(res.to_payload())
    return 0 if res.ok else 1


def cmd_ports(args: argparse.Namespace) -> int:
    if not args.watch:
        for name in list_input_ports():
            print(name)
        return 0
    watcher = PortWatcher(lambda names: print(json.dumps(names), flush=True), interval=args.interval)
    watcher.start()
    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        watcher.stop()
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="switchboard", description="MIDI macro activation and conflict resolution")
    ap.add_argument("--data-dir", default=default_data_dir())
    ap.add_argument("--url", default=DEFAULT_URL, help="backend WebSocket URL")
    ap.add_argument("-v", "--verbose", action="store_true")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("list")
    sub.add_parser("sync", help="re-register every active macro with the backend")
    p = sub.add_parser("activate"); p.add_argument("macro_id")
    p.add_argument("--on-conflict", choices=["replace", "keep", "cancel"])
    p = sub.add_parser("deactivate"); p.add_argument("macro_id")
    p = sub.add_parser("activate-category"); p.add_argument("category_id")
    p.add_argument("--exclusive", action="store_true", help="deactivate everything else first")
    p.add_argument("--on-conflict", choices=["replace", "keep", "cancel"])
    p = sub.add_parser("deactivate-category"); p.add_argument("category_id")
    p = sub.add_parser("conflicts"); p.add_argument("macro_id")
    p = sub.add_parser("export"); p.add_argument("--out")
    p = sub.add_parser("import"); p.add_argument("file")
    p = sub.add_parser("ports"); p.add_argument("--watch", action="store_true")
    p.add_argument("--interval", type=float, default=2.0)
    p = sub.add_parser("serve", help="run the reference backend server")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8766)
    p.add_argument("--midi-port", help="substring of the MIDI input to listen on")
    p.add_argument("--no-midi", action="store_true")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("INFO" if args.cmd == "serve" else "WARNING", verbose=args.verbose)

    try:
        if args.cmd == "ports":
            return cmd_ports(args)
        if args.cmd == "serve":
            try:
                asyncio.run(serve_ws(Registry(), args.host, args.port, midi_filter=args.midi_port, with_midi=not args.no_midi))
            except KeyboardInterrupt:
                pass
            return 0
        if args.cmd in ("list", "conflicts", "export"):
            coord = Coordinator.from_storage(JsonFileStorage(args.data_dir), backend=None)
            return {"list": cmd_list, "conflicts": cmd_conflicts, "export": cmd_export}[args.cmd](coord, args)
        return asyncio.run(_with_backend(args))
    except BackendUnavailable as e:
        print(f"error: {e}", file=sys.stderr)
        return 2
    except (SwitchboardError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
