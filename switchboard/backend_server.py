"""Reference execution backend served over WebSocket.

Keeps the registered macro configs, listens on a MIDI input and broadcasts
``triggerFired`` when an incoming message matches registrations. Running the
keyboard/mouse actions is left to whatever consumes those broadcasts.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Set

from switchboard.midi_ports import accepts, message_to_midi, open_input
from switchboard.models import TRIGGER_KINDS
from switchboard.settings import Settings


logger = logging.getLogger(__name__)


def _check_config(config: Any) -> List[str]:
    if not isinstance(config, dict):
        return ["/: object required"]
    errors: List[str] = []
    if not isinstance(config.get("id"), str) or not config.get("id"):
        errors.append("/id: non-empty string required")
    if config.get("midi_type") not in TRIGGER_KINDS:
        errors.append(f"/midi_type: one of {list(TRIGGER_KINDS)} required")
    for key in ("midi_note", "midi_channel"):
        v = config.get(key)
        if not isinstance(v, int) or isinstance(v, bool):
            errors.append(f"/{key}: integer required")
    if not isinstance(config.get("actions"), list):
        errors.append("/actions: array required")
    return errors


class Registry:
    """Registered configs keyed by macro id; re-registering replaces."""

    def __init__(self) -> None:
        self.configs: Dict[str, Dict[str, Any]] = {}
        self.settings = Settings()
        # mido delivers input on its own thread
        self._lock = threading.Lock()

    def register(self, config: Any) -> Dict[str, Any]:
        errors = _check_config(config)
        if errors:
            return {"ok": False, "error": "invalid_config", "details": errors}
        with self._lock:
            replaced = config["id"] in self.configs
            self.configs[config["id"]] = dict(config)
        logger.info("%s macro %s", "updated" if replaced else "registered", config["id"])
        return {"ok": True, "id": config["id"], "replaced": replaced}

    def cancel(self, macro_id: Any) -> Dict[str, Any]:
        if not isinstance(macro_id, str):
            return {"ok": False, "error": "invalid_id"}
        with self._lock:
            removed = self.configs.pop(macro_id, None) is not None
        logger.info("cancelled macro %s", macro_id)
        # Cancelling an unknown id is not an error
        return {"ok": True, "id": macro_id, "removed": removed}

    def update_settings(self, doc: Any) -> Dict[str, Any]:
        if not isinstance(doc, dict):
            return {"ok": False, "error": "invalid_settings"}
        try:
            merged = {**self.settings.to_dict(), **doc}
            self.settings = Settings.from_dict(merged)
        except (TypeError, ValueError) as e:
            return {"ok": False, "error": "invalid_settings", "details": str(e)}
        return {"ok": True, "settings": self.settings.to_dict()}

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(c) for c in self.configs.values()]

    def match(self, midi: Dict[str, Any]) -> List[str]:
        with self._lock:
            return [mid for mid, cfg in self.configs.items() if accepts(cfg, midi)]


class BackendServer:
    def __init__(self, registry: Optional[Registry] = None) -> None:
        self.registry = registry or Registry()
        self.clients: Set[Any] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.inp = None

    async def broadcast(self, obj: Dict[str, Any]) -> None:
        if not self.clients:
            return
        msg = json.dumps(obj)
        await asyncio.gather(*[c.send(msg) for c in list(self.clients)], return_exceptions=True)

    async def dispatch_midi(self, midi: Dict[str, Any]) -> List[str]:
        ids = self.registry.match(midi)
        logger.debug("midi %s matched %s", midi, ids)
        if ids:
            await self.broadcast({"type": "triggerFired", "ts": time.time(), "payload": {"midi": midi, "macroIds": ids}})
        return ids

    def on_midi_message(self, msg) -> None:
        """mido input callback; hops onto the event loop."""
        midi = message_to_midi(msg)
        if midi is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(lambda: asyncio.ensure_future(self.dispatch_midi(midi)))

    def _reply(self, t: str, req_id: Any, payload: Dict[str, Any]) -> str:
        return json.dumps({"type": t, "ts": time.time(), "id": req_id, "payload": payload})

    async def handle(self, ws) -> None:
        self.clients.add(ws)
        try:
            await ws.send(json.dumps({"type": "hello", "ts": time.time(), "payload": {
                "protocol": 1,
                "registered": len(self.registry.configs),
                "settings": self.registry.settings.to_dict(),
            }}))
            async for message in ws:
                try:
                    obj = json.loads(message)
                except ValueError:
                    await ws.send(self._reply("error", None, {"ok": False, "error": "invalid_json"}))
                    continue
                if not isinstance(obj, dict):
                    await ws.send(self._reply("error", None, {"ok": False, "error": "invalid_message"}))
                    continue
                t = obj.get("type")
                req_id = obj.get("id")
                payload = obj.get("payload")
                logger.debug("recv type=%s id=%s", t, req_id)
                if t == "ping":
                    await ws.send(json.dumps({"type": "pong", "ts": time.time(), "id": req_id}))
                    continue
                if t == "getRegistrations":
                    await ws.send(self._reply("registrations", req_id, {"macros": self.registry.snapshot()}))
                    continue
                if t == "register":
                    res = self.registry.register(payload)
                elif t == "cancel":
                    res = self.registry.cancel((payload or {}).get("macroId") if isinstance(payload, dict) else None)
                elif t == "updateSettings":
                    res = self.registry.update_settings(payload)
                else:
                    res = {"ok": False, "error": "unknown_type", "details": str(t)}
                await ws.send(self._reply("ack" if res.get("ok") else "error", req_id, res))
        finally:
            self.clients.discard(ws)

    async def serve(self, host: str, port: int, midi_filter: Optional[str] = None, with_midi: bool = True) -> None:
        import websockets  # type: ignore

        self._loop = asyncio.get_running_loop()
        if with_midi:
            self.inp = open_input(midi_filter, callback=self.on_midi_message)

        async def handler(ws, *maybe_path):
            await self.handle(ws)

        try:
            async with websockets.serve(handler, host, port):
                logger.info("backend listening on ws://%s:%d", host, port)
                await asyncio.Future()
        finally:
            if self.inp is not None:
                self.inp.close()
                self.inp = None


async def serve_ws(registry: Registry, host: str, port: int, midi_filter: Optional[str] = None, with_midi: bool = True) -> None:
    await BackendServer(registry).serve(host, port, midi_filter=midi_filter, with_midi=with_midi)
