from __future__ import annotations

import asyncio
import contextlib
import json
import socket
import unittest

import pytest

from switchboard.backend_server import BackendServer, Registry, serve_ws
from switchboard.coordinator import Coordinator
from switchboard.settings import Settings
from switchboard.storage import MemoryStorage
from switchboard.store import MACROS_KEY
from switchboard.ws_backend import BackendUnavailable, WsBackend


def _free_port() -> int:
    s = socket.socket()
    s.bind(("127.0.0.1", 0))
    addr, port = s.getsockname()
    s.close()
    return port


async def _connect(url: str, **kw) -> WsBackend:
    for _ in range(50):  # retry for up to ~2.5s while server boots
        try:
            return await WsBackend(url, **kw).connect()
        except BackendUnavailable:
            await asyncio.sleep(0.05)
    raise RuntimeError("failed to connect to WS server")


def _config(mid="m1", **kw):
    cfg = {
        "id": mid,
        "name": "Macro",
        "midi_type": "controlchange",
        "midi_note": 10,
        "midi_channel": 1,
        "midi_value": 5,
        "actions": [{"action_type": "KeyPress", "action_params": {"key": "a"}}],
    }
    cfg.update(kw)
    return cfg


class TestWsBackendProtocol(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.registry = Registry()
        self.port = _free_port()
        self.server_task = asyncio.create_task(serve_ws(self.registry, "127.0.0.1", self.port, with_midi=False))
        self.backend = await _connect(f"ws://127.0.0.1:{self.port}")

    async def asyncTearDown(self):
        with contextlib.suppress(Exception):
            await self.backend.close()
        self.server_task.cancel()
        with contextlib.suppress(BaseException):
            await self.server_task

    async def test_hello_and_ping(self):
        self.assertEqual(self.backend.hello.get("protocol"), 1)
        self.assertTrue(await self.backend.ping())

    async def test_register_replace_and_cancel(self):
        self.assertTrue(await self.backend.register(_config()))
        self.assertTrue(await self.backend.register(_config(midi_value=6)))
        regs = await self.backend.registrations()
        self.assertEqual(len(regs), 1)
        self.assertEqual(regs[0]["midi_value"], 6)
        self.assertTrue(await self.backend.cancel("m1"))
        self.assertEqual(self.registry.configs, {})
        # Unknown ids cancel cleanly
        self.assertTrue(await self.backend.cancel("never-registered"))

    async def test_invalid_config_rejected(self):
        self.assertFalse(await self.backend.register({"id": "bad", "midi_type": "sysex"}))
        self.assertEqual(self.registry.configs, {})

    async def test_update_settings(self):
        self.assertTrue(await self.backend.update_settings(Settings(macro_trigger_delay_ms=40)))
        self.assertEqual(self.registry.settings.macro_trigger_delay_ms, 40)

    async def test_coordinator_over_websocket(self):
        docs = [{
            "id": "play",
            "name": "Play",
            "trigger": {"type": "noteon", "channel": 2, "note": 36},
            "actions": [{"id": "a", "type": "keypress", "params": {"key": "space"}}],
        }]
        coord = Coordinator.from_storage(MemoryStorage({MACROS_KEY: docs}), self.backend)
        res = await coord.activate("play")
        self.assertTrue(res.ok)
        self.assertEqual(self.registry.configs["play"]["midi_note"], 36)
        self.assertEqual(self.registry.configs["play"]["actions"], [{"action_type": "KeyPress", "action_params": {"key": "space", "hold": False}}])
        await coord.deactivate("play")
        self.assertEqual(self.registry.configs, {})


@pytest.mark.asyncio
async def test_trigger_fired_broadcast_reaches_listener():
    server = BackendServer()
    server.registry.register(_config("vol", midi_value=None))
    server.registry.register(_config("other", midi_note=11))
    port = _free_port()
    task = asyncio.create_task(server.serve("127.0.0.1", port, with_midi=False))
    got = asyncio.get_running_loop().create_future()
    backend = await _connect(f"ws://127.0.0.1:{port}", on_fired=lambda p: got.done() or got.set_result(p))
    try:
        # CC registrations without a value never fire
        assert await server.dispatch_midi({"type": "controlchange", "channel": 1, "data1": 10, "data2": 5}) == []
        server.registry.register(_config("vol"))
        ids = await server.dispatch_midi({"type": "controlchange", "channel": 1, "data1": 10, "data2": 5})
        assert ids == ["vol"]
        payload = await asyncio.wait_for(got, timeout=2.0)
        assert payload["macroIds"] == ["vol"]
        assert payload["midi"]["data1"] == 10
    finally:
        await backend.close()
        task.cancel()
        with contextlib.suppress(BaseException):
            await task


@pytest.mark.asyncio
async def test_raw_protocol_errors():
    import websockets  # type: ignore

    port = _free_port()
    task = asyncio.create_task(serve_ws(Registry(), "127.0.0.1", port, with_midi=False))
    try:
        backend = await _connect(f"ws://127.0.0.1:{port}")
        await backend.close()
        async with websockets.connect(f"ws://127.0.0.1:{port}") as ws:
            hello = json.loads(await ws.recv())
            assert hello["type"] == "hello"
            await ws.send("not json")
            err = json.loads(await ws.recv())
            assert err["type"] == "error" and err["payload"]["error"] == "invalid_json"
            await ws.send(json.dumps({"type": "teleport", "id": 7}))
            err = json.loads(await ws.recv())
            assert err["id"] == 7 and err["payload"]["error"] == "unknown_type"
    finally:
        task.cancel()
        with contextlib.suppress(BaseException):
            await task


@pytest.mark.asyncio
async def test_connect_to_nothing_raises():
    with pytest.raises(BackendUnavailable):
        await WsBackend(f"ws://127.0.0.1:{_free_port()}", timeout=0.5).connect()
