from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from switchboard.backend import ExecutionBackend
from switchboard.settings import Settings


logger = logging.getLogger(__name__)


class BackendUnavailable(ConnectionError):
    pass


class WsBackend(ExecutionBackend):
    """ExecutionBackend speaking the backend server's WebSocket protocol.

    Requests carry an ``id``; the reader task resolves the matching future
    when the ``ack``/``error``/``registrations``/``pong`` reply arrives.
    ``triggerFired`` broadcasts go to ``on_fired`` when set.
    """

    def __init__(self, url: str, timeout: float = 5.0, on_fired: Optional[Callable[[Dict[str, Any]], None]] = None):
        self.url = url
        self.timeout = float(timeout)
        self.on_fired = on_fired
        self.hello: Dict[str, Any] = {}
        self.ws = None
        self._ids = itertools.count(1)
        self._waiting: Dict[int, asyncio.Future] = {}
        self._reader: Optional[asyncio.Task] = None

    async def connect(self) -> "WsBackend":
        import websockets  # type: ignore

        try:
            self.ws = await websockets.connect(self.url)
            first = json.loads(await asyncio.wait_for(self.ws.recv(), timeout=self.timeout))
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise BackendUnavailable(f"cannot reach backend at {self.url}: {e}") from e
        if first.get("type") == "hello":
            self.hello = first.get("payload") or {}
        logger.info("connected to backend %s (%s)", self.url, self.hello)
        self._reader = asyncio.create_task(self._read_loop())
        return self

    async def close(self) -> None:
        if self.ws is not None:
            await self.ws.close()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None
        self.ws = None

    async def __aenter__(self) -> "WsBackend":
        return await self.connect()

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _read_loop(self) -> None:
        try:
            async for raw in self.ws:
                try:
                    obj = json.loads(raw)
                except ValueError:
                    logger.warning("dropping non-JSON frame from backend")
                    continue
                fut = self._waiting.pop(obj.get("id"), None)
                if fut is not None:
                    if not fut.done():
                        fut.set_result(obj)
                elif obj.get("type") == "triggerFired" and self.on_fired is not None:
                    try:
                        self.on_fired(obj.get("payload") or {})
                    except Exception:
                        logger.exception("triggerFired listener failed")
        except Exception as e:
            logger.warning("backend connection lost: %s", e)
        finally:
            for fut in self._waiting.values():
                if not fut.done():
                    fut.set_exception(BackendUnavailable("backend connection closed"))
            self._waiting.clear()

    async def request(self, t: str, payload: Any = None) -> Dict[str, Any]:
        if self.ws is None:
            raise BackendUnavailable("not connected")
        req_id = next(self._ids)
        fut = asyncio.get_running_loop().create_future()
        self._waiting[req_id] = fut
        msg: Dict[str, Any] = {"type": t, "id": req_id}
        if payload is not None:
            msg["payload"] = payload
        try:
            await self.ws.send(json.dumps(msg))
            return await asyncio.wait_for(fut, timeout=self.timeout)
        finally:
            self._waiting.pop(req_id, None)

    async def _ok(self, t: str, payload: Any) -> bool:
        reply = await self.request(t, payload)
        body = reply.get("payload") or {}
        if reply.get("type") != "ack" or not body.get("ok"):
            logger.warning("backend refused %s: %s", t, body)
            return False
        return True

    async def register(self, config: Dict[str, Any]) -> bool:
        logger.debug("register %s", config)
        return await self._ok("register", config)

    async def cancel(self, macro_id: str) -> bool:
        return await self._ok("cancel", {"macroId": macro_id})

    async def update_settings(self, settings: Settings) -> bool:
        return await self._ok("updateSettings", settings.to_dict())

    async def registrations(self) -> List[Dict[str, Any]]:
        reply = await self.request("getRegistrations")
        return list((reply.get("payload") or {}).get("macros") or [])

    async def ping(self) -> bool:
        reply = await self.request("ping")
        return reply.get("type") == "pong"
