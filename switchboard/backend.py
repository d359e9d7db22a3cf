from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Set, Tuple

from switchboard.actions import convert_actions
from switchboard.models import CONTROL_CHANGE, MacroDefinition
from switchboard.settings import Settings


class ExecutionBackend:
    """Abstract backend interface used by the coordinator.

    Both calls return True on acceptance. Raising counts as a rejection.
    """

    async def register(self, config: Dict[str, Any]) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def cancel(self, macro_id: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


def build_registration(macro: MacroDefinition, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Backend payload for one macro.

    ``midi_note`` carries the controller number for CC triggers and the note
    number otherwise; a missing channel is sent as 0.
    """
    trig = macro.trigger
    is_cc = trig.kind == CONTROL_CHANGE
    number = trig.controller if is_cc else trig.note
    config: Dict[str, Any] = {
        "id": macro.id,
        "name": macro.name,
        "midi_type": trig.kind,
        "midi_note": int(number or 0),
        "midi_channel": int(trig.channel or 0),
        "actions": convert_actions(macro.actions),
    }
    if macro.group_id:
        config["groupId"] = macro.group_id
    if is_cc and trig.value is not None:
        config["midi_value"] = int(trig.value)
    if macro.before_actions:
        config["before_actions"] = convert_actions(macro.before_actions)
    if macro.after_actions:
        config["after_actions"] = convert_actions(macro.after_actions)
    timeout = macro.timeout
    if timeout is None and macro.after_actions and settings is not None:
        timeout = settings.default_timeout_ms
    if timeout is not None:
        config["timeout"] = int(timeout)
    return config


class VirtualBackend(ExecutionBackend):
    """In-process backend capturing calls for tests and dry runs.

    Records tuples ``("register", id)`` / ``("cancel", id)`` in ``calls`` and
    keeps the accepted configs in ``registered``. Ids in ``fail_register`` /
    ``fail_cancel`` are rejected; ``raise_on`` ids raise instead.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: List[Tuple[str, str]] = []
        self.registered: Dict[str, Dict[str, Any]] = {}
        self.fail_register: Set[str] = set()
        self.fail_cancel: Set[str] = set()
        self.raise_on: Set[str] = set()

    async def register(self, config: Dict[str, Any]) -> bool:
        mid = config["id"]
        self.calls.append(("register", mid))
        if self.delay:
            await asyncio.sleep(self.delay)
        if mid in self.raise_on:
            raise RuntimeError(f"backend exploded registering {mid}")
        if mid in self.fail_register:
            return False
        # Re-registering an id replaces the previous config
        self.registered[mid] = dict(config)
        return True

    async def cancel(self, macro_id: str) -> bool:
        self.calls.append(("cancel", macro_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if macro_id in self.raise_on:
            raise RuntimeError(f"backend exploded cancelling {macro_id}")
        if macro_id in self.fail_cancel:
            return False
        self.registered.pop(macro_id, None)
        return True
