"""Conversion of opaque editor actions into backend action variants.

The engine treats ``{"id", "type", "params"}`` actions as pass-through data.
Only at the backend boundary are they turned into one of the ``ActionType``
variants with the parameter set that variant understands.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


logger = logging.getLogger(__name__)


class ActionType(str, enum.Enum):
    MOUSE_MOVE = "MouseMove"
    MOUSE_CLICK = "MouseClick"
    KEY_PRESS = "KeyPress"
    KEY_RELEASE = "KeyRelease"
    KEY_COMBINATION = "KeyCombination"
    MOUSE_RELEASE = "MouseRelease"
    MOUSE_DRAG = "MouseDrag"
    DELAY = "Delay"


@dataclass
class BackendAction:
    action_type: ActionType
    action_params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"action_type": self.action_type.value, "action_params": dict(self.action_params)}


def _offset(direction: Optional[str], distance: int) -> tuple[int, int]:
    return {
        "up": (0, -distance),
        "down": (0, distance),
        "left": (-distance, 0),
        "right": (distance, 0),
    }.get(direction or "", (0, 0))


def _number(v: Any, default: int) -> int:
    return v if isinstance(v, (int, float)) and not isinstance(v, bool) else default


def _key_action(params: Dict[str, Any]) -> BackendAction:
    modifiers = params.get("modifiers") or []
    hold = bool(params.get("hold", False))
    if modifiers:
        return BackendAction(ActionType.KEY_COMBINATION, {"keys": [*modifiers, params.get("key", "")], "hold": hold})
    return BackendAction(ActionType.KEY_PRESS, {"key": params.get("key", ""), "hold": hold})


def _mouse_click(params: Dict[str, Any]) -> BackendAction:
    button = params.get("button")
    if button in ("scroll-up", "scroll-down"):
        return BackendAction(ActionType.MOUSE_CLICK, {"button": button, "amount": params.get("amount") or 3})
    return BackendAction(ActionType.MOUSE_CLICK, {
        "button": button or "left",
        "hold": bool(params.get("hold", False)),
        "x": params.get("x") or 0,
        "y": params.get("y") or 0,
    })


def _mouse_move(params: Dict[str, Any]) -> BackendAction:
    if params.get("relative") is True:
        dx, dy = _offset(params.get("direction"), _number(params.get("distance"), 100))
        return BackendAction(ActionType.MOUSE_MOVE, {"x": dx, "y": dy, "relative": True})
    return BackendAction(ActionType.MOUSE_MOVE, {"x": params.get("x") or 0, "y": params.get("y") or 0, "relative": False})


def _mouse_drag(params: Dict[str, Any]) -> BackendAction:
    dx, dy = _offset(params.get("direction"), _number(params.get("distance"), 0))
    return BackendAction(ActionType.MOUSE_DRAG, {
        "button": params.get("button") or "left",
        "x": dx,
        "y": dy,
        "duration": _number(params.get("duration"), 0),
    })


_CONVERTERS = {
    "keypress": _key_action,
    "keyhold": _key_action,
    "keyrelease": lambda p: BackendAction(ActionType.KEY_RELEASE, {"key": p.get("key", "")}),
    "mouseclick": _mouse_click,
    "mouserelease": lambda p: BackendAction(ActionType.MOUSE_RELEASE, {"button": p.get("button") or "left"}),
    "mousemove": _mouse_move,
    "mousedrag": _mouse_drag,
    "delay": lambda p: BackendAction(ActionType.DELAY, {"duration": _number(p.get("duration"), 0)}),
}


def to_backend_action(action: Dict[str, Any]) -> BackendAction:
    kind = str(action.get("type", ""))
    params = action.get("params") or {}
    conv = _CONVERTERS.get(kind)
    if conv is None:
        # Unknown kinds degrade to an empty key press
        logger.warning("unknown action type %r in action %s; sending empty KeyPress", kind, action.get("id"))
        return BackendAction(ActionType.KEY_PRESS, {})
    return conv(params)


def convert_actions(actions: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    return [to_backend_action(a).to_dict() for a in (actions or [])]
