from __future__ import annotations

import copy
import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


DEFAULT_CATEGORY_ID = "default"

NOTE_ON = "noteon"
NOTE_OFF = "noteoff"
CONTROL_CHANGE = "controlchange"
TRIGGER_KINDS = (NOTE_ON, NOTE_OFF, CONTROL_CHANGE)

INCREMENT = "increment"
DECREMENT = "decrement"
DIRECTIONS = (INCREMENT, DECREMENT)

ROLE_STANDARD = "standard"
ROLE_INCREMENT = "encoder-increment"
ROLE_DECREMENT = "encoder-decrement"
ROLE_CLICK = "encoder-click"
ROLES = (ROLE_STANDARD, ROLE_INCREMENT, ROLE_DECREMENT, ROLE_CLICK)
ENCODER_ROLES = (ROLE_INCREMENT, ROLE_DECREMENT, ROLE_CLICK)


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class MacroTrigger:
    """MIDI event shape that fires a macro.

    Stored with the document keys ``type``/``channel``/``note``/``controller``/
    ``value``/``direction``; ``kind`` is the in-memory name for ``type``.
    """

    kind: str
    channel: Optional[int] = None
    note: Optional[int] = None
    controller: Optional[int] = None
    value: Optional[int] = None
    direction: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.kind}
        for key in ("channel", "note", "controller", "value", "direction"):
            v = getattr(self, key)
            if v is not None:
                out[key] = v
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MacroTrigger":
        return cls(
            kind=d.get("type", d.get("kind")),
            channel=d.get("channel"),
            note=d.get("note"),
            controller=d.get("controller"),
            value=d.get("value"),
            direction=d.get("direction"),
        )


@dataclass
class MacroDefinition:
    id: str
    trigger: MacroTrigger
    name: str = ""
    group_id: Optional[str] = None
    category_id: Optional[str] = None
    role: Optional[str] = None
    # Actions are opaque {id, type, params} dicts
    actions: List[Dict[str, Any]] = field(default_factory=list)
    before_actions: Optional[List[Dict[str, Any]]] = None
    after_actions: Optional[List[Dict[str, Any]]] = None
    timeout: Optional[int] = None
    created_at: str = field(default_factory=now_iso)
    updated_at: Optional[str] = None
    # Unknown document keys, kept so a load/save round trip is lossless
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def group_key(self) -> str:
        return self.group_id or self.id

    @property
    def category(self) -> str:
        return self.category_id or DEFAULT_CATEGORY_ID

    @property
    def effective_role(self) -> str:
        return self.role or ROLE_STANDARD

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = copy.deepcopy(self.extra)
        out["id"] = self.id
        out["name"] = self.name
        if self.group_id is not None:
            out["groupId"] = self.group_id
        if self.category_id is not None:
            out["categoryId"] = self.category_id
        if self.role is not None:
            out["type"] = self.role
        out["trigger"] = self.trigger.to_dict()
        out["actions"] = copy.deepcopy(self.actions)
        if self.before_actions is not None:
            out["beforeActions"] = copy.deepcopy(self.before_actions)
        if self.after_actions is not None:
            out["afterActions"] = copy.deepcopy(self.after_actions)
        if self.timeout is not None:
            out["timeout"] = self.timeout
        out["createdAt"] = self.created_at
        if self.updated_at is not None:
            out["updatedAt"] = self.updated_at
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MacroDefinition":
        known = {
            "id", "name", "groupId", "categoryId", "type", "trigger", "actions",
            "beforeActions", "afterActions", "timeout", "createdAt", "updatedAt",
        }
        trig = d.get("trigger")
        return cls(
            id=d["id"],
            name=d.get("name", ""),
            group_id=d.get("groupId"),
            category_id=d.get("categoryId"),
            role=d.get("type"),
            trigger=MacroTrigger.from_dict(trig if isinstance(trig, dict) else {}),
            actions=copy.deepcopy(d.get("actions") or []),
            before_actions=copy.deepcopy(d.get("beforeActions")),
            after_actions=copy.deepcopy(d.get("afterActions")),
            timeout=d.get("timeout"),
            created_at=d.get("createdAt") or now_iso(),
            updated_at=d.get("updatedAt"),
            extra={k: copy.deepcopy(v) for k, v in d.items() if k not in known},
        )


@dataclass
class MacroCategory:
    id: str
    name: str
    color: str = "default"
    is_expanded: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id, "name": self.name, "color": self.color}
        if self.is_expanded is not None:
            out["isExpanded"] = self.is_expanded
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MacroCategory":
        return cls(
            id=d["id"],
            name=d.get("name", d["id"]),
            color=d.get("color", "default"),
            is_expanded=d.get("isExpanded"),
        )


def default_category() -> MacroCategory:
    return MacroCategory(id=DEFAULT_CATEGORY_ID, name="General", color="default", is_expanded=True)
