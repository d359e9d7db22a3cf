from __future__ import annotations

from typing import Any, Dict, Iterable, List

from switchboard.models import (
    CONTROL_CHANGE,
    DIRECTIONS,
    NOTE_OFF,
    NOTE_ON,
    ROLE_CLICK,
    ROLE_DECREMENT,
    ROLE_INCREMENT,
    ROLES,
    TRIGGER_KINDS,
    MacroDefinition,
)


def _err(errors: List[str], path: str, msg: str) -> None:
    errors.append(f"{path}: {msg}")


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def validate_trigger(trig: Dict[str, Any], path: str = "/trigger") -> List[str]:
    """Check a trigger document (``{"type": ..., "channel": ...}``)."""
    errors: List[str] = []
    if not isinstance(trig, dict):
        _err(errors, path, "required object missing")
        return errors

    kind = trig.get("type")
    if kind not in TRIGGER_KINDS:
        _err(errors, f"{path}/type", "must be 'noteon'|'noteoff'|'controlchange'")
        return errors

    ch = trig.get("channel")
    if ch is not None and (not _is_int(ch) or not (0 <= ch <= 16)):
        _err(errors, f"{path}/channel", "integer 0..16 required when present")

    if kind in (NOTE_ON, NOTE_OFF):
        note = trig.get("note")
        if not _is_int(note) or not (0 <= note <= 127):
            _err(errors, f"{path}/note", "integer 0..127 required for note triggers")
        if trig.get("direction") is not None:
            _err(errors, f"{path}/direction", "only allowed on controlchange triggers")
    elif kind == CONTROL_CHANGE:
        ctrl = trig.get("controller")
        if not _is_int(ctrl) or not (0 <= ctrl <= 127):
            _err(errors, f"{path}/controller", "integer 0..127 required for controlchange triggers")
        direction = trig.get("direction")
        if direction is not None and direction not in DIRECTIONS:
            _err(errors, f"{path}/direction", "must be 'increment'|'decrement'")

    val = trig.get("value")
    if val is not None and (not _is_int(val) or not (0 <= val <= 127)):
        _err(errors, f"{path}/value", "integer 0..127 required when present")
    return errors


def validate_macro(doc: Dict[str, Any]) -> List[str]:
    """Validate one macro document as stored.

    Returns human-readable errors with JSON-pointer-like paths; empty means
    the definition is usable for registration.
    """
    errors: List[str] = []
    if not isinstance(doc, dict):
        _err(errors, "", "must be object")
        return errors
    if not isinstance(doc.get("id"), str) or not doc.get("id"):
        _err(errors, "/id", "required non-empty string")
    for key in ("groupId", "categoryId"):
        if key in doc and doc[key] is not None and not isinstance(doc[key], str):
            _err(errors, f"/{key}", "must be string if present")
    role = doc.get("type")
    if role is not None and role not in ROLES:
        _err(errors, "/type", "must be 'standard'|'encoder-increment'|'encoder-decrement'|'encoder-click'")

    errors.extend(validate_trigger(doc.get("trigger")))

    for key in ("actions", "beforeActions", "afterActions"):
        acts = doc.get(key)
        if acts is None:
            if key == "actions":
                _err(errors, "/actions", "required array")
            continue
        if not isinstance(acts, list):
            _err(errors, f"/{key}", "must be array")
            continue
        for ai, act in enumerate(acts):
            apath = f"/{key}[{ai}]"
            if not isinstance(act, dict):
                _err(errors, apath, "must be object")
                continue
            if not isinstance(act.get("type"), str):
                _err(errors, apath + "/type", "required string")
            if "params" in act and not isinstance(act["params"], dict):
                _err(errors, apath + "/params", "must be object if present")

    timeout = doc.get("timeout")
    if timeout is not None and (not _is_int(timeout) or timeout < 0):
        _err(errors, "/timeout", "integer ≥0 required when present")
    return errors


def validate_group(members: Iterable[MacroDefinition]) -> List[str]:
    """Check the role layout of one activation unit.

    A lone macro is always well formed. A group holds each role at most once,
    and any encoder group needs both increment and decrement faces.
    """
    errors: List[str] = []
    members = list(members)
    if not members:
        _err(errors, "/group", "no members")
        return errors
    for m in members:
        for e in validate_macro(m.to_dict()):
            errors.append(f"/macros/{m.id}{e}")
    if len(members) == 1 and not members[0].group_id:
        return errors

    gid = members[0].group_key
    seen: Dict[str, str] = {}
    for m in members:
        role = m.effective_role
        if role in seen:
            _err(errors, f"/groups/{gid}/{role}", f"held by both {seen[role]} and {m.id}")
        else:
            seen[role] = m.id
    if any(r in seen for r in (ROLE_INCREMENT, ROLE_DECREMENT, ROLE_CLICK)):
        for required in (ROLE_INCREMENT, ROLE_DECREMENT):
            if required not in seen:
                _err(errors, f"/groups/{gid}", f"incomplete encoder group: missing {required}")
    return errors
