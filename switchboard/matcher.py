from __future__ import annotations

from switchboard.models import CONTROL_CHANGE, NOTE_OFF, NOTE_ON, MacroTrigger


def _num(v) -> int:
    # Missing numeric fields compare as 0 throughout
    return int(v) if v is not None else 0


def triggers_match(a: MacroTrigger, b: MacroTrigger) -> bool:
    """Return True when two triggers denote the same physical MIDI event class.

    - kinds must be equal
    - channels must be equal (absent channel counts as channel 0)
    - notes: note numbers equal
    - control change: controllers equal; values only compared when both set,
      so a catch-all CC trigger collides with any value-specific one
    """
    if a.kind != b.kind:
        return False
    if _num(a.channel) != _num(b.channel):
        return False
    if a.kind in (NOTE_ON, NOTE_OFF):
        return _num(a.note) == _num(b.note)
    if a.kind == CONTROL_CHANGE:
        if _num(a.controller) != _num(b.controller):
            return False
        if a.value is not None and b.value is not None:
            return int(a.value) == int(b.value)
        return True
    return False
