from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from switchboard.models import CONTROL_CHANGE, NOTE_OFF, NOTE_ON


logger = logging.getLogger(__name__)

# mido message type -> trigger kind
_KINDS = {
    "note_on": NOTE_ON,
    "note_off": NOTE_OFF,
    "control_change": CONTROL_CHANGE,
}


def list_input_ports() -> List[str]:
    """Names of the MIDI input ports currently visible to mido.

    Returns an empty list when the system MIDI stack is unavailable.
    """
    import mido

    try:
        return list(mido.get_input_names())
    except Exception as e:
        # rtmidi raises on headless/sandboxed hosts
        logger.warning("cannot enumerate MIDI inputs: %s", e)
        return []


def open_input(name_filter: Optional[str] = None, callback: Optional[Callable[[Any], None]] = None):
    """Open the first input whose name contains name_filter (or the first input).

    Returns None when no port matches.
    """
    import mido

    names = list_input_ports()
    for name in names:
        if not name_filter or name_filter in name:
            logger.info("opening MIDI input %s", name)
            return mido.open_input(name, callback=callback)
    logger.warning("no MIDI input matching %r among %s", name_filter, names)
    return None


def message_to_midi(msg) -> Optional[Dict[str, Any]]:
    """Map a mido channel message to ``{type, channel, data1, data2}``.

    Channels are reported 1-based (1..16) the way registrations store them.
    Non-trigger messages (clock, pitchwheel, sysex...) map to None.
    """
    kind = _KINDS.get(getattr(msg, "type", ""))
    if kind is None:
        return None
    if kind == CONTROL_CHANGE:
        data1, data2 = int(msg.control), int(msg.value)
    else:
        data1, data2 = int(msg.note), int(msg.velocity)
    return {"type": kind, "channel": int(msg.channel) + 1, "data1": data1, "data2": data2}


def accepts(config: Dict[str, Any], midi: Dict[str, Any]) -> bool:
    """True if a registration config should fire for a parsed MIDI message.

    CC registrations need the controller and an exact ``midi_value``; note
    registrations match on note number and on ``midi_value`` only when given.
    """
    if config.get("midi_type") != midi["type"]:
        return False
    if int(config.get("midi_channel", 0)) != midi["channel"]:
        return False
    if int(config.get("midi_note", -1)) != midi["data1"]:
        return False
    value = config.get("midi_value")
    if midi["type"] == CONTROL_CHANGE:
        return value is not None and int(value) == midi["data2"]
    return value is None or int(value) == midi["data2"]


class PortWatcher:
    """Polls the MIDI input list on a daemon thread.

    ``on_change(names)`` runs on the watcher thread, once at start and then
    only when the list differs from the previous poll.
    """

    def __init__(self, on_change: Callable[[List[str]], None], interval: float = 2.0, lister: Callable[[], List[str]] = list_input_ports):
        self.on_change = on_change
        self.interval = float(interval)
        self.lister = lister
        self.ports: Optional[List[str]] = None
        self._t: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def start(self) -> None:
        if self._t and self._t.is_alive():
            return
        self._stop.clear()
        self._t = threading.Thread(target=self._run, daemon=True)
        self._t.start()

    def stop(self) -> None:
        self._stop.set()
        if self._t:
            self._t.join(timeout=self.interval + 1.0)

    def poll(self) -> bool:
        names = self.lister()
        if names == self.ports:
            return False
        self.ports = names
        logger.info("MIDI inputs changed: %s", names)
        try:
            self.on_change(list(names))
        except Exception:
            logger.exception("port change callback failed")
        return True

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll()
            self._stop.wait(self.interval)
