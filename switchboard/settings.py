"""Engine settings persisted under the ``settings`` storage key."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from switchboard.storage import CorruptDocument, StoragePort


logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"


@dataclass
class Settings:
    # Delay the backend waits before firing a macro (ms)
    macro_trigger_delay_ms: int = 0
    conflict_prevention: bool = True
    # Used for after-actions when a macro has none of its own (ms)
    default_timeout_ms: int = 500

    def to_dict(self) -> Dict[str, Any]:
        return {
            "macroTriggerDelay": self.macro_trigger_delay_ms,
            "enableMacroConflictPrevention": self.conflict_prevention,
            "defaultTimeout": self.default_timeout_ms,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Settings":
        base = cls()
        return cls(
            macro_trigger_delay_ms=int(d.get("macroTriggerDelay", base.macro_trigger_delay_ms)),
            conflict_prevention=bool(d.get("enableMacroConflictPrevention", base.conflict_prevention)),
            default_timeout_ms=int(d.get("defaultTimeout", base.default_timeout_ms)),
        )


def load_settings(storage: StoragePort) -> Settings:
    """Stored values merged over defaults; unreadable documents fall back to defaults."""
    try:
        raw = storage.read(SETTINGS_KEY)
    except CorruptDocument as e:
        logger.warning("settings unreadable (%s); using defaults", e.reason)
        raw = None
    if not isinstance(raw, dict):
        return Settings()
    try:
        return Settings.from_dict(raw)
    except (TypeError, ValueError) as e:
        logger.warning("invalid settings (%s); using defaults", e)
        return Settings()


def save_settings(storage: StoragePort, settings: Settings) -> None:
    storage.write(SETTINGS_KEY, settings.to_dict())
