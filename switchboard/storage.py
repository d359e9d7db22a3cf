"""Persistence port for macro documents.

The engine only needs ``read(key)`` and ``write(key, value)``. Keys used:
``macros``, ``categories``, ``activeMacros``, ``macroOrder``, ``settings``.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class CorruptDocument(Exception):
    """A stored document exists but cannot be parsed."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"{key}: {reason}")
        self.key = key
        self.reason = reason


class StoragePort:
    """Abstract read/write interface used by the store and coordinator."""

    def read(self, key: str) -> Optional[Any]:  # pragma: no cover - interface
        """Return the stored value, None when absent; raise CorruptDocument when unparsable."""
        raise NotImplementedError

    def write(self, key: str, value: Any) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class MemoryStorage(StoragePort):
    """Dict-backed storage for tests and embedding.

    ``writes`` counts writes per key so tests can assert on self-repair.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self.docs: Dict[str, Any] = copy.deepcopy(initial or {})
        self.writes: Dict[str, int] = {}

    def read(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self.docs.get(key))

    def write(self, key: str, value: Any) -> None:
        self.docs[key] = copy.deepcopy(value)
        self.writes[key] = self.writes.get(key, 0) + 1


def _atomic_write_json(path: str, obj: Any) -> None:
    data = json.dumps(obj, ensure_ascii=False, indent=2) + "\n"
    d = os.path.dirname(os.path.abspath(path)) or "."
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", dir=d, text=True)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.unlink(tmp)


class JsonFileStorage(StoragePort):
    """One ``<key>.json`` file per document inside ``data_dir``."""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    def path_for(self, key: str) -> Path:
        return self.data_dir / f"{key}.json"

    def read(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            # Keep the unreadable bytes around for inspection before defaults replace them
            aside = path.with_name(path.name + ".corrupt")
            try:
                os.replace(path, aside)
                logger.warning("moved unreadable %s aside to %s", path, aside)
            except OSError:
                logger.exception("could not move %s aside", path)
            raise CorruptDocument(key, str(e)) from e

    def write(self, key: str, value: Any) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write_json(str(self.path_for(key)), value)
        logger.debug("saved %s", self.path_for(key))
