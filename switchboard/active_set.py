from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List

from switchboard.storage import CorruptDocument, StoragePort


logger = logging.getLogger(__name__)

ACTIVE_KEY = "activeMacros"


class ActiveSet:
    """Ordered set of macro ids currently registered with the backend.

    Reflects desired/UI state. Written only by the coordinator; ``commit``
    persists the current contents as a plain list.
    """

    def __init__(self, storage: StoragePort) -> None:
        self.storage = storage
        # dict as an insertion-ordered set
        self._ids: Dict[str, None] = {}

    def load(self, known_ids: Iterable[str]) -> List[str]:
        """Load from storage, dropping ids that reference no macro.

        Returns the dropped ids. The cleaned list is written back whenever
        anything had to be dropped.
        """
        known = set(known_ids)
        dirty = False
        try:
            raw = self.storage.read(ACTIVE_KEY)
        except CorruptDocument as e:
            logger.warning("active set unreadable (%s); starting empty", e.reason)
            raw, dirty = [], True
        if raw is None:
            raw = []
        if not isinstance(raw, list):
            logger.warning("active set is not a list; starting empty")
            raw, dirty = [], True
        self._ids = {}
        dropped: List[str] = []
        for mid in raw:
            if not isinstance(mid, str) or mid not in known:
                dropped.append(mid)
                continue
            if mid in self._ids:
                dirty = True
                continue
            self._ids[mid] = None
        if dropped:
            logger.info("dropped %d dangling active ids: %s", len(dropped), dropped)
            dirty = True
        if dirty:
            self.commit()
        return dropped

    def commit(self) -> None:
        self.storage.write(ACTIVE_KEY, list(self._ids))

    def __contains__(self, macro_id: object) -> bool:
        return macro_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def __len__(self) -> int:
        return len(self._ids)

    def ids(self) -> List[str]:
        return list(self._ids)

    def add(self, macro_id: str) -> None:
        self._ids[macro_id] = None

    def discard(self, macro_id: str) -> None:
        self._ids.pop(macro_id, None)

    def all_active(self, macro_ids: Iterable[str]) -> bool:
        return all(mid in self._ids for mid in macro_ids)
