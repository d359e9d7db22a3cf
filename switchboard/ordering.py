from __future__ import annotations

import logging
from typing import Dict, List, Optional

from switchboard.models import MacroDefinition
from switchboard.storage import CorruptDocument, StoragePort
from switchboard.store import MacroStore, StoreError


logger = logging.getLogger(__name__)

ORDER_KEY = "macroOrder"


class OrderingMap:
    """Per-category display order of group keys.

    Advisory only: keys missing from a list are shown after the listed ones
    in storage order, stale keys are skipped. Lists are materialized lazily on
    the first reorder inside a category.
    """

    def __init__(self, storage: StoragePort) -> None:
        self.storage = storage
        self._orders: Dict[str, List[str]] = {}

    def load(self) -> None:
        try:
            raw = self.storage.read(ORDER_KEY)
        except CorruptDocument as e:
            logger.warning("macro order unreadable (%s); starting empty", e.reason)
            self._orders = {}
            self.commit()
            return
        self._orders = {}
        if raw is None:
            return
        if not isinstance(raw, dict):
            logger.warning("macro order is not an object; starting empty")
            self.commit()
            return
        for cat, keys in raw.items():
            if isinstance(keys, list):
                self._orders[str(cat)] = [k for k in keys if isinstance(k, str)]

    def commit(self) -> None:
        self.storage.write(ORDER_KEY, self._orders)

    def as_dict(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._orders.items()}

    def merge(self, incoming: Dict[str, List[str]]) -> None:
        """Overlay per-category lists (incoming wins per category)."""
        for cat, keys in incoming.items():
            if isinstance(keys, list):
                self._orders[str(cat)] = [k for k in keys if isinstance(k, str)]
        self.commit()

    def order_for(self, category_id: str) -> List[str]:
        return list(self._orders.get(category_id, []))

    def ordered_keys(self, store: MacroStore, category_id: str) -> List[str]:
        present = store.category_group_keys(category_id)
        present_set = set(present)
        out = [k for k in self._orders.get(category_id, []) if k in present_set]
        listed = set(out)
        out.extend(k for k in present if k not in listed)
        return out

    def ordered_macros(self, store: MacroStore, category_id: str) -> List[MacroDefinition]:
        out: List[MacroDefinition] = []
        for key in self.ordered_keys(store, category_id):
            out.extend(m for m in store.group_members(key) if m.category == category_id)
        return out

    def discard_key(self, key: str) -> bool:
        changed = False
        for cat, keys in self._orders.items():
            if key in keys:
                self._orders[cat] = [k for k in keys if k != key]
                changed = True
        if changed:
            self.commit()
        return changed

    def _materialize(self, store: MacroStore, category_id: str) -> List[str]:
        current = list(self._orders.get(category_id, []))
        if not current:
            current = store.category_group_keys(category_id)
        return current

    def reorder(self, store: MacroStore, category_id: str, key: str, target_key: Optional[str], position: str = "before") -> List[str]:
        """Move ``key`` before/after ``target_key`` inside one category.

        Unknown target (or none) puts the key at the end.
        """
        if position not in ("before", "after"):
            raise ValueError(f"position must be 'before' or 'after', got {position!r}")
        order = [k for k in self._materialize(store, category_id) if k != key]
        if target_key is not None and target_key in order:
            idx = order.index(target_key)
            order.insert(idx if position == "before" else idx + 1, key)
        else:
            order.append(key)
        self._orders[category_id] = order
        self.commit()
        return list(order)

    def move_to_category(
        self,
        store: MacroStore,
        key: str,
        category_id: str,
        target_key: Optional[str] = None,
        position: str = "before",
    ) -> List[MacroDefinition]:
        """Reassign every member of group ``key`` to ``category_id``.

        With ``target_key`` the key lands at the drop target's position,
        otherwise at the end of the destination order.
        """
        members = store.group_members(key)
        if not members:
            raise StoreError(f"unknown macro or group: {key}")
        if store.get_category(category_id) is None:
            raise StoreError(f"unknown category: {category_id}")
        source = members[0].category
        if source != category_id:
            src_order = self._orders.get(source)
            if src_order and key in src_order:
                self._orders[source] = [k for k in src_order if k != key]
            dest = self._materialize(store, category_id)
            store.set_group_category(key, category_id)
            if key not in dest:
                dest.append(key)
            self._orders[category_id] = dest
            logger.info("moved %s from %s to %s", key, source, category_id)
        if target_key is not None:
            self.reorder(store, category_id, key, target_key, position)
        else:
            self.commit()
        return members

    def drop_category(self, category_id: str) -> None:
        if self._orders.pop(category_id, None) is not None:
            self.commit()
