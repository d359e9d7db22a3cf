from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from switchboard.models import (
    DEFAULT_CATEGORY_ID,
    MacroCategory,
    MacroDefinition,
    default_category,
    now_iso,
)
from switchboard.storage import CorruptDocument, StoragePort


logger = logging.getLogger(__name__)

MACROS_KEY = "macros"
CATEGORIES_KEY = "categories"


class SwitchboardError(Exception):
    pass


class StoreError(SwitchboardError):
    pass


class MacroStore:
    """Durable macro and category definitions.

    Macros keep storage order. ``_groups`` is a secondary index from group key
    (``groupId`` or the macro's own id) to member ids, rebuilt on load and
    maintained on every mutation.
    """

    def __init__(self, storage: StoragePort) -> None:
        self.storage = storage
        self._macros: Dict[str, MacroDefinition] = {}
        self._groups: Dict[str, List[str]] = {}
        self._categories: Dict[str, MacroCategory] = {}

    # --- Loading ---
    def load(self) -> None:
        self._load_macros()
        self._load_categories()

    def _read_list(self, key: str) -> tuple[list, bool]:
        """Return (items, dirty); dirty means the stored form needs rewriting."""
        try:
            raw = self.storage.read(key)
        except CorruptDocument as e:
            logger.warning("%s unreadable (%s); starting empty", key, e.reason)
            return [], True
        if raw is None:
            return [], False
        if not isinstance(raw, list):
            logger.warning("%s is not a list; starting empty", key)
            return [], True
        return raw, False

    def _load_macros(self) -> None:
        raw, dirty = self._read_list(MACROS_KEY)
        self._macros = {}
        dupes: List[str] = []
        for item in raw:
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                logger.warning("dropping malformed macro record: %r", item)
                dirty = True
                continue
            if item["id"] in self._macros:
                dupes.append(item["id"])
                continue
            self._macros[item["id"]] = MacroDefinition.from_dict(item)
        if dupes:
            logger.warning("duplicate macro ids in storage, keeping first occurrence: %s", ", ".join(dupes))
            dirty = True
        self._rebuild_index()
        if dirty:
            self.save()
            logger.info("rewrote %d de-duplicated macros", len(self._macros))

    def _load_categories(self) -> None:
        raw, dirty = self._read_list(CATEGORIES_KEY)
        if raw == [] and not dirty:
            dirty = True
        self._categories = {}
        for item in raw:
            if not isinstance(item, dict) or not isinstance(item.get("id"), str):
                dirty = True
                continue
            if item["id"] in self._categories:
                dirty = True
                continue
            self._categories[item["id"]] = MacroCategory.from_dict(item)
        if DEFAULT_CATEGORY_ID not in self._categories:
            cats = {DEFAULT_CATEGORY_ID: default_category()}
            cats.update(self._categories)
            self._categories = cats
            dirty = True
        if dirty:
            self.save_categories()

    def _rebuild_index(self) -> None:
        self._groups = {}
        for m in self._macros.values():
            self._groups.setdefault(m.group_key, []).append(m.id)

    def _index_add(self, m: MacroDefinition) -> None:
        self._groups.setdefault(m.group_key, []).append(m.id)

    def _index_remove(self, m: MacroDefinition) -> None:
        key = m.group_key
        if m.id not in self._groups.get(key, []):
            # Record edited in place: its group key no longer says where it is indexed
            key = next((k for k, ids in self._groups.items() if m.id in ids), None)
            if key is None:
                return
        ids = self._groups[key]
        ids.remove(m.id)
        if not ids:
            del self._groups[key]

    # --- Persistence ---
    def save(self) -> None:
        self.storage.write(MACROS_KEY, [m.to_dict() for m in self._macros.values()])

    def save_categories(self) -> None:
        self.storage.write(CATEGORIES_KEY, [c.to_dict() for c in self._categories.values()])

    # --- Macro queries ---
    def __contains__(self, macro_id: object) -> bool:
        return macro_id in self._macros

    def __len__(self) -> int:
        return len(self._macros)

    def all(self) -> List[MacroDefinition]:
        return list(self._macros.values())

    def ids(self) -> List[str]:
        return list(self._macros)

    def get(self, macro_id: str) -> Optional[MacroDefinition]:
        return self._macros.get(macro_id)

    def group_members(self, key: str) -> List[MacroDefinition]:
        return [self._macros[i] for i in self._groups.get(key, [])]

    def group_of(self, macro_id: str) -> List[MacroDefinition]:
        m = self._macros.get(macro_id)
        if m is None:
            return []
        return self.group_members(m.group_key)

    def group_keys(self) -> List[str]:
        return list(self._groups)

    def macros_in_category(self, category_id: str) -> List[MacroDefinition]:
        return [m for m in self._macros.values() if m.category == category_id]

    def category_group_keys(self, category_id: str) -> List[str]:
        """Unique group keys of a category in storage order."""
        keys: List[str] = []
        for m in self._macros.values():
            if m.category == category_id and m.group_key not in keys:
                keys.append(m.group_key)
        return keys

    # --- Macro mutation ---
    def add(self, macros: Iterable[MacroDefinition]) -> List[MacroDefinition]:
        macros = list(macros)
        seen = set()
        for m in macros:
            if m.id in self._macros or m.id in seen:
                raise StoreError(f"macro id already exists: {m.id}")
            seen.add(m.id)
        for m in macros:
            self._macros[m.id] = m
            self._index_add(m)
        self.save()
        return macros

    def update(self, macro: MacroDefinition) -> MacroDefinition:
        old = self._macros.get(macro.id)
        if old is None:
            raise StoreError(f"unknown macro: {macro.id}")
        macro.updated_at = now_iso()
        self._index_remove(old)
        self._macros[macro.id] = macro
        self._index_add(macro)
        self.save()
        return macro

    def remove(self, macro_ids: Iterable[str]) -> List[MacroDefinition]:
        removed: List[MacroDefinition] = []
        for mid in macro_ids:
            m = self._macros.pop(mid, None)
            if m is None:
                continue
            self._index_remove(m)
            removed.append(m)
        if removed:
            self.save()
        return removed

    def set_group_category(self, key: str, category_id: str) -> List[MacroDefinition]:
        members = self.group_members(key)
        for m in members:
            m.category_id = category_id
            m.updated_at = now_iso()
        if members:
            self.save()
        return members

    # --- Categories ---
    def categories(self) -> List[MacroCategory]:
        return list(self._categories.values())

    def get_category(self, category_id: str) -> Optional[MacroCategory]:
        return self._categories.get(category_id)

    def add_category(self, category: MacroCategory) -> MacroCategory:
        if category.id in self._categories:
            raise StoreError(f"category id already exists: {category.id}")
        self._categories[category.id] = category
        self.save_categories()
        return category

    def update_category(self, category_id: str, **changes: Any) -> MacroCategory:
        cat = self._categories.get(category_id)
        if cat is None:
            raise StoreError(f"unknown category: {category_id}")
        for field_name in ("name", "color", "is_expanded"):
            if field_name in changes:
                setattr(cat, field_name, changes[field_name])
        self.save_categories()
        return cat

    def delete_category(self, category_id: str) -> List[MacroDefinition]:
        """Delete a category, moving its macros to ``default``."""
        if category_id == DEFAULT_CATEGORY_ID:
            raise StoreError("the default category cannot be deleted")
        if category_id not in self._categories:
            raise StoreError(f"unknown category: {category_id}")
        moved = self.macros_in_category(category_id)
        for m in moved:
            m.category_id = DEFAULT_CATEGORY_ID
        del self._categories[category_id]
        self.save_categories()
        if moved:
            self.save()
            logger.info("moved %d macros from deleted category %s to default", len(moved), category_id)
        return moved
