"""Activation coordinator: the only writer of the active set.

Activation of a macro always acts on its whole group (all macros sharing the
group key). Trigger collisions are never resolved silently: ``activate`` and
``activate_category`` hand back a ``PendingResolution`` and the caller resumes
through ``resolve``.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from switchboard.active_set import ActiveSet
from switchboard.backend import ExecutionBackend, build_registration
from switchboard.conflicts import find_group_conflicts, find_internal_conflicts
from switchboard.models import MacroDefinition
from switchboard.ordering import OrderingMap
from switchboard.patch_utils import PatchError, apply_patch
from switchboard.settings import Settings, load_settings
from switchboard.storage import StoragePort
from switchboard.store import MacroStore
from switchboard.validator import validate_group, validate_macro


logger = logging.getLogger(__name__)


class Resolution(str, enum.Enum):
    REPLACE = "replace"
    KEEP_EXISTING = "keep"
    CANCEL = "cancel"
    # Category-internal collisions only: keep the groups of the chosen macros
    KEEP_SELECTED = "selected"


class CategoryMode(str, enum.Enum):
    ADDITIVE = "additive"
    EXCLUSIVE = "exclusive"


class GroupState(str, enum.Enum):
    INACTIVE = "inactive"
    ACTIVATING = "activating"
    ACTIVE = "active"
    PARTIAL = "partial"
    DEACTIVATING = "deactivating"
    PENDING_RESOLUTION = "pending-resolution"


@dataclass
class ActivationResult:
    ok: bool = True
    error: Optional[str] = None
    details: List[str] = field(default_factory=list)
    activated: List[str] = field(default_factory=list)
    deactivated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok}
        if self.error:
            out["error"] = self.error
        for key in ("details", "activated", "deactivated", "failed", "skipped"):
            val = getattr(self, key)
            if val:
                out[key] = list(val)
        return out


@dataclass
class PendingResolution:
    """A stalled activation waiting for the caller's choice.

    ``kind`` is ``macro``, ``category`` or ``category-internal``. ``conflicts``
    are the macros colliding with the candidate groups. Single use.
    """

    token: str
    kind: str
    group_keys: List[str]
    conflicts: List[MacroDefinition]
    macro_id: Optional[str] = None
    category_id: Optional[str] = None
    mode: Optional[CategoryMode] = None
    exclude: List[str] = field(default_factory=list)

    @property
    def conflict_keys(self) -> List[str]:
        return _unique(m.group_key for m in self.conflicts)

    def to_payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "ok": False,
            "pending": True,
            "token": self.token,
            "kind": self.kind,
            "groups": list(self.group_keys),
            "conflicts": [{"id": m.id, "name": m.name, "groupKey": m.group_key, "categoryId": m.category} for m in self.conflicts],
        }
        if self.macro_id:
            out["macroId"] = self.macro_id
        if self.category_id:
            out["categoryId"] = self.category_id
            out["mode"] = self.mode.value if self.mode else None
        return out


Outcome = Union[ActivationResult, PendingResolution]
Listener = Callable[[Dict[str, Any]], None]


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


class Coordinator:
    def __init__(
        self,
        store: MacroStore,
        active: ActiveSet,
        ordering: OrderingMap,
        backend: ExecutionBackend,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.active = active
        self.ordering = ordering
        self.backend = backend
        self.settings = settings or Settings()
        self._locks: Dict[str, asyncio.Lock] = {}
        # Group key -> in-flight transition
        self._busy: Dict[str, GroupState] = {}
        self._pending: Dict[str, PendingResolution] = {}
        self._tokens = itertools.count(1)
        self._listeners: List[Listener] = []

    @classmethod
    def from_storage(cls, storage: StoragePort, backend: ExecutionBackend, settings: Optional[Settings] = None) -> "Coordinator":
        coord = cls(
            MacroStore(storage),
            ActiveSet(storage),
            OrderingMap(storage),
            backend,
            settings or load_settings(storage),
        )
        coord.load()
        return coord

    # --- Loading ---
    def load(self) -> None:
        """Load definitions, order and active ids; prune dangling active ids."""
        self.store.load()
        self.ordering.load()
        self.active.load(self.store.ids())

    async def restore(self) -> ActivationResult:
        """Re-register every active macro with a freshly started backend.

        Members the backend rejects leave the active set.
        """
        self.load()
        update = getattr(self.backend, "update_settings", None)
        if update is not None:
            await update(self.settings)
        result = ActivationResult()
        for key in self._active_group_keys():
            async with self._lock(key):
                members = [m for m in self.store.group_members(key) if m.id in self.active]
                outcomes = await asyncio.gather(*[self._register(m) for m in members], return_exceptions=True)
                for m, ok in zip(members, outcomes):
                    if ok is True:
                        result.activated.append(m.id)
                    else:
                        self.active.discard(m.id)
                        result.failed.append(m.id)
        logger.info("restored %d active macros (%d rejected)", len(result.activated), len(result.failed))
        self._commit("restore", result)
        return result

    # --- Listeners ---
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _commit(self, reason: str, result: ActivationResult) -> None:
        self.active.commit()
        event = {
            "type": "active",
            "ts": time.time(),
            "payload": {"reason": reason, "activeMacros": self.active.ids(), "result": result.to_payload()},
        }
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("active-set listener failed")

    def _commit_partial(self, result: ActivationResult) -> None:
        # Changes made before stalling on a new conflict are persisted now
        if result.activated or result.deactivated:
            self._commit("resolve", result)

    # --- Queries ---
    def active_macros(self) -> List[MacroDefinition]:
        return [m for m in (self.store.get(mid) for mid in self.active) if m is not None]

    def is_active(self, macro_id: str) -> bool:
        return macro_id in self.active

    def is_group_active(self, key: str) -> bool:
        members = self.store.group_members(key)
        return bool(members) and self.active.all_active(m.id for m in members)

    def group_state(self, key: str) -> GroupState:
        if key in self._busy:
            return self._busy[key]
        if any(key in p.group_keys for p in self._pending.values()):
            return GroupState.PENDING_RESOLUTION
        members = self.store.group_members(key)
        count = sum(1 for m in members if m.id in self.active)
        if members and count == len(members):
            return GroupState.ACTIVE
        if count:
            return GroupState.PARTIAL
        return GroupState.INACTIVE

    def is_category_active(self, category_id: str) -> bool:
        """True iff the category has groups and every one is fully active."""
        keys = self.store.category_group_keys(category_id)
        return bool(keys) and all(self.is_group_active(k) for k in keys)

    def preview_conflicts(self, macro_id: str) -> List[MacroDefinition]:
        macro = self.store.get(macro_id)
        if macro is None:
            return []
        return find_group_conflicts(self.store.group_members(macro.group_key), self.active_macros())

    def pending(self) -> List[PendingResolution]:
        return list(self._pending.values())

    def _active_group_keys(self) -> List[str]:
        return _unique(m.group_key for m in self.active_macros())

    # --- Backend primitives ---
    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _settled(self, key: str) -> None:
        """Wait out a transition of this group already holding its lock."""
        lock = self._lock(key)
        if lock.locked():
            async with lock:
                pass

    async def _register(self, macro: MacroDefinition) -> bool:
        try:
            ok = await self.backend.register(build_registration(macro, self.settings))
        except Exception as e:
            logger.warning("register %s failed: %s", macro.id, e)
            return False
        if not ok:
            logger.warning("backend rejected registration of %s", macro.id)
        return bool(ok)

    async def _cancel(self, macro_id: str) -> bool:
        try:
            ok = await self.backend.cancel(macro_id)
        except Exception as e:
            logger.warning("cancel %s failed: %s", macro_id, e)
            return False
        if not ok:
            logger.warning("backend rejected cancel of %s", macro_id)
        return bool(ok)

    async def _activate_group(self, key: str, result: ActivationResult) -> None:
        async with self._lock(key):
            self._busy[key] = GroupState.ACTIVATING
            try:
                members = [m for m in self.store.group_members(key) if m.id not in self.active]
                outcomes = await asyncio.gather(*[self._register(m) for m in members], return_exceptions=True)
                for m, ok in zip(members, outcomes):
                    if ok is True:
                        self.active.add(m.id)
                        result.activated.append(m.id)
                    else:
                        result.failed.append(m.id)
            finally:
                self._busy.pop(key, None)
        logger.info("activated group %s", key)

    async def _deactivate_group(self, key: str, result: ActivationResult) -> None:
        async with self._lock(key):
            self._busy[key] = GroupState.DEACTIVATING
            try:
                members = [m for m in self.store.group_members(key) if m.id in self.active]
                outcomes = await asyncio.gather(*[self._cancel(m.id) for m in members], return_exceptions=True)
                for m, ok in zip(members, outcomes):
                    # Active set tracks desired state; a failed cancel must not leave a ghost entry
                    self.active.discard(m.id)
                    result.deactivated.append(m.id)
                    if ok is not True:
                        result.failed.append(m.id)
            finally:
                self._busy.pop(key, None)
        logger.info("deactivated group %s", key)

    @staticmethod
    def _finish_activation(result: ActivationResult) -> ActivationResult:
        if result.failed and not result.activated:
            result.ok = False
            result.error = "registration"
        return result

    def _new_pending(self, kind: str, group_keys: Sequence[str], conflicts: Sequence[MacroDefinition], **kw: Any) -> PendingResolution:
        p = PendingResolution(token=f"p{next(self._tokens)}", kind=kind, group_keys=list(group_keys), conflicts=list(conflicts), **kw)
        self._pending[p.token] = p
        logger.info("%s activation of %s waiting on %d conflicts", kind, ",".join(p.group_keys), len(p.conflicts))
        return p

    # --- Single macro / group ---
    async def activate(self, macro_id: str) -> Outcome:
        macro = self.store.get(macro_id)
        if macro is None:
            return ActivationResult(ok=False, error="not_found", details=[f"unknown macro: {macro_id}"])
        key = macro.group_key
        members = self.store.group_members(key)
        errors = validate_group(members)
        if errors:
            logger.info("refusing to activate %s: %s", key, "; ".join(errors))
            return ActivationResult(ok=False, error="definition", details=errors)
        await self._settled(key)
        if self.is_group_active(key):
            return ActivationResult(skipped=[key])
        if self.settings.conflict_prevention:
            conflicts = find_group_conflicts(members, self.active_macros())
            if conflicts:
                return self._new_pending("macro", [key], conflicts, macro_id=macro_id)
        result = ActivationResult()
        await self._activate_group(key, result)
        self._commit("activate", result)
        return self._finish_activation(result)

    async def deactivate(self, macro_id: str) -> ActivationResult:
        macro = self.store.get(macro_id)
        if macro is None:
            return ActivationResult(ok=False, error="not_found", details=[f"unknown macro: {macro_id}"])
        result = ActivationResult()
        await self._deactivate_group(macro.group_key, result)
        self._commit("deactivate", result)
        return result

    # --- Categories ---
    async def activate_category(self, category_id: str, mode: Union[CategoryMode, str] = CategoryMode.ADDITIVE) -> Outcome:
        mode = CategoryMode(mode)
        if self.store.get_category(category_id) is None and not self.store.macros_in_category(category_id):
            return ActivationResult(ok=False, error="not_found", details=[f"unknown category: {category_id}"])
        return await self._activate_category(category_id, mode, check_internal=True, replace=False, exclude=())

    async def _activate_category(
        self,
        category_id: str,
        mode: CategoryMode,
        check_internal: bool,
        replace: bool,
        exclude: Iterable[str],
        result: Optional[ActivationResult] = None,
    ) -> Outcome:
        result = result or ActivationResult()
        excluded = set(exclude)
        keys: List[str] = []
        for key in self.ordering.ordered_keys(self.store, category_id):
            if key in excluded:
                continue
            errors = validate_group(self.store.group_members(key))
            if errors:
                logger.warning("skipping group %s in category %s: %s", key, category_id, "; ".join(errors))
                result.skipped.append(key)
                result.details.extend(errors)
                continue
            keys.append(key)
        candidates = [m for k in keys for m in self.store.group_members(k)]
        prevent = self.settings.conflict_prevention

        if prevent and check_internal:
            pairs = find_internal_conflicts(candidates)
            if pairs:
                hits = list({m.id: m for pair in pairs for m in pair}.values())
                self._commit_partial(result)
                return self._new_pending("category-internal", keys, hits, category_id=category_id, mode=mode, exclude=sorted(excluded))

        if mode is CategoryMode.EXCLUSIVE:
            for key in self._active_group_keys():
                await self._deactivate_group(key, result)
            todo = keys
        else:
            todo = [k for k in keys if not self.is_group_active(k)]
            if prevent:
                outside = [m for m in self.active_macros() if m.category != category_id]
                todo_members = [m for k in todo for m in self.store.group_members(k)]
                conflicts = find_group_conflicts(todo_members, outside)
                if conflicts and not replace:
                    self._commit_partial(result)
                    return self._new_pending("category", todo, conflicts, category_id=category_id, mode=mode, exclude=sorted(excluded))
                for key in _unique(m.group_key for m in conflicts):
                    await self._deactivate_group(key, result)
        for key in todo:
            await self._activate_group(key, result)
        self._commit("activate-category", result)
        logger.info("category %s activated (%s): %d macros", category_id, mode.value, len(result.activated))
        return self._finish_activation(result)

    async def deactivate_category(self, category_id: str) -> ActivationResult:
        result = ActivationResult()
        for key in self.store.category_group_keys(category_id):
            if any(m.id in self.active for m in self.store.group_members(key)):
                await self._deactivate_group(key, result)
        self._commit("deactivate-category", result)
        return result

    # --- Conflict resolution ---
    async def resolve(
        self,
        pending: Union[PendingResolution, str],
        resolution: Union[Resolution, str],
        keep: Optional[Iterable[str]] = None,
    ) -> Outcome:
        token = pending.token if isinstance(pending, PendingResolution) else pending
        p = self._pending.get(token)
        if p is None:
            return ActivationResult(ok=False, error="stale", details=[f"no pending resolution {token}"])
        try:
            resolution = Resolution(resolution)
        except ValueError:
            return ActivationResult(ok=False, error="invalid_resolution", details=[f"unknown resolution {resolution!r}"])
        if resolution is Resolution.KEEP_SELECTED and p.kind != "category-internal":
            # The pending stays open for a valid choice
            return ActivationResult(ok=False, error="invalid_resolution", details=[f"{resolution.value} not valid for a {p.kind} conflict"])
        del self._pending[token]
        if resolution is Resolution.CANCEL:
            logger.info("pending %s cancelled", token)
            return ActivationResult()
        if resolution is Resolution.KEEP_EXISTING:
            logger.info("pending %s: keeping existing macros", token)
            return ActivationResult(skipped=list(p.group_keys))

        if p.kind == "macro":
            return await self._replace_for_group(p)

        mode = p.mode or CategoryMode.ADDITIVE
        if p.kind == "category":
            return await self._activate_category(p.category_id, mode, check_internal=False, replace=True, exclude=p.exclude)

        # category-internal
        if resolution is Resolution.REPLACE:
            return await self._activate_category(p.category_id, mode, check_internal=False, replace=False, exclude=p.exclude)
        chosen: Set[str] = set()
        for mid in keep or ():
            m = self.store.get(mid)
            if m is not None:
                chosen.add(m.group_key)
        dropped = [k for k in p.conflict_keys if k not in chosen]
        result = ActivationResult()
        for key in dropped:
            if any(m.id in self.active for m in self.store.group_members(key)):
                await self._deactivate_group(key, result)
        return await self._activate_category(
            p.category_id, mode, check_internal=False, replace=False, exclude=[*p.exclude, *dropped], result=result,
        )

    async def _replace_for_group(self, p: PendingResolution) -> ActivationResult:
        key = p.group_keys[0]
        members = self.store.group_members(key)
        if not members:
            return ActivationResult(ok=False, error="not_found", details=[f"group {key} no longer exists"])
        result = ActivationResult()
        # Conflicts against the current active set, not the reported ones
        conflicts = find_group_conflicts(members, self.active_macros())
        for ckey in _unique(m.group_key for m in conflicts):
            await self._deactivate_group(ckey, result)
        await self._activate_group(key, result)
        self._commit("replace", result)
        return self._finish_activation(result)

    def _drop_pending_for(self, key: str) -> None:
        for token in [t for t, p in self._pending.items() if key in p.group_keys]:
            del self._pending[token]

    # --- Definition lifecycle ---
    async def add_macros(self, macros: Iterable[MacroDefinition], activate: bool = False) -> List[Outcome]:
        """Create macros (a whole group at once); optionally activate their groups."""
        added = self.store.add(macros)
        if not activate:
            return []
        outcomes: List[Outcome] = []
        for key in _unique(m.group_key for m in added):
            outcomes.append(await self.activate(self.store.group_members(key)[0].id))
        return outcomes

    async def update_macro(self, macro_id: str, ops: List[Dict[str, Any]]) -> Outcome:
        """Apply a JSON Patch to one definition.

        An active macro is cancelled and registered again so the backend runs
        the edited definition; a new trigger collision comes back as a
        ``PendingResolution`` with the macro left inactive.
        """
        macro = self.store.get(macro_id)
        if macro is None:
            return ActivationResult(ok=False, error="not_found", details=[f"unknown macro: {macro_id}"])
        try:
            patched = apply_patch(macro.to_dict(), ops)
        except PatchError as e:
            return ActivationResult(ok=False, error="patch_apply", details=[str(e)])
        if patched.get("id") != macro_id:
            return ActivationResult(ok=False, error="definition", details=["/id: cannot be changed"])
        errors = validate_macro(patched)
        if errors:
            return ActivationResult(ok=False, error="definition", details=errors)

        edited = MacroDefinition.from_dict(patched)
        old_key = macro.group_key
        was_active = macro_id in self.active
        result = ActivationResult()
        if was_active and edited.group_key != old_key:
            # The old group loses a member; none of it stays active
            await self._deactivate_group(old_key, result)
            result.details.append(f"group {old_key} deactivated: {macro_id} moved to group {edited.group_key}")
        elif was_active:
            async with self._lock(old_key):
                ok = await self._cancel(macro_id)
                self.active.discard(macro_id)
                result.deactivated.append(macro_id)
                if not ok:
                    result.failed.append(macro_id)
        self._drop_pending_for(old_key)
        self.store.update(edited)
        self._commit("update", result)
        if not was_active:
            return result
        outcome = await self.activate(macro_id)
        if isinstance(outcome, ActivationResult):
            outcome.deactivated[:0] = result.deactivated
            outcome.failed[:0] = result.failed
            outcome.details[:0] = result.details
        return outcome

    async def delete_macro(self, macro_id: str) -> ActivationResult:
        """Delete a macro with its whole group, deactivating it first."""
        macro = self.store.get(macro_id)
        if macro is None:
            return ActivationResult(ok=False, error="not_found", details=[f"unknown macro: {macro_id}"])
        key = macro.group_key
        result = ActivationResult()
        await self._deactivate_group(key, result)
        removed = self.store.remove([m.id for m in self.store.group_members(key)])
        self.ordering.discard_key(key)
        self._drop_pending_for(key)
        self._locks.pop(key, None)
        result.details.append(f"deleted {len(removed)} macro(s)")
        self._commit("delete", result)
        return result

    # --- Ordering / categories ---
    def move_to_category(self, key: str, category_id: str, target_key: Optional[str] = None, position: str = "before") -> List[MacroDefinition]:
        """Move a group (with its active state untouched) into another category."""
        return self.ordering.move_to_category(self.store, key, category_id, target_key, position)

    def reorder(self, category_id: str, key: str, target_key: Optional[str], position: str = "before") -> List[str]:
        return self.ordering.reorder(self.store, category_id, key, target_key, position)

    def delete_category(self, category_id: str) -> List[MacroDefinition]:
        """Delete a category; its macros fall back to ``default`` keeping their active state."""
        moved = self.store.delete_category(category_id)
        self.ordering.drop_category(category_id)
        return moved
