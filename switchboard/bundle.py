"""Export/import of the whole macro library as one JSON document."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from switchboard.coordinator import Coordinator, PendingResolution, Resolution
from switchboard.models import MacroCategory, MacroDefinition
from switchboard.store import SwitchboardError
from switchboard.validator import validate_macro


logger = logging.getLogger(__name__)

BUNDLE_VERSION = "1.0"


class BundleError(SwitchboardError):
    pass


@dataclass
class ImportReport:
    imported_macros: List[str] = field(default_factory=list)
    skipped_macros: List[str] = field(default_factory=list)
    invalid_macros: List[str] = field(default_factory=list)
    imported_categories: List[str] = field(default_factory=list)
    skipped_categories: List[str] = field(default_factory=list)
    activated: List[str] = field(default_factory=list)
    skipped_active: List[str] = field(default_factory=list)

    def summary(self) -> str:
        msg = f"Imported {len(self.imported_macros)} new macros"
        if self.skipped_macros:
            msg += f", skipped {len(self.skipped_macros)} existing macros"
        if self.invalid_macros:
            msg += f", rejected {len(self.invalid_macros)} invalid macros"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "importedMacros": list(self.imported_macros),
            "skippedMacros": list(self.skipped_macros),
            "invalidMacros": list(self.invalid_macros),
            "importedCategories": list(self.imported_categories),
            "skippedCategories": list(self.skipped_categories),
            "activated": list(self.activated),
            "skippedActive": list(self.skipped_active),
        }


def export_bundle(coord: Coordinator) -> Dict[str, Any]:
    return {
        "macros": [m.to_dict() for m in coord.store.all()],
        "categories": [c.to_dict() for c in coord.store.categories()],
        "activeMacros": coord.active.ids(),
        "categoryOrders": coord.ordering.as_dict(),
        "version": BUNDLE_VERSION,
    }


async def import_bundle(coord: Coordinator, data: Any) -> ImportReport:
    """Merge a bundle into the library.

    Existing macro and category ids are skipped, category orders are overlaid
    per category, and the bundle's active ids are activated through the
    coordinator. Active ids whose group is already active or collides with an
    active macro count as skipped.
    """
    if not isinstance(data, dict):
        raise BundleError("invalid import data format")
    if not isinstance(data.get("macros"), list):
        raise BundleError("import data does not contain a macros array")
    version = data.get("version")
    if version not in (None, BUNDLE_VERSION):
        logger.warning("importing bundle version %r as %s", version, BUNDLE_VERSION)

    report = ImportReport()

    if isinstance(data.get("categories"), list):
        for raw in data["categories"]:
            if not isinstance(raw, dict) or not isinstance(raw.get("id"), str):
                continue
            if coord.store.get_category(raw["id"]) is not None:
                report.skipped_categories.append(raw["id"])
                continue
            coord.store.add_category(MacroCategory.from_dict(raw))
            report.imported_categories.append(raw["id"])

    fresh: List[MacroDefinition] = []
    seen = set()
    for raw in data["macros"]:
        mid = raw.get("id") if isinstance(raw, dict) else None
        if not isinstance(mid, str):
            report.invalid_macros.append(str(mid))
            continue
        if mid in coord.store or mid in seen:
            report.skipped_macros.append(mid)
            continue
        errors = validate_macro(raw)
        if errors:
            logger.warning("rejecting imported macro %r: %s", mid, "; ".join(errors))
            report.invalid_macros.append(str(mid))
            continue
        seen.add(mid)
        fresh.append(MacroDefinition.from_dict(raw))
    if fresh:
        coord.store.add(fresh)
        report.imported_macros.extend(m.id for m in fresh)

    if isinstance(data.get("categoryOrders"), dict):
        coord.ordering.merge(data["categoryOrders"])

    if isinstance(data.get("activeMacros"), list):
        keys: Dict[str, List[str]] = {}
        for mid in data["activeMacros"]:
            macro = coord.store.get(mid) if isinstance(mid, str) else None
            if macro is None:
                report.skipped_active.append(str(mid))
                continue
            keys.setdefault(macro.group_key, []).append(mid)
        for key, ids in keys.items():
            if coord.is_group_active(key):
                report.skipped_active.extend(ids)
                continue
            outcome = await coord.activate(ids[0])
            if isinstance(outcome, PendingResolution):
                await coord.resolve(outcome, Resolution.CANCEL)
                report.skipped_active.extend(ids)
            elif outcome.ok:
                report.activated.extend(outcome.activated)
            else:
                report.skipped_active.extend(ids)

    logger.info(report.summary())
    return report
