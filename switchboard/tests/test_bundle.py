from __future__ import annotations

import pytest

from switchboard.active_set import ACTIVE_KEY
from switchboard.backend import VirtualBackend
from switchboard.bundle import BundleError, export_bundle, import_bundle
from switchboard.coordinator import Coordinator
from switchboard.ordering import ORDER_KEY
from switchboard.storage import MemoryStorage
from switchboard.store import CATEGORIES_KEY, MACROS_KEY


def _note(mid, note, name=None, cat=None):
    d = {
        "id": mid,
        "name": name or mid,
        "trigger": {"type": "noteon", "channel": 1, "note": note},
        "actions": [{"id": "a", "type": "keypress", "params": {"key": "x"}}],
    }
    if cat:
        d["categoryId"] = cat
    return d


def _coord(macros, active=None, orders=None):
    initial = {MACROS_KEY: macros}
    if active is not None:
        initial[ACTIVE_KEY] = active
    if orders is not None:
        initial[ORDER_KEY] = orders
    storage = MemoryStorage(initial)
    return Coordinator.from_storage(storage, VirtualBackend()), storage


def test_export_bundle_shape():
    coord, _ = _coord([_note("a", 1)], active=["a"], orders={"default": ["a"]})
    data = export_bundle(coord)
    assert data["version"] == "1.0"
    assert [m["id"] for m in data["macros"]] == ["a"]
    assert data["categories"][0]["id"] == "default"
    assert data["activeMacros"] == ["a"]
    assert data["categoryOrders"] == {"default": ["a"]}


@pytest.mark.asyncio
async def test_import_skips_existing_ids_without_modifying_them():
    coord, storage = _coord([_note("a", 1, name="stored")])
    bundle = {
        "version": "1.0",
        "macros": [_note("a", 9, name="incoming"), _note("b", 2)],
        "categories": [{"id": "default", "name": "Other"}, {"id": "live", "name": "Live"}],
        "categoryOrders": {"live": ["b"]},
    }
    report = await import_bundle(coord, bundle)
    assert report.imported_macros == ["b"]
    assert report.skipped_macros == ["a"]
    assert report.imported_categories == ["live"]
    assert report.skipped_categories == ["default"]
    assert coord.store.get("a").name == "stored"
    assert coord.store.get("a").trigger.note == 1
    assert [d["id"] for d in storage.docs[MACROS_KEY]] == ["a", "b"]
    assert [c["id"] for c in storage.docs[CATEGORIES_KEY]] == ["default", "live"]
    assert storage.docs[ORDER_KEY]["live"] == ["b"]
    assert report.summary() == "Imported 1 new macros, skipped 1 existing macros"


@pytest.mark.asyncio
async def test_import_activates_through_coordinator():
    coord, storage = _coord([_note("a", 1), _note("busy", 5)], active=["a", "busy"])
    bundle = {
        "macros": [_note("b", 2), _note("c", 5), _note("d", 3)],
        "activeMacros": ["a", "b", "c", "ghost"],
    }
    report = await import_bundle(coord, bundle)
    assert report.activated == ["b"]
    # a already active, c collides with busy, ghost unknown
    assert report.skipped_active == ["ghost", "a", "c"]
    assert storage.docs[ACTIVE_KEY] == ["a", "busy", "b"]
    assert coord.pending() == []


@pytest.mark.asyncio
async def test_import_rejects_invalid_records_and_documents():
    coord, _ = _coord([])
    report = await import_bundle(coord, {"macros": [{"id": "x", "trigger": {"type": "noteon"}, "actions": []}, "junk"]})
    assert report.invalid_macros == ["x", "None"]
    assert len(coord.store) == 0
    with pytest.raises(BundleError):
        await import_bundle(coord, {"categories": []})
    with pytest.raises(BundleError):
        await import_bundle(coord, ["not", "a", "bundle"])
