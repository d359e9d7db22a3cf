import unittest

from switchboard.models import MacroCategory
from switchboard.ordering import ORDER_KEY, OrderingMap
from switchboard.storage import MemoryStorage
from switchboard.store import MACROS_KEY, MacroStore, StoreError


def _doc(mid, cat=None, group=None):
    d = {"id": mid, "name": mid, "trigger": {"type": "noteon", "channel": 1, "note": 1}, "actions": []}
    if cat:
        d["categoryId"] = cat
    if group:
        d["groupId"] = group
    return d


class TestOrderingMap(unittest.TestCase):
    def setUp(self):
        self.storage = MemoryStorage({
            MACROS_KEY: [
                _doc("a"), _doc("b"), _doc("c"),
                _doc("e1", group="enc"), _doc("e2", group="enc"),
                _doc("x", cat="live"),
            ],
            ORDER_KEY: {"default": ["c", "gone", "a"]},
        })
        self.store = MacroStore(self.storage)
        self.store.load()
        self.store.add_category(MacroCategory(id="live", name="Live"))
        self.order = OrderingMap(self.storage)
        self.order.load()

    def test_ordered_keys_listed_then_missing_stale_skipped(self):
        self.assertEqual(self.order.ordered_keys(self.store, "default"), ["c", "a", "b", "enc"])
        self.assertEqual([m.id for m in self.order.ordered_macros(self.store, "default")], ["c", "a", "b", "e1", "e2"])

    def test_reorder_before_after_and_missing_target(self):
        self.assertEqual(self.order.reorder(self.store, "live", "x", None), ["x"])
        self.order._orders.pop("default")
        # Empty list is materialized from membership first
        self.assertEqual(self.order.reorder(self.store, "default", "enc", "a"), ["enc", "a", "b", "c"])
        self.assertEqual(self.order.reorder(self.store, "default", "a", "c", position="after"), ["enc", "b", "c", "a"])
        self.assertEqual(self.order.reorder(self.store, "default", "b", "nowhere"), ["enc", "c", "a", "b"])
        self.assertEqual(self.storage.docs[ORDER_KEY]["default"], ["enc", "c", "a", "b"])
        with self.assertRaises(ValueError):
            self.order.reorder(self.store, "default", "a", "b", position="middle")

    def test_move_group_to_category(self):
        self.order.move_to_category(self.store, "enc", "live", target_key="x")
        self.assertEqual({m.category for m in self.store.group_members("enc")}, {"live"})
        self.assertEqual(self.order.order_for("live"), ["enc", "x"])
        self.assertNotIn("enc", self.order.order_for("default"))
        self.assertEqual(self.order.ordered_keys(self.store, "default"), ["c", "a", "b"])

    def test_move_appends_without_target(self):
        self.order.move_to_category(self.store, "a", "live")
        self.assertEqual(self.order.order_for("live"), ["x", "a"])
        self.assertEqual(self.order.order_for("default"), ["c", "gone"])

    def test_move_unknown_targets_raise(self):
        with self.assertRaises(StoreError):
            self.order.move_to_category(self.store, "nope", "live")
        with self.assertRaises(StoreError):
            self.order.move_to_category(self.store, "a", "nope")

    def test_discard_and_merge(self):
        self.assertTrue(self.order.discard_key("c"))
        self.assertFalse(self.order.discard_key("c"))
        self.order.merge({"live": ["x"], "default": ["b"]})
        self.assertEqual(self.order.as_dict(), {"default": ["b"], "live": ["x"]})
