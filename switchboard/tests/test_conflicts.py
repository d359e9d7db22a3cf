import unittest

from switchboard.conflicts import find_conflicts, find_group_conflicts, find_internal_conflicts
from switchboard.models import MacroDefinition, MacroTrigger


def _cc(mid, controller, channel=1, value=None, group=None, role=None, direction=None):
    return MacroDefinition(
        id=mid,
        name=mid,
        trigger=MacroTrigger("controlchange", channel=channel, controller=controller, value=value, direction=direction),
        group_id=group,
        role=role,
        actions=[{"id": "a", "type": "keypress", "params": {"key": "a"}}],
    )


class TestConflictDetector(unittest.TestCase):
    def setUp(self):
        self.inc = _cc("enc-inc", 10, group="enc", role="encoder-increment", direction="increment")
        self.dec = _cc("enc-dec", 11, group="enc", role="encoder-decrement", direction="decrement")

    def test_encoder_example(self):
        standalone = _cc("solo", 10, value=5)
        hits = find_conflicts(standalone, [self.inc, self.dec])
        self.assertEqual([m.id for m in hits], ["enc-inc"])

    def test_value_specific_increment_does_not_hit_other_value(self):
        inc = _cc("enc-inc", 10, value=1, group="enc", role="encoder-increment")
        self.assertEqual(find_conflicts(_cc("solo", 10, value=5), [inc, self.dec]), [])

    def test_group_members_never_conflict(self):
        a = _cc("a", 20, group="g")
        b = _cc("b", 20, group="g")
        self.assertEqual(find_conflicts(a, [b]), [])
        self.assertEqual(find_conflicts(b, [a]), [])
        self.assertEqual(find_internal_conflicts([a, b]), [])

    def test_same_id_ignored(self):
        a = _cc("a", 20)
        self.assertEqual(find_conflicts(a, [a]), [])

    def test_group_conflicts_union_deduplicated(self):
        active = [_cc("x", 10), _cc("y", 11), _cc("z", 12)]
        hits = find_group_conflicts([self.inc, self.dec], active)
        self.assertEqual([m.id for m in hits], ["x", "y"])
        # Both faces hitting the same catch-all still lists it once
        both = [_cc("i2", 30, group="g2"), _cc("d2", 30, value=2, group="g2")]
        self.assertEqual([m.id for m in find_group_conflicts(both, [_cc("w", 30)])], ["w"])

    def test_internal_conflicts_across_groups(self):
        other = _cc("other", 10, value=3)
        pairs = find_internal_conflicts([self.inc, self.dec, other])
        self.assertEqual([(a.id, b.id) for a, b in pairs], [("enc-inc", "other")])
