import unittest

import mido

from switchboard.backend_server import Registry
from switchboard.midi_ports import PortWatcher, accepts, message_to_midi


class TestMessageMapping(unittest.TestCase):
    def test_channels_are_one_based(self):
        cc = message_to_midi(mido.Message("control_change", channel=0, control=10, value=5))
        self.assertEqual(cc, {"type": "controlchange", "channel": 1, "data1": 10, "data2": 5})
        note = message_to_midi(mido.Message("note_on", channel=15, note=60, velocity=100))
        self.assertEqual(note, {"type": "noteon", "channel": 16, "data1": 60, "data2": 100})

    def test_non_trigger_messages_ignored(self):
        self.assertIsNone(message_to_midi(mido.Message("clock")))
        self.assertIsNone(message_to_midi(mido.Message("pitchwheel", pitch=100)))


class TestAccepts(unittest.TestCase):
    def test_cc_requires_exact_value(self):
        cfg = {"midi_type": "controlchange", "midi_channel": 1, "midi_note": 10, "midi_value": 5}
        self.assertTrue(accepts(cfg, {"type": "controlchange", "channel": 1, "data1": 10, "data2": 5}))
        self.assertFalse(accepts(cfg, {"type": "controlchange", "channel": 1, "data1": 10, "data2": 6}))
        self.assertFalse(accepts(cfg, {"type": "controlchange", "channel": 2, "data1": 10, "data2": 5}))
        del cfg["midi_value"]
        self.assertFalse(accepts(cfg, {"type": "controlchange", "channel": 1, "data1": 10, "data2": 5}))

    def test_note_value_optional(self):
        cfg = {"midi_type": "noteon", "midi_channel": 1, "midi_note": 36}
        self.assertTrue(accepts(cfg, {"type": "noteon", "channel": 1, "data1": 36, "data2": 90}))
        self.assertFalse(accepts(cfg, {"type": "noteoff", "channel": 1, "data1": 36, "data2": 0}))

    def test_registry_match_from_mido_message(self):
        reg = Registry()
        reg.register({"id": "kick", "midi_type": "noteon", "midi_channel": 10, "midi_note": 36, "actions": []})
        midi = message_to_midi(mido.Message("note_on", channel=9, note=36, velocity=64))
        self.assertEqual(reg.match(midi), ["kick"])


class TestPortWatcher(unittest.TestCase):
    def test_poll_reports_only_changes(self):
        lists = [["A"], ["A"], ["A", "B"], []]
        seen = []
        w = PortWatcher(seen.append, lister=lambda: lists.pop(0))
        self.assertTrue(w.poll())
        self.assertFalse(w.poll())
        self.assertTrue(w.poll())
        self.assertTrue(w.poll())
        self.assertEqual(seen, [["A"], ["A", "B"], []])

    def test_callback_errors_do_not_stop_polling(self):
        def boom(names):
            raise RuntimeError("ui gone")

        w = PortWatcher(boom, lister=lambda: ["A"])
        with self.assertLogs("switchboard.midi_ports", level="ERROR"):
            self.assertTrue(w.poll())
        self.assertEqual(w.ports, ["A"])
