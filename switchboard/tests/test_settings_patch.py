import unittest

from switchboard.models import MacroDefinition
from switchboard.patch_utils import PatchError, apply_patch
from switchboard.settings import SETTINGS_KEY, Settings, load_settings, save_settings
from switchboard.storage import MemoryStorage
from switchboard.validator import validate_macro


class TestSettings(unittest.TestCase):
    def test_defaults_when_missing_or_invalid(self):
        self.assertEqual(load_settings(MemoryStorage()), Settings())
        self.assertEqual(load_settings(MemoryStorage({SETTINGS_KEY: "junk"})), Settings())
        self.assertEqual(load_settings(MemoryStorage({SETTINGS_KEY: {"defaultTimeout": "soon"}})), Settings())

    def test_stored_values_merge_over_defaults(self):
        s = load_settings(MemoryStorage({SETTINGS_KEY: {"enableMacroConflictPrevention": False}}))
        self.assertFalse(s.conflict_prevention)
        self.assertEqual(s.default_timeout_ms, 500)

    def test_save_uses_document_keys(self):
        storage = MemoryStorage()
        save_settings(storage, Settings(macro_trigger_delay_ms=25))
        self.assertEqual(storage.docs[SETTINGS_KEY], {"macroTriggerDelay": 25, "enableMacroConflictPrevention": True, "defaultTimeout": 500})


class TestPatchUtils(unittest.TestCase):
    def setUp(self):
        self.doc = {
            "id": "m1",
            "name": "Play",
            "trigger": {"type": "noteon", "channel": 1, "note": 60},
            "actions": [{"id": "a1", "type": "keypress", "params": {"key": "space"}}],
        }

    def test_apply_patch_changes_note(self):
        patched = apply_patch(self.doc, [{"op": "replace", "path": "/trigger/note", "value": 62}])
        self.assertEqual(patched["trigger"]["note"], 62)
        self.assertEqual(self.doc["trigger"]["note"], 60)
        self.assertEqual(validate_macro(patched), [])
        self.assertEqual(MacroDefinition.from_dict(patched).trigger.note, 62)

    def test_bad_ops_raise_patch_error(self):
        with self.assertRaises(PatchError):
            apply_patch(self.doc, [{"op": "replace", "path": "/nope/deeper", "value": 1}])
        with self.assertRaises(PatchError):
            apply_patch(self.doc, [{"op": "test", "path": "/name", "value": "Stop"}])
        with self.assertRaises(PatchError):
            apply_patch(self.doc, {"op": "remove"})
