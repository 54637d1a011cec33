import io
import json
import logging
import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import settings
from console_logger import LOG_FORMAT, ConsoleHandler, setup_console_logging


class TestSettings(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.saved_path = settings.SETTINGS_FILE
        settings.SETTINGS_FILE = os.path.join(self.tmpdir.name, "settings.json")

    def tearDown(self):
        settings.SETTINGS_FILE = self.saved_path
        self.tmpdir.cleanup()

    def test_defaults_without_file(self):
        loaded = settings.load_settings()
        self.assertEqual(loaded, settings.DEFAULT_SETTINGS)
        self.assertIsNot(loaded, settings.DEFAULT_SETTINGS)

    def test_saved_values_merge_over_defaults(self):
        settings.save_settings({"default_game": "mhwilds"})
        loaded = settings.load_settings()
        self.assertEqual(loaded["default_game"], "mhwilds")
        self.assertTrue(loaded["nested_components_in_object_table"])

    def test_broken_file_falls_back_to_defaults(self):
        with open(settings.SETTINGS_FILE, "w") as f:
            f.write("{not json")
        with self.assertLogs("settings", level="ERROR"):
            loaded = settings.load_settings()
        self.assertEqual(loaded["log_level"], "INFO")

    def test_round_trip_json(self):
        settings.save_settings(settings.DEFAULT_SETTINGS)
        with open(settings.SETTINGS_FILE) as f:
            self.assertEqual(json.load(f), settings.DEFAULT_SETTINGS)


class TestConsoleLogging(unittest.TestCase):

    def tearDown(self):
        root = logging.getLogger()
        for handler in root.handlers[:]:
            if isinstance(handler, ConsoleHandler):
                root.removeHandler(handler)

    def test_single_handler_with_format(self):
        stream = io.StringIO()
        setup_console_logging("debug", stream)
        handler = setup_console_logging(logging.WARNING, stream)
        root = logging.getLogger()
        self.assertEqual(sum(isinstance(h, ConsoleHandler) for h in root.handlers), 1)
        self.assertEqual(root.level, logging.WARNING)
        self.assertEqual(handler.formatter._fmt, LOG_FORMAT)

        logging.getLogger("file_handlers.rsz.test").warning("pruned %d", 3)
        self.assertIn("WARNING - pruned 3", stream.getvalue())


if __name__ == "__main__":
    unittest.main()
