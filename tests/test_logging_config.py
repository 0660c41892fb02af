import logging
import tempfile
import unittest
from logging.handlers import RotatingFileHandler
from pathlib import Path
from unittest.mock import patch

from voice_bridge.config.logging_config import LOG_FORMAT, configure_logging


class TestLoggingConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def tearDown(self):
        logger = logging.getLogger("voice_bridge")
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()

    def test_configure_logging(self):
        logger = configure_logging("INFO", self.tmp.name)

        self.assertEqual(logger.name, "voice_bridge")
        self.assertEqual(logger.level, logging.INFO)
        self.assertFalse(logger.propagate)

        # Console first, then the rotating file
        self.assertEqual(len(logger.handlers), 2)
        self.assertIsInstance(logger.handlers[0], logging.StreamHandler)
        self.assertIsInstance(logger.handlers[1], RotatingFileHandler)
        self.assertEqual(logger.handlers[0].formatter._fmt, LOG_FORMAT)
        self.assertEqual(logger.handlers[1].maxBytes, 10 * 1024 * 1024)
        self.assertEqual(logger.handlers[1].backupCount, 5)

    def test_level_from_environment(self):
        with patch.dict("os.environ", {"LOG_LEVEL": "warning"}):
            logger = configure_logging(log_dir=self.tmp.name)
        self.assertEqual(logger.level, logging.WARNING)

    def test_reconfiguring_replaces_handlers(self):
        configure_logging("INFO", self.tmp.name)
        logger = configure_logging("DEBUG", self.tmp.name)

        self.assertEqual(logger.level, logging.DEBUG)
        consoles = [
            h for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        ]
        self.assertEqual(len(consoles), 1)

    def test_log_file_written(self):
        logger = configure_logging("INFO", self.tmp.name)
        logger.info("session rt_abc active")
        for handler in logger.handlers:
            handler.flush()

        content = (Path(self.tmp.name) / "voice_bridge.log").read_text(encoding="utf-8")
        self.assertIn("session rt_abc active", content)

    def test_noisy_loggers_quieted_above_debug(self):
        configure_logging("INFO", self.tmp.name)
        self.assertEqual(logging.getLogger("websockets").level, logging.WARNING)

    def test_unwritable_log_dir_falls_back_to_console(self):
        with patch("voice_bridge.config.logging_config._file_handler", side_effect=OSError("read-only")):
            logger = configure_logging("INFO", self.tmp.name)

        self.assertEqual(len(logger.handlers), 1)
        self.assertNotIsInstance(logger.handlers[0], RotatingFileHandler)


if __name__ == "__main__":
    unittest.main()
