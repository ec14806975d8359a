"""
Tests for structured logging functionality
"""

import json
import logging
import sys
import tempfile
import unittest
from pathlib import Path

from maildecode.utils.config import SystemConfig
from maildecode.utils.structured_logging import JSONFormatter, setup_logging


def _record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
        func="test_function"
    )


class TestJSONFormatter(unittest.TestCase):
    """Test cases for JSONFormatter"""

    def setUp(self):
        """Set up test fixtures"""
        self.formatter = JSONFormatter()

    def test_basic_json_format(self):
        """Test that logs are formatted as valid JSON"""
        data = json.loads(self.formatter.format(_record()))

        self.assertIn("timestamp", data)
        self.assertEqual(data["level"], "INFO")
        self.assertEqual(data["logger"], "test_logger")
        self.assertEqual(data["message"], "Test message")
        self.assertEqual(data["module"], "test")
        self.assertEqual(data["function"], "test_function")
        self.assertEqual(data["line"], 42)

    def test_exception_logging(self):
        """Test that exceptions are included in JSON output"""
        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(self.formatter.format(_record("Error occurred", logging.ERROR, exc_info)))

        self.assertIn("ValueError: Test error", data["exception"])
        self.assertIn("Traceback", data["exception"])

    def test_extra_fields(self):
        """Rejection context is merged into the JSON object"""
        record = _record("Rejected message")
        record.extra_fields = {
            "mail_from": "alice@example.com",
            "error_kind": "HeaderSyntaxError",
            "size": 1024,
        }

        data = json.loads(self.formatter.format(record))

        self.assertEqual(data["mail_from"], "alice@example.com")
        self.assertEqual(data["error_kind"], "HeaderSyntaxError")
        self.assertEqual(data["size"], 1024)

    def test_sensitive_field_redaction(self):
        """Test that sensitive fields are redacted regardless of case"""
        record = _record()
        record.extra_fields = {
            "password": "secret123",
            "SMTP_Auth_Login": "user:pass",
            "api_token": "abcd1234",
            "normal_field": "safe_value"
        }

        data = json.loads(self.formatter.format(record))

        self.assertEqual(data["password"], "[REDACTED]")
        self.assertEqual(data["SMTP_Auth_Login"], "[REDACTED]")
        self.assertEqual(data["api_token"], "[REDACTED]")
        self.assertEqual(data["normal_field"], "safe_value")

    def test_non_serializable_values(self):
        record = _record()
        record.extra_fields = {"path": Path("/tmp/x.eml")}
        data = json.loads(self.formatter.format(record))
        self.assertEqual(data["path"], "/tmp/x.eml")

    def test_no_extra_fields(self):
        """Test that formatter works when no extra fields are present"""
        data = json.loads(self.formatter.format(_record()))
        self.assertEqual(data["message"], "Test message")


class TestSetupLogging(unittest.TestCase):

    def setUp(self):
        root = logging.getLogger()
        self._saved_handlers = root.handlers[:]
        self._saved_level = root.level
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        root = logging.getLogger()
        for handler in root.handlers:
            if handler not in self._saved_handlers:
                handler.close()
        root.handlers = self._saved_handlers
        root.setLevel(self._saved_level)
        self.tmpdir.cleanup()

    def test_text_format(self):
        setup_logging(SystemConfig(log_level="DEBUG"))
        root = logging.getLogger()

        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertIs(root.handlers[0].stream, sys.stderr)
        self.assertNotIsInstance(root.handlers[0].formatter, JSONFormatter)

    def test_json_format_with_file(self):
        log_file = Path(self.tmpdir.name) / "nested" / "maildecode.log"
        setup_logging(SystemConfig(log_format="json", log_file=str(log_file)))
        root = logging.getLogger()

        self.assertEqual(len(root.handlers), 2)
        for handler in root.handlers:
            self.assertIsInstance(handler.formatter, JSONFormatter)

        logging.getLogger("maildecode.test").info("written to file")
        for handler in root.handlers:
            handler.flush()
        line = log_file.read_text().strip().splitlines()[-1]
        self.assertEqual(json.loads(line)["message"], "written to file")

    def test_invalid_level_defaults_to_info(self):
        setup_logging(SystemConfig(log_level="LOUD"))
        self.assertEqual(logging.getLogger().level, logging.INFO)


if __name__ == '__main__':
    unittest.main()
