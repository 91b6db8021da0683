"""Tests for log formatting and the request logger"""

import json
import logging
import os
import sys
import unittest
from unittest.mock import patch

from stproxy.structured_logging import JSONFormatter, RequestLogger, is_json_logging_enabled, setup_logging


class JSONFormatterTests(unittest.TestCase):
    def _record(self, msg="hello %s", args=("world",), exc_info=None, **extra) -> logging.LogRecord:
        record = logging.LogRecord("stproxy.router", logging.INFO, __file__, 42, msg, args, exc_info)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        self.assertEqual(entry["level"], "INFO")
        self.assertEqual(entry["logger"], "stproxy.router")
        self.assertEqual(entry["message"], "hello world")
        self.assertTrue(entry["file"].endswith(":42"))
        self.assertIn("T", entry["timestamp"])
        self.assertNotIn("request_id", entry)

    def test_request_id_and_extras(self):
        entry = json.loads(JSONFormatter().format(self._record(request_id="ab12cd34", prefix="a")))
        self.assertEqual(entry["request_id"], "ab12cd34")
        self.assertEqual(entry["prefix"], "a")

    def test_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = self._record(exc_info=sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        self.assertIn("ValueError: bad", entry["exception"])


class SetupTests(unittest.TestCase):
    def tearDown(self):
        logging.getLogger("stproxy.ssdp").setLevel(logging.NOTSET)

    def test_json_format_detection(self):
        with patch.dict(os.environ, {"STPROXY_LOG_FORMAT": "JSON"}):
            self.assertTrue(is_json_logging_enabled())
        with patch.dict(os.environ, {}, clear=True):
            self.assertFalse(is_json_logging_enabled())

    def test_verbose_enables_ssdp_debug(self):
        root = logging.getLogger()
        saved = (root.level, list(root.handlers))
        try:
            setup_logging(level="WARNING", verbose=True)
            self.assertEqual(root.level, logging.WARNING)
            self.assertEqual(logging.getLogger("stproxy.ssdp").level, logging.DEBUG)
        finally:
            root.handlers = saved[1]
            root.setLevel(saved[0])


class RequestLoggerTests(unittest.TestCase):
    def test_prefix_and_extra(self):
        log = RequestLogger(logging.getLogger("stproxy.router"), "ab12cd34")
        with self.assertLogs("stproxy.router", level="INFO") as logs:
            log.info("Forwarding to %s", "http://backend")
        self.assertEqual(logs.output, ["INFO:stproxy.router:[ab12cd34] Forwarding to http://backend"])
        self.assertEqual(logs.records[0].request_id, "ab12cd34")


if __name__ == "__main__":
    unittest.main()
