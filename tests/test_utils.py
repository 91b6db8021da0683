import unittest

from stproxy.router.utils import (
    InvalidTargetError,
    build_upstream_url,
    join_path,
    join_query,
    parse_target_url,
    split_request_path,
)


class SplitRequestPathTests(unittest.TestCase):
    def test_split(self):
        self.assertEqual(split_request_path("/a/ping"), ("a", "ping"))
        self.assertEqual(split_request_path("/a/x/y"), ("a", "x/y"))
        self.assertEqual(split_request_path("/a/"), ("a", ""))
        self.assertEqual(split_request_path("/a//x"), ("a", "/x"))

    def test_malformed(self):
        self.assertIsNone(split_request_path("/"))
        self.assertIsNone(split_request_path("/a"))
        self.assertIsNone(split_request_path("//x"))
        self.assertIsNone(split_request_path("a/b"))
        self.assertIsNone(split_request_path(""))
        self.assertIsNone(split_request_path(None))


class ParseTargetUrlTests(unittest.TestCase):
    def test_valid_targets(self):
        parsed = parse_target_url("http://localhost:9000")
        self.assertEqual((parsed.scheme, parsed.hostname, parsed.port), ("http", "localhost", 9000))

        parsed = parse_target_url("https://example.com/api?key=1")
        self.assertEqual(parsed.path, "/api")
        self.assertEqual(parsed.query, "key=1")

    def test_invalid_targets(self):
        for value in ("not a url", "", "   ", "ftp://host", "localhost:9000", "http://", "http://h:99999", None, 9000):
            with self.subTest(value=value):
                with self.assertRaises(InvalidTargetError):
                    parse_target_url(value)


class JoinTests(unittest.TestCase):
    def test_join_path(self):
        self.assertEqual(join_path("", "ping"), "/ping")
        self.assertEqual(join_path("", ""), "/")
        self.assertEqual(join_path("/base", "x"), "/base/x")
        self.assertEqual(join_path("/base/", "/x"), "/base/x")
        self.assertEqual(join_path("/base/", "x"), "/base/x")
        self.assertEqual(join_path("/base", ""), "/base/")

    def test_join_query(self):
        self.assertEqual(join_query("", ""), "")
        self.assertEqual(join_query("a=1", ""), "a=1")
        self.assertEqual(join_query("", "b=2"), "b=2")
        self.assertEqual(join_query("a=1", "b=2"), "a=1&b=2")

    def test_build_upstream_url(self):
        target = parse_target_url("http://backend:9000/base?k=v")
        self.assertEqual(build_upstream_url(target, "x/y", "q=1"), "http://backend:9000/base/x/y?k=v&q=1")
        self.assertEqual(
            build_upstream_url(parse_target_url("https://h"), "ws", scheme="wss"),
            "wss://h/ws",
        )


if __name__ == "__main__":
    unittest.main()
