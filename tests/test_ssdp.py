"""Tests for SSDP message building and the advertisement session"""

import unittest

from stproxy.discovery import ssdp


class FakeTransport:
    def __init__(self):
        self.sent: list[tuple[bytes, tuple]] = []
        self._closing = False

    def sendto(self, data, addr):
        self.sent.append((data, addr))

    def is_closing(self):
        return self._closing

    def close(self):
        self._closing = True


ST = "urn:SmartThingsCommunity:device:GenericProxy:1"
USN = "uuid:de8a5619-2603-40d1-9e21-1967952d7f86"
LOCATION = "http://192.168.1.10:8081/"


class MessageTests(unittest.TestCase):
    def test_alive_message(self):
        start, headers = ssdp.parse_message(ssdp.build_alive(ST, USN, LOCATION, "stproxy/1.0", 1800))
        self.assertEqual(start, "NOTIFY * HTTP/1.1")
        self.assertEqual(headers["HOST"], "239.255.255.250:1900")
        self.assertEqual(headers["NT"], ST)
        self.assertEqual(headers["NTS"], "ssdp:alive")
        self.assertEqual(headers["USN"], USN)
        self.assertEqual(headers["LOCATION"], LOCATION)
        self.assertEqual(headers["SERVER"], "stproxy/1.0")
        self.assertEqual(headers["CACHE-CONTROL"], "max-age=1800")

    def test_alive_without_server_header(self):
        _, headers = ssdp.parse_message(ssdp.build_alive(ST, USN, LOCATION, "", 60))
        self.assertNotIn("SERVER", headers)

    def test_byebye_message(self):
        data = ssdp.build_byebye(ST, USN)
        self.assertTrue(data.endswith(b"\r\n\r\n"))
        start, headers = ssdp.parse_message(data)
        self.assertEqual(start, "NOTIFY * HTTP/1.1")
        self.assertEqual(headers["NTS"], "ssdp:byebye")
        self.assertNotIn("LOCATION", headers)

    def test_search_response(self):
        start, headers = ssdp.parse_message(ssdp.build_search_response(ST, USN, LOCATION, "srv", 1800))
        self.assertEqual(start, "HTTP/1.1 200 OK")
        self.assertEqual(headers["ST"], ST)
        self.assertEqual(headers["EXT"], "")

    def test_parse_rejects_garbage(self):
        self.assertIsNone(ssdp.parse_message(b"\xff\xfe"))
        self.assertIsNone(ssdp.parse_message(b""))

    def test_parse_header_names_case_insensitive(self):
        _, headers = ssdp.parse_message(b"M-SEARCH * HTTP/1.1\r\nst: ssdp:all\r\nMan: \"ssdp:discover\"\r\n\r\n")
        self.assertEqual(headers["ST"], "ssdp:all")
        self.assertEqual(headers["MAN"], '"ssdp:discover"')


class AdvertiserTests(unittest.TestCase):
    def setUp(self):
        self.advertiser = ssdp.Advertiser(ST, USN, LOCATION, "srv", 1800)
        self.transport = FakeTransport()
        self.protocol = ssdp.SSDPProtocol(self.advertiser)
        self.protocol.connection_made(self.transport)

    def _search(self, st: str, man: str = '"ssdp:discover"') -> bytes:
        lines = ["M-SEARCH * HTTP/1.1", "HOST: 239.255.255.250:1900", f"ST: {st}", "MX: 1"]
        if man:
            lines.append(f"MAN: {man}")
        return ("\r\n".join(lines) + "\r\n\r\n").encode()

    def test_alive_goes_to_multicast_group(self):
        self.advertiser.alive()
        data, addr = self.transport.sent[0]
        self.assertEqual(addr, ("239.255.255.250", 1900))
        self.assertIn(b"NTS: ssdp:alive", data)

    def test_bye_sent_once(self):
        self.advertiser.bye()
        self.advertiser.bye()
        self.assertEqual(len(self.transport.sent), 1)
        self.assertIn(b"NTS: ssdp:byebye", self.transport.sent[0][0])

    def test_send_after_close_raises(self):
        self.advertiser.close()
        self.assertTrue(self.advertiser.closed)
        with self.assertRaises(ConnectionError):
            self.advertiser.alive()

    def test_search_for_our_type_is_answered(self):
        self.protocol.datagram_received(self._search(ST), ("192.168.1.20", 50000))
        self.assertEqual(len(self.transport.sent), 1)
        data, addr = self.transport.sent[0]
        self.assertEqual(addr, ("192.168.1.20", 50000))
        self.assertTrue(data.startswith(b"HTTP/1.1 200 OK"))

    def test_search_for_all_is_answered(self):
        self.protocol.datagram_received(self._search("ssdp:all"), ("192.168.1.20", 50000))
        self.assertEqual(len(self.transport.sent), 1)

    def test_other_searches_are_ignored(self):
        self.protocol.datagram_received(self._search("urn:other:device:1"), ("192.168.1.20", 50000))
        self.protocol.datagram_received(self._search(ST, man=""), ("192.168.1.20", 50000))
        self.protocol.datagram_received(ssdp.build_alive(ST, USN, LOCATION, "", 1800), ("192.168.1.20", 1900))
        self.assertEqual(self.transport.sent, [])


class LocalIpTests(unittest.TestCase):
    def test_returns_dotted_quad(self):
        addr = ssdp.local_ip()
        self.assertEqual(len(addr.split(".")), 4)


if __name__ == "__main__":
    unittest.main()
