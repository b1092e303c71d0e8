import unittest

from pcap_broker.config import BrokerConfig, parse_listen_address
from pcap_broker.exceptions import ConfigError


class ListenAddressTests(unittest.TestCase):
    def test_host_and_port(self):
        self.assertEqual(parse_listen_address("localhost:4242"), ("localhost", 4242))

    def test_all_interfaces(self):
        self.assertEqual(parse_listen_address(":4242"), ("", 4242))

    def test_bracketed_ipv6(self):
        self.assertEqual(parse_listen_address("[::1]:4242"), ("::1", 4242))

    def test_invalid_addresses(self):
        for address in ("localhost", "localhost:http", "::1:4242", "[::1]", "host:70000", ""):
            with self.subTest(address=address):
                with self.assertRaises(ConfigError):
                    parse_listen_address(address)


class BrokerConfigTests(unittest.TestCase):
    def test_defaults(self):
        config = BrokerConfig(command="tcpdump -w -").validate()
        self.assertEqual(config.listen_address, "localhost:4242")
        self.assertEqual(config.snaplen, 65535)
        self.assertTrue(config.reverse_lookup)
        self.assertEqual(config.lookup_timeout, 0.1)
        self.assertEqual(config.listen_host_port, ("localhost", 4242))

    def test_missing_command(self):
        with self.assertRaises(ConfigError):
            BrokerConfig(command="").validate()

    def test_unparsable_command(self):
        with self.assertRaises(ConfigError):
            BrokerConfig(command="tcpdump 'unterminated").validate()

    def test_bad_timeouts(self):
        with self.assertRaises(ConfigError):
            BrokerConfig(command="tcpdump -w -", write_timeout=0).validate()
        with self.assertRaises(ConfigError):
            BrokerConfig(command="tcpdump -w -", lookup_timeout=-1).validate()

    def test_bad_listen_address(self):
        with self.assertRaises(ConfigError):
            BrokerConfig(command="tcpdump -w -", listen_address="nowhere").validate()


if __name__ == "__main__":
    unittest.main()
