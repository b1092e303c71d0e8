import io
import os
import shlex
import socket
import sys
import tempfile
import unittest
from unittest import mock

from scapy.utils import RawPcapReader

from pcap_broker.config import BrokerConfig
from pcap_broker.exceptions import CaptureFormatError, CaptureStartError
from pcap_broker.pcap_loader import PcapEOFError, encode_global_header
from pcap_broker.server import PcapBroker

from pcap_fixtures import payload, wait_until

FAKE_CAPTURE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fake_capture.py")


def capture_command(*args):
    return " ".join(shlex.quote(part) for part in (sys.executable, FAKE_CAPTURE) + args)


def recv_all(sock):
    chunks = []
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


class PcapBrokerTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.go_file = os.path.join(self.tmpdir.name, "go")
        self.brokers = []
        self.clients = []

    def tearDown(self):
        for client in self.clients:
            client.close()
        for broker in self.brokers:
            broker.stop("test teardown", interrupted=True)
            broker.wait(timeout=10)
        self.tmpdir.cleanup()

    def _broker(self, *capture_args):
        config = BrokerConfig(
            command=capture_command(*capture_args),
            listen_address="127.0.0.1:0",
            reverse_lookup=False,
            write_timeout=2.0,
            accept_poll_interval=0.05,
        )
        broker = PcapBroker(config)
        self.brokers.append(broker)
        return broker

    def _subscribe(self, broker):
        client = socket.create_connection(broker.address[:2], timeout=10)
        self.clients.append(client)
        return client

    def _release_capture(self):
        open(self.go_file, "w").close()

    def test_subscriber_receives_header_then_live_packets(self):
        broker = self._broker("--count", "5", "--link-type", "1", "--wait-for", self.go_file)
        broker.start()
        client = self._subscribe(broker)
        self.assertTrue(wait_until(lambda: len(broker.registry) == 1))

        self._release_capture()
        self.assertEqual(broker.wait(timeout=15), 0)

        stream = recv_all(client)
        self.assertEqual(stream[:24], encode_global_header(1))

        reader = RawPcapReader(io.BytesIO(stream))
        try:
            packets = list(reader)
        finally:
            reader.close()
        self.assertEqual([data for data, _ in packets], [payload(i) for i in range(5)])
        self.assertEqual([meta.wirelen for _, meta in packets], [64] * 5)
        self.assertEqual(packets[2][1].sec, 1700000002)

    def test_header_uses_capture_link_type(self):
        broker = self._broker("--count", "0", "--link-type", "113", "--hold")
        broker.start()
        client = self._subscribe(broker)
        header = client.recv(24)
        self.assertEqual(header, encode_global_header(113, 65535))
        self.assertEqual(broker.stream_header.link_type_name, "DLT_LINUX_SLL")

    def test_capture_exit_shuts_everything_down(self):
        broker = self._broker("--count", "2", "--wait-for", self.go_file)
        broker.start()
        address = broker.address[:2]
        clients = [self._subscribe(broker) for _ in range(3)]
        self.assertTrue(wait_until(lambda: len(broker.registry) == 3))
        connections = broker.registry.snapshot()

        self._release_capture()
        self.assertEqual(broker.wait(timeout=15), 0)

        self.assertEqual(len(broker.registry), 0)
        self.assertTrue(all(conn.is_closed for conn in connections))
        self.assertTrue(all(conn.total_packets == 2 for conn in connections))
        self.assertIsNotNone(broker.process.returncode)
        self.assertEqual(broker.distributor.packets_distributed, 2)
        for client in clients:
            self.assertEqual(len(recv_all(client)), 24 + 2 * (16 + 60))
        with self.assertRaises(ConnectionRefusedError):
            socket.create_connection(address, timeout=1)

    def test_capture_exit_status_is_propagated(self):
        broker = self._broker("--count", "1", "--exit-code", "3")
        broker.start()
        self.assertEqual(broker.wait(timeout=15), 3)

    def test_interrupt_kills_capture(self):
        broker = self._broker("--count", "0", "--hold")
        broker.start()
        self.assertIsNone(broker.wait(timeout=0.2))

        broker.stop("interrupt", interrupted=True)
        self.assertEqual(broker.wait(timeout=15), 0)
        self.assertIsNotNone(broker.process.returncode)
        self.assertEqual(broker.stop_reason, "interrupt")

    def test_stop_is_idempotent(self):
        broker = self._broker("--count", "0", "--hold")
        broker.start()
        broker.stop("first", interrupted=True)
        broker.stop("second")
        self.assertEqual(broker.wait(timeout=15), 0)
        self.assertEqual(broker.wait(timeout=15), 0)
        self.assertEqual(broker.stop_reason, "first")

    def test_truncated_stream_is_fatal(self):
        # The capture exits right after the partial record, racing the decoder
        broker = self._broker("--count", "1", "--truncate")
        broker.start()
        self.assertEqual(broker.wait(timeout=15), 1)
        self.assertIsInstance(broker.error, PcapEOFError)

    def test_decode_error_after_capture_exit_is_still_fatal(self):
        broker = self._broker()

        def corrupt():
            raise PcapEOFError("truncated record")
            yield

        broker.reader = corrupt()
        broker.stop("capture process exited with status 0")
        broker._distribute()

        self.assertIsInstance(broker.error, PcapEOFError)
        self.assertEqual(broker._compute_exit_code(0), 1)

    def test_decode_error_after_interrupt_is_ignored(self):
        broker = self._broker()

        def corrupt():
            raise PcapEOFError("truncated record")
            yield

        broker.reader = corrupt()
        broker.stop("received SIGINT", interrupted=True)
        broker._distribute()

        self.assertIsNone(broker.error)
        self.assertEqual(broker._compute_exit_code(-15), 0)

    def test_interrupt_while_reading_header_kills_capture(self):
        broker = self._broker("--count", "0", "--hold")
        with mock.patch(
            "pcap_broker.server.broker.PcapStreamReader.read_header",
            side_effect=KeyboardInterrupt,
        ):
            with self.assertRaises(KeyboardInterrupt):
                broker.start()
        self.assertFalse(broker.started)
        self.assertIsNone(broker.acceptor)
        self.assertIsNotNone(broker.process.returncode)

    def test_malformed_header_is_rejected_before_listening(self):
        broker = self._broker("--bad-magic", "--hold")
        with self.assertRaises(CaptureFormatError):
            broker.start()
        self.assertIsNone(broker.acceptor)
        self.assertIsNotNone(broker.process.returncode)

    def test_unstartable_command(self):
        broker = PcapBroker(BrokerConfig(command="/nonexistent/tcpdump -w -",
                                         listen_address="127.0.0.1:0"))
        with self.assertRaises(CaptureStartError):
            broker.start()


if __name__ == "__main__":
    unittest.main()
