"""
Fan-out of decoded packet records to every registered connection.
"""
import threading
from typing import Iterable

from loguru import logger

from ..models.packet import PacketRecord
from ..pcap_loader.pcap_writer import encode_record
from .connection import Connection
from .registry import ConnectionRegistry


class PacketDistributor:
    """Sequential consumer of the packet stream."""

    def __init__(self, registry: ConnectionRegistry, shutdown: threading.Event):
        self.registry = registry
        self.shutdown = shutdown
        self.packets_distributed = 0
        self.bytes_distributed = 0

    def run(self, records: Iterable[PacketRecord]) -> int:
        """
        Forward every record to the current connections until the stream ends
        or shutdown is signaled. Returns the number of records consumed.
        """
        consumed = 0
        for record in records:
            if self.shutdown.is_set():
                logger.debug("distributor stopping, shutdown signaled")
                break
            self.distribute(record)
            consumed += 1
        return consumed

    def distribute(self, record: PacketRecord) -> int:
        """Write one record to every connection. Returns the number of successful writes."""
        frame = encode_record(record)
        delivered = 0

        for conn in self.registry.snapshot():
            try:
                conn.send(frame)
            except OSError as e:
                logger.error("failed to write packet to connection {}: {}", conn.peer, e)
                self._drop(conn)
                continue
            conn.record_delivery(record.captured_length)
            delivered += 1

        self.packets_distributed += 1
        self.bytes_distributed += record.captured_length
        return delivered

    def _drop(self, conn: Connection):
        if not self.registry.remove(conn):
            return
        logger.info(
            "PCAP-over-IP connection {} removed (packets={}, bytes={})",
            conn.peer, conn.total_packets, conn.total_bytes,
        )
        conn.close()
