"""
A single PCAP-over-IP subscriber.
"""
import socket
import threading
from enum import Enum
from typing import Optional, Tuple

from loguru import logger


class ConnectionState(Enum):
    PENDING = "pending"    # accepted, header not yet sent
    ACTIVE = "active"      # header sent, registered
    REMOVED = "removed"    # write failed or shutdown; terminal


class Connection:
    """
    Wraps an accepted socket with its delivery counters.

    Counters are only updated by the distributor thread.
    """

    def __init__(self, sock: socket.socket, address: Tuple, hostname: Optional[str] = None):
        self.sock = sock
        self.address = address
        self.hostname = hostname
        self.total_packets = 0
        self.total_bytes = 0
        self.state = ConnectionState.PENDING
        self._close_lock = threading.Lock()

    @property
    def peer(self) -> str:
        host = self.hostname or self.address[0]
        if ":" in host:
            host = f"[{host}]"
        return f"{host}:{self.address[1]}"

    def set_write_timeout(self, timeout: Optional[float]):
        self.sock.settimeout(timeout)

    def send(self, data: bytes):
        """Write all of `data`. Raises OSError (incl. socket.timeout) on failure."""
        self.sock.sendall(data)

    def activate(self):
        if self.state is ConnectionState.REMOVED:
            raise RuntimeError(f"connection {self.peer} already removed")
        self.state = ConnectionState.ACTIVE

    def record_delivery(self, length: int):
        self.total_packets += 1
        self.total_bytes += length

    def close(self) -> bool:
        """Close the socket. Returns False if it was already closed."""
        with self._close_lock:
            if self.state is ConnectionState.REMOVED:
                return False
            self.state = ConnectionState.REMOVED
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Peer already gone
            pass
        try:
            self.sock.close()
        except OSError as e:
            logger.error("failed to close connection {}: {}", self.peer, e)
        return True

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.REMOVED

    def stats(self):
        return {
            'peer': self.peer,
            'total_packets': self.total_packets,
            'total_bytes': self.total_bytes,
            'state': self.state.value,
        }

    def __repr__(self):
        return f"Connection({self.peer}, {self.state.value})"
