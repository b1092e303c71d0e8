"""
Registry of active subscriber connections.
"""
import threading
from typing import Dict, List, Any

from loguru import logger

from .connection import Connection


class ConnectionRegistry:
    """
    Thread-safe set of active connections.

    The acceptor adds, the distributor iterates over snapshots and removes,
    and shutdown empties it. `remove()` only reports success to one caller,
    so a connection is closed exactly once.
    """

    def __init__(self):
        self._connections: Dict[int, Connection] = {}
        self._lock = threading.RLock()
        self._closed = False

    def add(self, conn: Connection) -> bool:
        """Register an active connection. Returns False once the registry is closed."""
        with self._lock:
            if self._closed or conn.is_closed:
                return False
            self._connections[id(conn)] = conn
            return True

    def remove(self, conn: Connection) -> bool:
        """Unregister a connection. Only the caller that actually removed it gets True."""
        with self._lock:
            return self._connections.pop(id(conn), None) is not None

    def snapshot(self) -> List[Connection]:
        """Copy of the current connections, safe to iterate without the lock."""
        with self._lock:
            return list(self._connections.values())

    def close_all(self) -> List[Connection]:
        """Remove and close every connection, and refuse further additions."""
        with self._lock:
            self._closed = True
            connections = list(self._connections.values())
            self._connections.clear()

        for conn in connections:
            logger.info(
                "closing PCAP-over-IP connection {} (packets={}, bytes={})",
                conn.peer, conn.total_packets, conn.total_bytes,
            )
            conn.close()
        return connections

    @property
    def closed(self) -> bool:
        return self._closed

    def stats(self) -> List[Dict[str, Any]]:
        return [conn.stats() for conn in self.snapshot()]

    def __contains__(self, conn: Connection) -> bool:
        with self._lock:
            return id(conn) in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
