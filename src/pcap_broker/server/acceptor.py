"""
PCAP-over-IP listener: accepts subscribers, sends them the stream header and
registers them with the distributor.
"""
import socket
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Tuple

from loguru import logger

from ..exceptions import ListenError
from .connection import Connection
from .registry import ConnectionRegistry


class ReverseLookup:
    """
    Best-effort reverse DNS that never blocks the caller.

    `lookup_async` reports exactly once: with the hostname, or with None on
    failure or once `timeout` has passed. A lookup still queued at the
    deadline is cancelled.
    """

    def __init__(self, timeout: float = 0.1, max_workers: int = 4):
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="rdns")

    def lookup_async(self, ip: str, callback: Callable[[Optional[str]], None]):
        once = threading.Lock()

        def report(hostname: Optional[str]):
            if once.acquire(blocking=False):
                callback(hostname)

        try:
            future = self._executor.submit(socket.gethostbyaddr, ip)
        except RuntimeError:
            # Executor already shut down
            report(None)
            return

        def expire():
            future.cancel()
            logger.debug("reverse lookup of {} timed out", ip)
            report(None)

        timer = threading.Timer(self.timeout, expire)
        timer.daemon = True

        def done(fut: Future):
            timer.cancel()
            if fut.cancelled():
                return
            try:
                hostname, _, _ = fut.result()
            except OSError as e:
                logger.debug("reverse lookup of {} failed: {}", ip, e)
                hostname = None
            report(hostname or None)

        timer.start()
        future.add_done_callback(done)

    def close(self):
        self._executor.shutdown(wait=False)


def create_listener(host: str, port: int, backlog: int = 128) -> socket.socket:
    """Bind a TCP listening socket. Raises ListenError on failure."""
    try:
        infos = socket.getaddrinfo(
            host or None, port, socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE
        )
    except socket.gaierror as e:
        raise ListenError(f"failed to resolve listen address {host}:{port}: {e}")

    # IPv4 first, so 'localhost' binds 127.0.0.1 where both are available
    infos.sort(key=lambda info: info[0] != socket.AF_INET)

    last_error = None
    for family, socktype, proto, _, sockaddr in infos:
        sock = socket.socket(family, socktype, proto)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(sockaddr)
            sock.listen(backlog)
        except OSError as e:
            last_error = e
            sock.close()
            continue
        return sock

    raise ListenError(f"failed to listen on {host}:{port}: {last_error}")


class SubscriberAcceptor:
    """Accept loop for PCAP-over-IP subscribers."""

    def __init__(
        self,
        listener: socket.socket,
        registry: ConnectionRegistry,
        header: bytes,
        shutdown: threading.Event,
        reverse_lookup: Optional[ReverseLookup] = None,
        write_timeout: Optional[float] = 5.0,
        poll_interval: float = 0.5,
        on_fatal: Optional[Callable[[Exception], None]] = None,
    ):
        self.listener = listener
        self.registry = registry
        self.header = header
        self.shutdown = shutdown
        self.reverse_lookup = reverse_lookup
        self.write_timeout = write_timeout
        self.poll_interval = poll_interval
        self.on_fatal = on_fatal
        self.accepted = 0
        self.rejected = 0
        self._close_lock = threading.Lock()
        self._closed = False

        self.listener.settimeout(poll_interval)

    @property
    def address(self) -> Tuple:
        return self.listener.getsockname()

    def serve_forever(self):
        """Accept connections until shutdown is signaled or the listener is closed."""
        while not self.shutdown.is_set():
            try:
                sock, address = self.listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.shutdown.is_set():
                    break
                logger.error("failed to accept connection: {}", e)
                if self.on_fatal is not None:
                    self.on_fatal(e)
                break

            if self.shutdown.is_set():
                sock.close()
                break

            self.handle(sock, address)

        logger.debug("accept loop finished")

    def handle(self, sock: socket.socket, address: Tuple) -> Optional[Connection]:
        """Initialize one accepted socket. Returns the registered connection, or None."""
        conn = Connection(sock, address)

        try:
            conn.set_write_timeout(self.write_timeout)
            conn.send(self.header)
        except OSError as e:
            logger.error("failed to write pcap header to {}: {}", conn.peer, e)
            self.rejected += 1
            conn.close()
            return None

        conn.activate()
        if not self.registry.add(conn):
            logger.debug("registry closed, dropping {}", conn.peer)
            conn.close()
            return None

        self.accepted += 1
        self._announce(conn)
        return conn

    def _announce(self, conn: Connection):
        """Log the new subscriber, by hostname when the reverse lookup answers in time."""
        if self.reverse_lookup is None:
            logger.info("PCAP-over-IP connection from {}", conn.peer)
            return

        def resolved(hostname: Optional[str]):
            if hostname:
                conn.hostname = hostname
            logger.info("PCAP-over-IP connection from {}", conn.peer)

        self.reverse_lookup.lookup_async(conn.address[0], resolved)

    def close(self):
        """Close the listener. Safe to call multiple times."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.listener.close()
        except OSError as e:
            logger.error("failed to close listener: {}", e)
        if self.reverse_lookup is not None:
            self.reverse_lookup.close()
