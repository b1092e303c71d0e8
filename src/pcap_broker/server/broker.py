"""
PCAP-over-IP broker.

Wires the capture process, the stream decoder, the acceptor and the
distributor together, and owns the single shutdown signal they all observe.

Shutdown is triggered by the first of:
- the capture process exiting (any status)
- the capture stream ending
- a fatal decode or accept error
- an operator interrupt (stop(interrupted=True))
"""
import threading
from typing import Optional, Tuple

from loguru import logger

from ..capture.process import CaptureProcess
from ..config import BrokerConfig
from ..exceptions import CaptureFormatError
from ..pcap_loader.exceptions import PcapError
from ..pcap_loader.pcap_stream import PcapStreamReader
from ..pcap_loader.pcap_writer import encode_global_header
from ..models.packet import StreamHeader
from .acceptor import SubscriberAcceptor, ReverseLookup, create_listener
from .distributor import PacketDistributor
from .registry import ConnectionRegistry

# Grace period for the capture process to exit on its own once its stream ended
EXIT_GRACE_SECONDS = 1.0
JOIN_TIMEOUT_SECONDS = 5.0


class PcapBroker:
    """Shares one capture stream with any number of TCP subscribers."""

    def __init__(self, config: BrokerConfig):
        self.config = config.validate()
        self.shutdown = threading.Event()
        self.registry = ConnectionRegistry()
        self.distributor = PacketDistributor(self.registry, self.shutdown)

        self.process: Optional[CaptureProcess] = None
        self.reader: Optional[PcapStreamReader] = None
        self.stream_header: Optional[StreamHeader] = None
        self.acceptor: Optional[SubscriberAcceptor] = None

        self._threads = {}
        self._state_lock = threading.RLock()
        self._stop_reason: Optional[str] = None
        self._interrupted = False
        self._error: Optional[BaseException] = None
        self._finished = False
        self._started = False
        self._exit_code: Optional[int] = None

    @property
    def address(self) -> Tuple:
        """Bound listen address, e.g. ('127.0.0.1', 4242)."""
        if self.acceptor is None:
            raise RuntimeError("Broker not started. Call start() first.")
        return self.acceptor.address

    @property
    def stop_reason(self) -> Optional[str]:
        return self._stop_reason

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def started(self) -> bool:
        """True once every worker thread is running."""
        return self._started

    def start(self):
        """
        Start the capture, read its header and begin serving subscribers.

        Raises:
            CaptureStartError: If the capture command cannot be started
            CaptureFormatError: If the capture output is not a PCAP stream
            ListenError: If the listener cannot be bound
        """
        logger.debug("pcapCommand={}", self.config.command)
        logger.debug("listenAddress={}", self.config.listen_address)

        self.process = CaptureProcess(self.config.command).start()

        try:
            self.reader = PcapStreamReader(self.process.stdout)
            self.stream_header = self.reader.read_header()
            host, port = self.config.listen_host_port
            listener = create_listener(host, port)
        except PcapError as e:
            self._abort_startup()
            raise CaptureFormatError(f"failed to open pcap stream: {e}") from e
        except BaseException:
            # Includes KeyboardInterrupt while blocked on the header
            self._abort_startup()
            raise

        logger.debug(
            "capture stream link_type={} ({}) snaplen={}",
            self.stream_header.link_type,
            self.stream_header.link_type_name,
            self.stream_header.snaplen,
        )

        reverse_lookup = None
        if self.config.reverse_lookup:
            reverse_lookup = ReverseLookup(timeout=self.config.lookup_timeout)

        self.acceptor = SubscriberAcceptor(
            listener,
            self.registry,
            encode_global_header(self.stream_header.link_type, self.config.snaplen),
            self.shutdown,
            reverse_lookup=reverse_lookup,
            write_timeout=self.config.write_timeout,
            poll_interval=self.config.accept_poll_interval,
            on_fatal=lambda e: self.stop("accept failed", error=e),
        )

        self._spawn("distributor", self._distribute)
        self._spawn("capture-supervisor", self._supervise_capture)
        self._spawn("acceptor", self.acceptor.serve_forever)
        self._started = True

        logger.info(
            "PCAP-over-IP server listening on {}. press CTRL-C to exit",
            self.config.listen_address,
        )
        return self

    def _spawn(self, name: str, target):
        thread = threading.Thread(target=target, name=name, daemon=True)
        self._threads[name] = thread
        thread.start()

    def _abort_startup(self):
        if self.process is not None:
            self.process.stop()
            self.process.close_pipes()

    def _supervise_capture(self):
        returncode = self.process.wait()
        if returncode != 0 and not self._interrupted:
            logger.error("capture process exited with status {}", returncode)
        else:
            logger.info("capture process exited with status {}", returncode)

        # Let the decoder drain what the process wrote, so a corrupt tail is
        # reported as such rather than as a plain exit.
        distributor_thread = self._threads.get("distributor")
        if distributor_thread is not None:
            distributor_thread.join(timeout=EXIT_GRACE_SECONDS)
        self.stop(f"capture process exited with status {returncode}")

    def _distribute(self):
        try:
            self.distributor.run(self.reader)
        except PcapError as e:
            if self._interrupted:
                logger.debug("capture stream error during shutdown: {}", e)
            else:
                logger.error("failed to decode capture stream: {}", e)
                self._fail("capture stream corrupt", e)
            return
        except (OSError, ValueError) as e:
            # Pipe closed under the reader during shutdown
            if not self.shutdown.is_set():
                logger.error("failed to read capture stream: {}", e)
                self.stop("capture stream read failed", error=e)
            return
        self.stop("capture stream ended")

    def _fail(self, reason: str, error: BaseException):
        """Record a fatal error, even if shutdown was already under way."""
        with self._state_lock:
            if self._error is None and not self._interrupted:
                self._error = error
        self.stop(reason, error=error)

    def stop(self, reason: str = "stop requested", interrupted: bool = False,
             error: Optional[BaseException] = None):
        """Signal shutdown. Only the first call's reason and error are kept."""
        with self._state_lock:
            if self.shutdown.is_set():
                return
            self._stop_reason = reason
            self._interrupted = interrupted
            self._error = error
            self.shutdown.set()
        logger.debug("shutdown requested: {}", reason)
        # Unblock the accept loop right away
        if self.acceptor is not None:
            self.acceptor.close()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Wait for shutdown, release every resource and return the exit status.

        Returns None if `timeout` expires before shutdown was signaled.
        """
        if not self.shutdown.wait(timeout):
            return None
        return self._cleanup()

    def run(self) -> int:
        self.start()
        return self.wait()

    def _cleanup(self) -> int:
        with self._state_lock:
            if self._finished:
                return self._exit_code
            self._finished = True

        logger.info("PCAP-over-IP server exiting ({})", self._stop_reason)

        if self.acceptor is not None:
            self.acceptor.close()

        grace = 0.0 if self._interrupted else EXIT_GRACE_SECONDS
        returncode = self.process.stop(grace=grace) if self.process else None

        for name in ("acceptor", "distributor"):
            thread = self._threads.get(name)
            if thread is None or thread is threading.current_thread():
                continue
            thread.join(timeout=JOIN_TIMEOUT_SECONDS)
            if thread.is_alive():
                logger.warning("{} thread did not stop within {}s", name, JOIN_TIMEOUT_SECONDS)

        self.registry.close_all()

        distributor_thread = self._threads.get("distributor")
        if self.process is not None:
            if distributor_thread is None or not distributor_thread.is_alive():
                self.process.close_pipes()
            else:
                logger.warning("capture stream still being read, leaving pipe open")

        logger.info(
            "distributed {} packets ({} bytes)",
            self.distributor.packets_distributed,
            self.distributor.bytes_distributed,
        )

        self._exit_code = self._compute_exit_code(returncode)
        return self._exit_code

    def _compute_exit_code(self, returncode: Optional[int]) -> int:
        if self._error is not None:
            return 1
        if self._interrupted:
            return 0
        if returncode is None or returncode == 0:
            return 0
        if returncode > 0:
            return returncode
        # Killed by a signal
        return 1
