"""
Capture subprocess supervision.

The capture command writes a PCAP stream on stdout; its stderr is forwarded
to the broker log. The process exiting, for any reason, is what ends the
broker.
"""
import shlex
import subprocess
import threading
from typing import List, Optional

from loguru import logger

from ..exceptions import CaptureStartError


def split_command(command: str) -> List[str]:
    """Split a shell-style command string into argv."""
    try:
        args = shlex.split(command or "")
    except ValueError as e:
        raise CaptureStartError(f"Failed to parse capture command: {e}")
    if not args or not args[0]:
        raise CaptureStartError("Capture command is empty")
    return args


class CaptureProcess:
    """Runs the external capture command and exposes its stdout pipe."""

    def __init__(self, command: str):
        self.command = command
        self.args = split_command(command)
        self._process: Optional[subprocess.Popen] = None
        self._stderr_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._stopped = False

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def stdout(self):
        """Read end of the pipe carrying the PCAP stream."""
        if self._process is None:
            raise RuntimeError("Capture process not started. Call start() first.")
        return self._process.stdout

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    def start(self):
        logger.debug("args={}", self.args)
        try:
            self._process = subprocess.Popen(
                self.args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise CaptureStartError(f"Failed to start command {self.args[0]!r}: {e}")

        logger.debug("started process pid={}", self._process.pid)

        self._stderr_thread = threading.Thread(
            target=self._forward_stderr,
            name="capture-stderr",
            daemon=True,
        )
        self._stderr_thread.start()
        return self

    def _forward_stderr(self):
        """Copy the capture command's stderr into the log, line by line."""
        log = logger.bind(pid=self._process.pid)
        stderr = self._process.stderr
        try:
            for raw_line in iter(stderr.readline, b""):
                line = raw_line.decode("utf-8", errors="replace").rstrip()
                if line:
                    log.info("{}: {}", self.args[0], line)
        except (OSError, ValueError) as e:
            # Pipe closed underneath us during shutdown
            logger.debug("stopped reading capture stderr: {}", e)

    def poll(self) -> Optional[int]:
        return self._process.poll() if self._process else None

    def wait(self, timeout: Optional[float] = None) -> int:
        """Block until the capture process exits and return its status."""
        if self._process is None:
            raise RuntimeError("Capture process not started. Call start() first.")
        return self._process.wait(timeout=timeout)

    def stop(self, grace: float = 0.0, kill_timeout: float = 2.0) -> Optional[int]:
        """
        Make sure the capture process is gone.

        Waits up to `grace` seconds for a natural exit, then terminates, then
        kills. Safe to call multiple times.
        """
        with self._lock:
            if self._process is None:
                return None
            if self._stopped:
                return self._process.returncode
            self._stopped = True

            process = self._process
            if process.poll() is None and grace > 0:
                try:
                    process.wait(timeout=grace)
                except subprocess.TimeoutExpired:
                    pass

            if process.poll() is None:
                logger.debug("terminating capture process pid={}", process.pid)
                process.terminate()
                try:
                    process.wait(timeout=kill_timeout)
                except subprocess.TimeoutExpired:
                    logger.warning("capture process pid={} did not terminate, killing", process.pid)
                    process.kill()
                    process.wait(timeout=kill_timeout)

            if self._stderr_thread is not None:
                self._stderr_thread.join(timeout=kill_timeout)

            return process.returncode

    def close_pipes(self):
        """Close the stdout and stderr pipes. Call once nothing reads them anymore."""
        if self._process is None:
            return
        for pipe, name in ((self._process.stdout, "read pipe"), (self._process.stderr, "stderr pipe")):
            if pipe is None or pipe.closed:
                continue
            try:
                pipe.close()
            except OSError as e:
                logger.error("failed to close {}: {}", name, e)
