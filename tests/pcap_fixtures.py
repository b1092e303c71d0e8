"""Helpers shared by the test modules: raw pcap bytes and fake sockets."""
import struct
import time


def global_header(link_type=1, snaplen=65535, magic=0xA1B2C3D4, byte_order='<',
                  version=(2, 4)):
    return struct.pack(byte_order + 'IHHiIII', magic, version[0], version[1], 0, 0,
                       snaplen, link_type)


def record(ts_sec, ts_frac, data, wirelen=None, byte_order='<', caplen=None):
    if wirelen is None:
        wirelen = len(data)
    if caplen is None:
        caplen = len(data)
    return struct.pack(byte_order + 'IIII', ts_sec, ts_frac, caplen, wirelen) + data


def payload(index, size=60):
    """Deterministic frame bytes, distinct per index."""
    return bytes((index + i) % 256 for i in range(size))


def wait_until(predicate, timeout=5.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class TrickleStream:
    """Binary stream returning at most `chunk` bytes per read, like a slow pipe."""

    def __init__(self, data, chunk=1):
        self.data = data
        self.chunk = chunk
        self.pos = 0

    def read(self, size=-1):
        if size < 0:
            size = len(self.data) - self.pos
        size = min(size, self.chunk)
        chunk = self.data[self.pos:self.pos + size]
        self.pos += len(chunk)
        return chunk


class FakeSocket:
    """Socket double recording writes; fails every sendall after `fail_after` successes."""

    def __init__(self, fail_after=None, error=BrokenPipeError):
        self.sent = []
        self.fail_after = fail_after
        self.error = error
        self.timeout = None
        self.close_calls = 0
        self.shutdown_calls = 0

    def settimeout(self, timeout):
        self.timeout = timeout

    def sendall(self, data):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise self.error("write failed")
        self.sent.append(bytes(data))

    def shutdown(self, how):
        self.shutdown_calls += 1

    def close(self):
        self.close_calls += 1

    @property
    def data(self):
        return b"".join(self.sent)
