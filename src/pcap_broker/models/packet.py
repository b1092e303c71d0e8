# Packet data model
"""
Packet data models for pcap-broker.

THESE MODELS ARE IMMUTABLE. The stream header is fixed once the capture
source is opened, and a packet record only lives for a single distribution
pass.
"""

from dataclasses import dataclass

from scapy import data as scapy_data

# libpcap refuses records larger than this regardless of the declared snaplen
MAX_SNAPLEN = 262144

# Snapshot length advertised to every subscriber
OUTBOUND_SNAPLEN = 65535


def _dlt_names():
    names = {}
    for name, value in vars(scapy_data).items():
        if name.startswith("DLT_") and isinstance(value, int):
            names.setdefault(value, name)
    return names


_DLT_NAMES = _dlt_names()


def link_type_name(link_type: int) -> str:
    """Symbolic DLT name for a link-layer type code, e.g. 1 -> 'DLT_EN10MB'."""
    return _DLT_NAMES.get(link_type, f"DLT_{link_type}")


@dataclass(frozen=True)
class StreamHeader:
    """
    Global header of a libpcap byte stream.

    Every subscriber receives a header derived from `link_type`; the
    remaining fields describe how the inbound stream is encoded.
    """
    link_type: int
    """libpcap DLT_* constant (e.g., 1 = DLT_EN10MB for Ethernet)"""

    snaplen: int
    """Maximum bytes captured per packet, as declared by the capture source"""

    version_major: int = 2
    version_minor: int = 4

    byte_order: str = '<'
    """'<' or '>' as detected from the magic number"""

    is_nanosecond: bool = False

    @property
    def link_type_name(self) -> str:
        return link_type_name(self.link_type)

    @property
    def max_record_length(self) -> int:
        """Largest captured length accepted before the stream is considered corrupt."""
        return max(self.snaplen, MAX_SNAPLEN)


@dataclass(frozen=True)
class PacketRecord:
    """
    One captured frame: timestamp, lengths and raw payload.

    `ts_frac` is in the unit of the source stream (microseconds, or
    nanoseconds when `is_nanosecond` is set).
    """
    ts_sec: int
    ts_frac: int
    captured_length: int
    original_length: int
    data: bytes
    is_nanosecond: bool = False

    @property
    def ts_usec(self) -> int:
        """Sub-second part of the timestamp in microseconds."""
        if self.is_nanosecond:
            return self.ts_frac // 1000
        return self.ts_frac

    @property
    def timestamp_us(self) -> int:
        return self.ts_sec * 1_000_000 + self.ts_usec

    @property
    def is_truncated(self) -> bool:
        """True if captured length < original length (snaplen limited)."""
        return self.captured_length < self.original_length
