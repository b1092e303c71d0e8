"""
PCAP stream reader (legacy libpcap format, read sequentially from a pipe).

Reference: https://wiki.wireshark.org/Development/LibpcapFileFormat

Stream structure:
- 24-byte global header
- Repeated packet records:
  - 16-byte packet header
  - Packet data (exactly caplen bytes, no padding)

Unlike a file reader this never seeks: the capture subprocess writes the
stream once and every byte is consumed in order.
"""

import struct
from typing import BinaryIO, Iterator, Dict, Any, Optional

from .exceptions import PcapFormatError, PcapEOFError
from ..models.packet import StreamHeader, PacketRecord

GLOBAL_HEADER_LENGTH = 24
RECORD_HEADER_LENGTH = 16


class PcapStreamReader:
    """
    Decodes a libpcap byte stream into a StreamHeader and PacketRecords.

    Usage:
        reader = PcapStreamReader(process.stdout)
        header = reader.read_header()
        for record in reader:
            ...
    """

    # Magic numbers for format detection
    MAGIC_NUMBER_BIG_ENDIAN = 0xA1B2C3D4        # Standard microsecond
    MAGIC_NUMBER_LITTLE_ENDIAN = 0xD4C3B2A1     # Swapped microsecond
    MAGIC_NUMBER_BIG_ENDIAN_NANO = 0xA1B23C4D   # Nanosecond resolution
    MAGIC_NUMBER_LITTLE_ENDIAN_NANO = 0x4D3CB2A1 # Swapped nanosecond

    SUPPORTED_VERSION_MAJOR = 2

    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.header: Optional[StreamHeader] = None
        self._packet_count = 0
        self._byte_count = 0

    @property
    def packet_count(self) -> int:
        return self._packet_count

    @property
    def byte_count(self) -> int:
        return self._byte_count

    def _read_exact(self, size: int) -> bytes:
        """
        Read exactly `size` bytes.

        Returns fewer bytes only when the stream hits EOF; the caller decides
        whether a short read is a clean end or a truncation.
        """
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = self.stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        if len(chunks) == 1:
            return chunks[0]
        return b"".join(chunks)

    def read_header(self) -> StreamHeader:
        """
        Read and validate the PCAP global header (24 bytes).

        Raises:
            PcapEOFError: If the stream ends before a full header
            PcapFormatError: If the magic number or version is not recognized
        """
        header_data = self._read_exact(GLOBAL_HEADER_LENGTH)
        if len(header_data) < GLOBAL_HEADER_LENGTH:
            raise PcapEOFError(
                f"Capture stream ended after {len(header_data)} bytes, "
                f"before a complete {GLOBAL_HEADER_LENGTH}-byte PCAP header"
            )

        magic_number, = struct.unpack('>I', header_data[0:4])

        if magic_number == self.MAGIC_NUMBER_BIG_ENDIAN:
            byte_order, is_nanosecond = '>', False
        elif magic_number == self.MAGIC_NUMBER_LITTLE_ENDIAN:
            byte_order, is_nanosecond = '<', False
        elif magic_number == self.MAGIC_NUMBER_BIG_ENDIAN_NANO:
            byte_order, is_nanosecond = '>', True
        elif magic_number == self.MAGIC_NUMBER_LITTLE_ENDIAN_NANO:
            byte_order, is_nanosecond = '<', True
        else:
            magic_le, = struct.unpack('<I', header_data[0:4])
            raise PcapFormatError(
                f"Invalid PCAP magic number: 0x{magic_number:08x} (big) / "
                f"0x{magic_le:08x} (little). Expected one of the valid magic numbers."
            )

        # H version_major, H version_minor, I thiszone, I sigfigs, I snaplen, I link_type
        version_major, version_minor, _, _, snaplen, link_type = \
            struct.unpack(byte_order + 'HHIIII', header_data[4:24])

        if version_major != self.SUPPORTED_VERSION_MAJOR:
            raise PcapFormatError(
                f"Unsupported PCAP version {version_major}.{version_minor}"
            )

        self.header = StreamHeader(
            link_type=link_type,
            snaplen=snaplen,
            version_major=version_major,
            version_minor=version_minor,
            byte_order=byte_order,
            is_nanosecond=is_nanosecond,
        )
        return self.header

    def __iter__(self) -> Iterator[PacketRecord]:
        """
        Yield packet records until the stream ends.

        Raises:
            RuntimeError: If read_header() has not been called
            PcapFormatError: If a record header is corrupt
            PcapEOFError: If the stream ends in the middle of a record
        """
        if self.header is None:
            raise RuntimeError("PCAP header not read. Call read_header() first.")

        fmt = self.header.byte_order + 'IIII'
        max_length = self.header.max_record_length
        is_nanosecond = self.header.is_nanosecond

        while True:
            record_header = self._read_exact(RECORD_HEADER_LENGTH)
            if not record_header:
                # Clean end of stream on a record boundary
                return
            if len(record_header) < RECORD_HEADER_LENGTH:
                raise PcapEOFError(
                    f"Packet {self._packet_count + 1} truncated: "
                    f"got {len(record_header)} of {RECORD_HEADER_LENGTH} header bytes"
                )

            ts_sec, ts_frac, caplen, wirelen = struct.unpack(fmt, record_header)

            if caplen > max_length:
                raise PcapFormatError(
                    f"Packet {self._packet_count + 1} has captured length {caplen}, "
                    f"bigger than the maximum of {max_length}"
                )

            packet_data = self._read_exact(caplen)
            if len(packet_data) < caplen:
                raise PcapEOFError(
                    f"Packet {self._packet_count + 1} truncated: "
                    f"expected {caplen} bytes, got {len(packet_data)}"
                )

            self._packet_count += 1
            self._byte_count += caplen

            yield PacketRecord(
                ts_sec=ts_sec,
                ts_frac=ts_frac,
                captured_length=caplen,
                original_length=wirelen,
                data=packet_data,
                is_nanosecond=is_nanosecond,
            )

    def get_session_info(self) -> Dict[str, Any]:
        """Return metadata about the stream decoded so far."""
        header = self.header
        return {
            'format': 'pcap',
            'packet_count': self._packet_count,
            'byte_count': self._byte_count,
            'byte_order': header.byte_order if header else None,
            'is_nanosecond': header.is_nanosecond if header else None,
            'link_type': header.link_type if header else None,
            'snaplen': header.snaplen if header else None,
        }
