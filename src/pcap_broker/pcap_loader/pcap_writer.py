"""
PCAP framing for the outbound PCAP-over-IP stream.

Subscribers always get a little-endian, microsecond-resolution libpcap
stream, whatever the byte order and resolution of the capture source.
"""

import struct

from ..models.packet import PacketRecord, OUTBOUND_SNAPLEN

MAGIC_NUMBER = 0xA1B2C3D4
VERSION_MAJOR = 2
VERSION_MINOR = 4

_GLOBAL_HEADER = struct.Struct('<IHHiIII')
_RECORD_HEADER = struct.Struct('<IIII')


def encode_global_header(link_type: int, snaplen: int = OUTBOUND_SNAPLEN) -> bytes:
    """Build the 24-byte global header sent once to every new subscriber."""
    return _GLOBAL_HEADER.pack(
        MAGIC_NUMBER,
        VERSION_MAJOR,
        VERSION_MINOR,
        0,  # thiszone
        0,  # sigfigs
        snaplen,
        link_type,
    )


def encode_record(record: PacketRecord) -> bytes:
    """
    Frame a record as a 16-byte record header followed by its payload.

    Raises:
        ValueError: If the record's lengths are inconsistent with its payload
    """
    if record.captured_length != len(record.data):
        raise ValueError(
            f"capture length {record.captured_length} does not match "
            f"data length {len(record.data)}"
        )
    if record.captured_length > record.original_length:
        raise ValueError(
            f"invalid capture info: capture length {record.captured_length} "
            f"exceeds original length {record.original_length}"
        )
    return _RECORD_HEADER.pack(
        record.ts_sec,
        record.ts_usec,
        record.captured_length,
        record.original_length,
    ) + record.data
