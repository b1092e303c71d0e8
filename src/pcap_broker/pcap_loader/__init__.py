"""
PCAP stream decoding and framing.
"""

from .pcap_stream import PcapStreamReader
from .pcap_writer import encode_global_header, encode_record
from .exceptions import (
    PcapError,
    PcapFormatError,
    PcapEOFError,
)

__all__ = [
    'PcapStreamReader',
    'encode_global_header',
    'encode_record',
    'PcapError',
    'PcapFormatError',
    'PcapEOFError',
]
