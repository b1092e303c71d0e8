# Custom exceptions

"""
Custom exceptions for PCAP stream decoding.
"""

class PcapError(Exception):
    """Base exception for all PCAP-related errors."""
    pass

class PcapFormatError(PcapError):
    """Raised when the PCAP stream format is invalid or corrupt."""
    pass

class PcapEOFError(PcapFormatError):
    """Raised when the PCAP stream ends in the middle of a header or record."""
    pass
