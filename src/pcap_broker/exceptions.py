"""
Broker-level errors. Any of these raised during setup is fatal.
"""

class BrokerError(Exception):
    """Base exception for fatal broker errors."""
    pass

class ConfigError(BrokerError):
    """Raised when the broker configuration is invalid."""
    pass

class CaptureStartError(BrokerError):
    """Raised when the capture command cannot be parsed or started."""
    pass

class CaptureFormatError(BrokerError):
    """Raised when the capture command's output is not a PCAP stream."""
    pass

class ListenError(BrokerError):
    """Raised when the PCAP-over-IP listener cannot be bound."""
    pass
