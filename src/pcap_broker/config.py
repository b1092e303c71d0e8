"""
Broker configuration.
"""
import shlex
from dataclasses import dataclass
from typing import Tuple

from .exceptions import ConfigError
from .models.packet import MAX_SNAPLEN, OUTBOUND_SNAPLEN

DEFAULT_LISTEN_ADDRESS = "localhost:4242"


def parse_listen_address(address: str) -> Tuple[str, int]:
    """
    Split a listen address into (host, port).

    Accepts 'host:port', '[v6addr]:port' and ':port' (all interfaces).

    Raises:
        ConfigError: If the address cannot be parsed
    """
    address = (address or "").strip()
    if address.startswith("["):
        host, sep, port_str = address[1:].partition("]:")
        if not sep:
            raise ConfigError(f"Invalid listen address: {address!r}")
    else:
        host, sep, port_str = address.rpartition(":")
        if not sep:
            raise ConfigError(f"Invalid listen address {address!r}, expected host:port")
        if ":" in host:
            raise ConfigError(f"IPv6 listen address must be bracketed: {address!r}")

    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"Invalid port in listen address: {address!r}")
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range in listen address: {address!r}")

    return host, port


@dataclass
class BrokerConfig:
    """Broker configuration, built once at startup and passed to each component."""
    command: str
    listen_address: str = DEFAULT_LISTEN_ADDRESS
    reverse_lookup: bool = True
    lookup_timeout: float = 0.1
    write_timeout: float = 5.0
    snaplen: int = OUTBOUND_SNAPLEN
    accept_poll_interval: float = 0.5

    def validate(self) -> "BrokerConfig":
        if not self.command or not self.command.strip():
            raise ConfigError("PCAP_COMMAND or --cmd not set, see --help for usage")
        try:
            if not shlex.split(self.command):
                raise ConfigError("Capture command is empty")
        except ValueError as e:
            raise ConfigError(f"Failed to parse capture command: {e}")
        parse_listen_address(self.listen_address)
        if self.lookup_timeout <= 0:
            raise ConfigError("Reverse lookup timeout must be positive")
        if self.write_timeout <= 0:
            raise ConfigError("Write timeout must be positive")
        if self.accept_poll_interval <= 0:
            raise ConfigError("Accept poll interval must be positive")
        if not 0 < self.snaplen <= MAX_SNAPLEN:
            raise ConfigError(f"Snapshot length must be between 1 and {MAX_SNAPLEN}")
        return self

    @property
    def listen_host_port(self) -> Tuple[str, int]:
        return parse_listen_address(self.listen_address)
