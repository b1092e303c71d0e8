"""
PCAP-over-IP server: acceptor, registry, distributor and broker.
"""

from .connection import Connection, ConnectionState
from .registry import ConnectionRegistry
from .distributor import PacketDistributor
from .acceptor import SubscriberAcceptor, ReverseLookup, create_listener
from .broker import PcapBroker

__all__ = [
    'Connection',
    'ConnectionState',
    'ConnectionRegistry',
    'PacketDistributor',
    'SubscriberAcceptor',
    'ReverseLookup',
    'create_listener',
    'PcapBroker',
]
