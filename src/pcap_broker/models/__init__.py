"""
Packet stream data models.
"""

from .packet import (
    StreamHeader,
    PacketRecord,
    link_type_name,
    MAX_SNAPLEN,
    OUTBOUND_SNAPLEN,
)

__all__ = [
    'StreamHeader',
    'PacketRecord',
    'link_type_name',
    'MAX_SNAPLEN',
    'OUTBOUND_SNAPLEN',
]
