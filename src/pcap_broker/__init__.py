"""
pcap-broker - share a single packet capture with many PCAP-over-IP clients.
"""

__version__ = "0.1.0"
