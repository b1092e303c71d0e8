"""
Capture subprocess supervision.
"""

from .process import CaptureProcess, split_command

__all__ = [
    'CaptureProcess',
    'split_command',
]
