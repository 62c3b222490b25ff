"""
Packet-filter handles.
"""

from .base import CommandResult, FirewallHandle
from .linux_iptables import LinuxIptables

__all__ = [
    "CommandResult",
    "FirewallHandle",
    "LinuxIptables",
]
