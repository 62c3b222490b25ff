"""
Resolution stages: hostnames, provider ranges and the host network.
"""

from .hostnames import HostResolution, HostResolver
from .host_network import detect_host_network, host_network_for
from .provider import GITHUB_META_URL, ProviderRangeFetcher, ProviderRanges

__all__ = [
    "HostResolver",
    "HostResolution",
    "ProviderRangeFetcher",
    "ProviderRanges",
    "GITHUB_META_URL",
    "detect_host_network",
    "host_network_for",
]
