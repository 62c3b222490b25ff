"""
Host network detection from the default route.
"""

from ipaddress import IPv4Network

from ..core.errors import HostNetworkError
from ..core.logging_config import get_logger
from ..core.objects import is_valid_ipv4
from ..devices.base import FirewallHandle

logger = get_logger(__name__)

HOST_PREFIX_LENGTH = 24


def host_network_for(gateway: str, prefix_length: int = HOST_PREFIX_LENGTH) -> str:
    """Derive the permitted local subnet from the gateway address."""
    if not is_valid_ipv4(gateway):
        raise HostNetworkError(f"Invalid host IP format: {gateway}")
    return str(IPv4Network(f"{gateway}/{prefix_length}", strict=False))


async def detect_host_network(handle: FirewallHandle) -> str:
    """
    Detect the host network via the default route's gateway.

    Raises:
        HostNetworkError: if there is no default route or the gateway is not
            an IPv4 address
    """
    gateway = await handle.default_gateway()
    if not gateway:
        raise HostNetworkError("Failed to detect host IP from the default route")

    network = host_network_for(gateway)
    logger.info("Host network detected: %s", network)
    return network
