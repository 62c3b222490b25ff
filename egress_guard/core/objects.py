"""
Core network objects: addresses, CIDR ranges, ports and hostnames.
"""

import re
from ipaddress import AddressValueError, IPv4Address, IPv4Network, NetmaskValueError
from typing import Union

from pydantic import BaseModel, ConfigDict, field_validator

# Resolver output and provider data must match these before ipaddress parsing
DOTTED_QUAD_RE = re.compile(r"^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}$")
IPV4_CIDR_RE = re.compile(
    r"^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}(/[0-9]{1,2})?$"
)
HOSTNAME_LABEL_RE = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


def is_valid_ipv4(value: str) -> bool:
    """Strict dotted-quad IPv4 check."""
    if not isinstance(value, str) or not DOTTED_QUAD_RE.match(value):
        return False
    try:
        IPv4Address(value)
    except AddressValueError:
        return False
    return True


def normalize_cidr(value: str) -> str:
    """
    Normalize an IPv4 address or CIDR to canonical network form.

    A bare address becomes a /32. Host bits are masked off.

    Raises:
        ValueError: if the value is not an IPv4 address or CIDR
    """
    if not isinstance(value, str):
        raise ValueError(f"Invalid CIDR notation: {value!r}")
    candidate = value.strip()
    if not IPV4_CIDR_RE.match(candidate):
        raise ValueError(f"Invalid CIDR notation: {value}")
    try:
        return str(IPv4Network(candidate, strict=False))
    except (AddressValueError, NetmaskValueError, ValueError):
        raise ValueError(f"Invalid CIDR notation: {value}")


def normalize_hostname(value: str) -> str:
    """
    Lower-case a hostname and check its label syntax.

    Raises:
        ValueError: if the hostname is not syntactically valid
    """
    if not isinstance(value, str):
        raise ValueError(f"Invalid hostname: {value!r}")
    host = value.strip().lower().rstrip(".")
    if not host or len(host) > 253:
        raise ValueError(f"Invalid hostname: {value}")
    labels = host.split(".")
    if len(labels) < 2 or not all(HOSTNAME_LABEL_RE.match(label) for label in labels):
        raise ValueError(f"Invalid hostname: {value}")
    return host


def cidr_sort_key(cidr: str):
    """Order networks by address, then prefix length."""
    network = IPv4Network(cidr, strict=False)
    return (int(network.network_address), network.prefixlen)


class IPAddress(BaseModel):
    """Represents a single IPv4 address."""

    model_config = ConfigDict(frozen=True)

    address: str

    @field_validator("address")
    @classmethod
    def validate_ip(cls, v):
        if not is_valid_ipv4(v):
            raise ValueError(f"Invalid IP address: {v}")
        return v

    def to_cidr(self) -> str:
        """Single-address network for this IP."""
        return f"{self.address}/32"

    def __str__(self) -> str:
        return self.address


class IPRange(BaseModel):
    """Represents an IPv4 CIDR block."""

    model_config = ConfigDict(frozen=True)

    cidr: str

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, v):
        return normalize_cidr(v)

    def contains(self, ip: Union[str, IPAddress]) -> bool:
        """Check if the given IP is within this range."""
        target_ip = str(ip) if isinstance(ip, IPAddress) else ip
        try:
            return IPv4Address(target_ip) in IPv4Network(self.cidr)
        except AddressValueError:
            return False

    def __str__(self) -> str:
        return self.cidr


class Port(BaseModel):
    """Represents a single TCP/UDP port."""

    model_config = ConfigDict(frozen=True)

    number: int

    @field_validator("number", mode="before")
    @classmethod
    def validate_port_number(cls, v):
        if isinstance(v, bool):
            raise ValueError(f"Port number must be an integer, got {v!r}")
        if isinstance(v, str):
            v = v.strip()
            if not v.isdigit():
                raise ValueError(f"Port number must be an integer, got {v!r}")
            v = int(v)
        if not isinstance(v, int):
            raise ValueError(f"Port number must be an integer, got {v!r}")
        if v < 1 or v > 65535:
            raise ValueError(f"Port number must be between 1 and 65535, got {v}")
        return v

    def __str__(self) -> str:
        return str(self.number)
