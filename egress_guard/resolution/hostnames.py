"""
Name resolution stage: hostnames to single-address allow-list entries.

A host that fails to resolve contributes nothing and produces a warning.
That is safe: an unresolved host is simply unreachable.
"""

from typing import Dict, Iterable, List, Optional

import dns.exception
import dns.resolver
from pydantic import BaseModel

from ..core.logging_config import get_logger, log_warning
from ..core.objects import IPAddress, is_valid_ipv4

logger = get_logger(__name__)


class HostResolution(BaseModel):
    """A-record results for every host considered in one cycle."""

    addresses: Dict[str, List[str]] = {}
    failures: Dict[str, str] = {}
    warnings: List[str] = []

    def host_cidrs(self) -> List[str]:
        """Every resolved address as a /32, sorted and deduplicated."""
        unique = {ip for ips in self.addresses.values() for ip in ips}
        return [
            IPAddress(address=ip).to_cidr()
            for ip in sorted(unique, key=lambda ip: tuple(int(o) for o in ip.split(".")))
        ]

    @property
    def resolved_count(self) -> int:
        return len(self.addresses)


class HostResolver:
    """A-record resolver with a bounded lifetime per lookup."""

    def __init__(
        self, timeout: float = 5.0, resolver: Optional[dns.resolver.Resolver] = None
    ):
        self.timeout = timeout
        self.resolver = resolver or dns.resolver.Resolver()
        self.resolver.lifetime = timeout

    def resolve(self, host: str) -> List[str]:
        """
        Resolve a hostname to its A records.

        Raises:
            dns.exception.DNSException: on NXDOMAIN, empty answer, timeout or
                resolver failure
        """
        answer = self.resolver.resolve(host, "A", lifetime=self.timeout)
        return [str(rdata) for rdata in answer]

    def resolve_all(self, hosts: Iterable[str]) -> HostResolution:
        """Resolve every host, collecting failures instead of raising."""
        result = HostResolution()

        for host in sorted(set(hosts)):
            logger.info("Resolving: %s...", host)
            try:
                raw_addresses = self.resolve(host)
            except dns.resolver.NXDOMAIN:
                self._record_failure(result, host, "NXDOMAIN")
                continue
            except dns.resolver.NoAnswer:
                self._record_failure(result, host, "no A records")
                continue
            except dns.resolver.NoNameservers:
                self._record_failure(result, host, "no nameservers available")
                continue
            except dns.exception.Timeout:
                self._record_failure(result, host, f"timed out after {self.timeout}s")
                continue
            except dns.exception.DNSException as e:
                self._record_failure(result, host, str(e) or e.__class__.__name__)
                continue

            valid = []
            for ip in raw_addresses:
                if not is_valid_ipv4(ip):
                    message = f"Invalid IP from DNS for {host}: {ip!r}"
                    result.warnings.append(message)
                    log_warning(message, logger)
                    continue
                if ip not in valid:
                    valid.append(ip)
                logger.debug("  %s -> %s", host, ip)

            if valid:
                result.addresses[host] = valid
            else:
                self._record_failure(result, host, "no valid addresses")

        return result

    def _record_failure(self, result: HostResolution, host: str, reason: str) -> None:
        message = f"Failed to resolve {host} ({reason})"
        result.failures[host] = reason
        result.warnings.append(message)
        log_warning(message, logger)
