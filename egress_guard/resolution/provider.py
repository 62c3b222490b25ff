"""
Provider range fetcher.

Fetches a provider's published CIDR ranges (GitHub's ``/meta`` document by
default). Unlike hostname resolution every failure here is fatal: silently
omitting the ranges would under-protect a named, expected peer.
"""

import os
from ipaddress import IPv4Network, collapse_addresses
from typing import List, Optional, Sequence

import requests
from pydantic import BaseModel

from ..core.errors import ProviderFetchError
from ..core.logging_config import get_logger, log_warning
from ..core.objects import IPV4_CIDR_RE, cidr_sort_key

logger = get_logger(__name__)

GITHUB_META_URL = "https://api.github.com/meta"
REQUIRED_KEYS = ("web", "api", "git")


class ProviderRanges(BaseModel):
    """Validated provider ranges ready for the allow set."""

    ranges: List[str] = []
    raw_count: int = 0
    skipped_ipv6: int = 0
    aggregated: bool = False
    warnings: List[str] = []


class ProviderRangeFetcher:
    """Fetch, validate and aggregate a provider's published IPv4 ranges."""

    def __init__(
        self,
        url: str = GITHUB_META_URL,
        required_keys: Sequence[str] = REQUIRED_KEYS,
        timeout: float = 10.0,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.required_keys = tuple(required_keys)
        self.timeout = timeout
        self.token = token if token is not None else os.environ.get("GITHUB_TOKEN")
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "egress-guard",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch_document(self) -> dict:
        """Download and structurally validate the provider document."""
        logger.info("Fetching provider IP ranges from %s", self.url)
        try:
            response = self.session.get(
                self.url, headers=self._headers(), timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise ProviderFetchError(f"Failed to fetch provider IP ranges: {e}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderFetchError(f"Provider response is not valid JSON: {e}")

        if not isinstance(data, dict):
            raise ProviderFetchError("Provider response must be a JSON object")

        missing = [key for key in self.required_keys if key not in data]
        if missing:
            raise ProviderFetchError(
                f"Provider response missing required fields: {', '.join(missing)}"
            )
        for key in self.required_keys:
            if not isinstance(data[key], list):
                raise ProviderFetchError(f"Provider field '{key}' must be a list")

        return data

    def extract_ranges(self, data: dict) -> ProviderRanges:
        """Validate every IPv4 entry of the required keys and aggregate them."""
        result = ProviderRanges()
        networks = set()

        for key in self.required_keys:
            for entry in data[key]:
                if not isinstance(entry, str):
                    raise ProviderFetchError(
                        f"Invalid CIDR range from provider ({key}): {entry!r}"
                    )
                if ":" in entry:
                    # IPv6; the packet filter here is IPv4 only
                    result.skipped_ipv6 += 1
                    continue
                if not IPV4_CIDR_RE.match(entry) or "/" not in entry:
                    raise ProviderFetchError(
                        f"Invalid CIDR range from provider ({key}): {entry}"
                    )
                try:
                    networks.add(IPv4Network(entry, strict=False))
                except ValueError:
                    raise ProviderFetchError(
                        f"Invalid CIDR range from provider ({key}): {entry}"
                    )
                result.raw_count += 1

        if result.skipped_ipv6:
            logger.debug("Skipped %s IPv6 provider ranges", result.skipped_ipv6)

        unaggregated = sorted((str(n) for n in networks), key=cidr_sort_key)
        try:
            result.ranges = [str(n) for n in collapse_addresses(networks)]
            result.aggregated = True
        except (TypeError, ValueError) as e:
            message = f"Range aggregation failed, using unaggregated ranges: {e}"
            result.warnings.append(message)
            log_warning(message, logger)
            result.ranges = unaggregated

        logger.info(
            "Provider ranges: %s published, %s after aggregation",
            result.raw_count,
            len(result.ranges),
        )
        return result

    def fetch(self) -> ProviderRanges:
        """Fetch and validate provider ranges; every failure is fatal."""
        return self.extract_ranges(self.fetch_document())
