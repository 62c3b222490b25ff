"""
Post-enforcement verification with live probes.

One deterministic pass: a deliberately unlisted endpoint must be unreachable
and every representative allow-listed endpoint must answer. No retries.
"""

from typing import Dict, Optional, Sequence

import requests
from pydantic import BaseModel

from ..core.errors import VerificationError
from ..core.logging_config import get_logger, log_error, log_success

logger = get_logger(__name__)

BLOCKED_PROBE_URL = "https://example.com"
GITHUB_PROBE_URL = "https://api.github.com/zen"
NPM_PROBE_URL = "https://registry.npmjs.org"
ANTHROPIC_PROBE_URL = "https://api.anthropic.com"


def default_allowed_probes(provider_ranges_enabled: bool = True) -> Sequence[str]:
    """Representative allow-listed endpoints for a policy."""
    if provider_ranges_enabled:
        return (GITHUB_PROBE_URL, NPM_PROBE_URL)
    return (NPM_PROBE_URL, ANTHROPIC_PROBE_URL)


class VerificationResult(BaseModel):
    """Outcome of one verification pass; never persisted."""

    blocked_target: str
    blocked_probe_passed: bool
    allowed_probes_passed: Dict[str, bool] = {}

    @property
    def passed(self) -> bool:
        return self.blocked_probe_passed and all(self.allowed_probes_passed.values())

    def failures(self) -> list:
        failures = []
        if not self.blocked_probe_passed:
            failures.append(f"was able to reach {self.blocked_target}")
        failures.extend(
            f"unable to reach {target}"
            for target, ok in self.allowed_probes_passed.items()
            if not ok
        )
        return failures


class Verifier:
    """Issues bounded HTTP probes against blocked and allowed endpoints."""

    def __init__(
        self,
        blocked_url: str = BLOCKED_PROBE_URL,
        allowed_urls: Optional[Sequence[str]] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        self.blocked_url = blocked_url
        self.allowed_urls = tuple(
            allowed_urls if allowed_urls is not None else default_allowed_probes()
        )
        if len(self.allowed_urls) < 2:
            raise ValueError("At least two allowed probe targets are required")
        self.timeout = timeout
        self.session = session or requests.Session()

    def probe(self, url: str) -> bool:
        """True if any HTTP response arrives within the timeout."""
        try:
            response = self.session.get(
                url, timeout=self.timeout, allow_redirects=False
            )
            response.close()
        except requests.RequestException as e:
            logger.debug("Probe to %s failed: %s", url, e)
            return False
        logger.debug("Probe to %s answered with HTTP %s", url, response.status_code)
        return True

    def verify(self) -> VerificationResult:
        logger.info("Running firewall verification tests...")

        reached = self.probe(self.blocked_url)
        blocked_ok = not reached
        self._report(f"Verify {self.blocked_url} is blocked", blocked_ok)

        allowed: Dict[str, bool] = {}
        for url in self.allowed_urls:
            allowed[url] = self.probe(url)
            self._report(f"Verify {url} is allowed", allowed[url])

        return VerificationResult(
            blocked_target=self.blocked_url,
            blocked_probe_passed=blocked_ok,
            allowed_probes_passed=allowed,
        )

    def verify_or_raise(self) -> VerificationResult:
        """
        Run :meth:`verify` and fail on any unexpected result.

        Raises:
            VerificationError: if the blocked probe got through or an allowed
                probe was blocked
        """
        result = self.verify()
        if not result.passed:
            raise VerificationError(
                "Firewall verification failed - " + "; ".join(result.failures()),
                result=result,
            )
        return result

    def _report(self, label: str, ok: bool) -> None:
        if ok:
            log_success(f"{label}: PASSED", logger)
        else:
            log_error(f"{label}: FAILED", logger)
