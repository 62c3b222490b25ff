"""
One enforcement cycle: policy source -> resolution -> compile -> enforce -> verify.

Each stage runs to completion before the next. Hostname resolution and the
provider fetch are independent and read-only, so they run concurrently; both
finish before compilation. Fatal errors propagate as ``EgressGuardError``
subclasses and stop the cycle; recoverable problems accumulate on
``CycleResult.warnings``.
"""

import asyncio
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel

from .core.errors import VerificationError
from .core.logging_config import get_logger, log_error
from .core.policy import (
    BUILTIN_DEFAULTS,
    PolicyDefaults,
    PolicyResolution,
    PolicySpec,
    SecurityConfig,
    resolve_policy_spec,
)
from .core.rules import CompiledRuleSet, ResolvedAllowSet
from .devices.base import FirewallHandle
from .enforcement.compiler import RuleCompiler
from .enforcement.engine import EnforcementEngine, EnforcementResult
from .resolution.host_network import detect_host_network
from .resolution.hostnames import HostResolution, HostResolver
from .resolution.provider import ProviderRangeFetcher, ProviderRanges
from .verification.verifier import VerificationResult, Verifier, default_allowed_probes

logger = get_logger(__name__)


class CycleStatus(str, Enum):
    DISABLED = "disabled"
    PLANNED = "planned"
    ENFORCED = "enforced"


class CycleResult(BaseModel):
    """Everything one enforcement cycle produced, for reporting."""

    status: CycleStatus
    spec: Optional[PolicySpec] = None
    allow_set: Optional[ResolvedAllowSet] = None
    rule_set: Optional[CompiledRuleSet] = None
    enforcement: Optional[EnforcementResult] = None
    verification: Optional[VerificationResult] = None
    warnings: List[str] = []
    default_hosts: List[str] = []
    additional_hosts: List[str] = []
    resolution_failures: Dict[str, str] = {}
    provider_ranges_added: int = 0
    preserved_nat_rules: List[str] = []

    @property
    def domains_considered(self) -> List[str]:
        return self.spec.sorted_hosts() if self.spec else []


class EnforcementPipeline:
    """Runs enforcement cycles for one environment's packet filter."""

    def __init__(
        self,
        handle: FirewallHandle,
        resolver: Optional[HostResolver] = None,
        fetcher: Optional[ProviderRangeFetcher] = None,
        compiler: Optional[RuleCompiler] = None,
        verifier: Optional[Verifier] = None,
        defaults: PolicyDefaults = BUILTIN_DEFAULTS,
        lockdown_on_failure: bool = True,
    ):
        self.handle = handle
        self.resolver = resolver or HostResolver()
        self.fetcher = fetcher or ProviderRangeFetcher()
        self.compiler = compiler or RuleCompiler()
        self.engine = EnforcementEngine(handle, set_name=self.compiler.set_name)
        self.verifier = verifier
        self.defaults = defaults
        self.lockdown_on_failure = lockdown_on_failure

    def resolve_policy(self, config: Optional[SecurityConfig]) -> PolicyResolution:
        return resolve_policy_spec(config, self.defaults)

    async def _fetch_provider_ranges(self, spec: PolicySpec) -> ProviderRanges:
        if not spec.provider_ranges_enabled:
            logger.info("Provider ranges disabled in config")
            return ProviderRanges()
        return await asyncio.to_thread(self.fetcher.fetch)

    async def gather_allow_set(self, spec: PolicySpec):
        """Resolve hosts and fetch provider ranges concurrently."""
        hosts, provider = await asyncio.gather(
            asyncio.to_thread(self.resolver.resolve_all, spec.sorted_hosts()),
            self._fetch_provider_ranges(spec),
        )
        return hosts, provider

    async def plan(self, config: Optional[SecurityConfig]) -> CycleResult:
        """
        Resolve and compile without touching the packet filter.

        Only reads live state (default route, container DNS NAT rules).
        """
        resolution = self.resolve_policy(config)
        if not resolution.is_enabled:
            return CycleResult(status=CycleStatus.DISABLED)

        spec = resolution.spec
        hosts: HostResolution
        provider: ProviderRanges
        hosts, provider = await self.gather_allow_set(spec)

        host_network = await detect_host_network(self.handle)
        preserved = await self.engine.capture_foreign_state()

        allow_set = ResolvedAllowSet.build(
            host_cidrs=hosts.host_cidrs(),
            provider_ranges=provider.ranges,
            literal_cidrs=spec.sorted_cidrs(),
            ports=spec.allowed_ports,
            host_network_cidr=host_network,
        )
        rule_set = self.compiler.compile(allow_set, spec, preserved)

        return CycleResult(
            status=CycleStatus.PLANNED,
            spec=spec,
            allow_set=allow_set,
            rule_set=rule_set,
            warnings=resolution.warnings + hosts.warnings + provider.warnings,
            default_hosts=resolution.default_hosts,
            additional_hosts=resolution.additional_hosts,
            resolution_failures=hosts.failures,
            provider_ranges_added=len(provider.ranges),
            preserved_nat_rules=preserved,
        )

    async def run(
        self,
        config: Optional[SecurityConfig],
        dry_run: bool = False,
        verify: bool = True,
    ) -> CycleResult:
        """
        Run a full enforcement cycle.

        Raises:
            EgressGuardError: on any fatal failure. If verification fails and
                ``lockdown_on_failure`` is set, the environment is locked down
                (fail-closed) before ``VerificationError`` propagates.
        """
        result = await self.plan(config)
        if result.status == CycleStatus.DISABLED:
            return result

        enforcement = await self.engine.apply(result.rule_set, dry_run=dry_run)
        result = result.model_copy(update={"enforcement": enforcement})
        if dry_run:
            return result

        result = result.model_copy(update={"status": CycleStatus.ENFORCED})
        if not verify:
            return result

        verifier = self.verifier or Verifier(
            allowed_urls=default_allowed_probes(result.spec.provider_ranges_enabled)
        )
        try:
            verification = await asyncio.to_thread(verifier.verify_or_raise)
        except VerificationError:
            if self.lockdown_on_failure:
                log_error("Verification failed; locking the environment down", logger)
                await self.engine.lockdown(result.preserved_nat_rules)
            raise

        return result.model_copy(update={"verification": verification})
