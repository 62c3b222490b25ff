"""
Enforcement engine for applying a compiled rule set to the packet filter.

Every apply is a full flush followed by a full rebuild. There is no diffing
and no rollback: after a failure the packet-filter state is untrusted and the
caller must not start workloads.
"""

import datetime
from enum import Enum
from typing import List, Optional, Sequence

from pydantic import BaseModel

from ..core.errors import EnforcementError
from ..core.logging_config import get_logger, log_error, log_success, log_warning
from ..core.rules import CompiledRuleSet
from ..devices.base import CommandResult, FirewallHandle
from .compiler import DEFAULT_SET_NAME, FILTER_CHAINS, RuleCompiler

logger = get_logger(__name__)

FLUSH_TABLES = ("filter", "nat", "mangle")
DNS_NAT_PATTERN = "127.0.0.11"


class FirewallState(str, Enum):
    """Lifecycle of the packet-filter state owned by one engine."""

    UNCONFIGURED = "unconfigured"
    ENFORCING = "enforcing"
    UNTRUSTED = "untrusted"
    LOCKED_DOWN = "locked-down"


class EnforcementResult(BaseModel):
    """Outcome of one flush-and-rebuild pass."""

    state: FirewallState
    dry_run: bool
    commands_planned: int
    commands_executed: int
    command_results: List[CommandResult] = []
    fingerprint: str
    enforcement_timestamp: str

    @property
    def is_successful(self) -> bool:
        return all(result.success for result in self.command_results)


class EnforcementEngine:
    """Owns the packet-filter state of one environment through a handle."""

    def __init__(self, handle: FirewallHandle, set_name: str = DEFAULT_SET_NAME):
        self.handle = handle
        self.set_name = set_name
        self.state = FirewallState.UNCONFIGURED

    async def capture_foreign_state(self, pattern: str = DNS_NAT_PATTERN) -> List[str]:
        """Capture runtime-owned DNS NAT rules that must survive the flush."""
        rules = await self.handle.capture_nat_rules(pattern)
        if rules:
            logger.info("Preserving %s container DNS NAT rules", len(rules))
        else:
            logger.info("No container DNS rules to preserve")
        return rules

    def flush_commands(self) -> List[List[str]]:
        commands = []
        for table in FLUSH_TABLES:
            table_args = [] if table == "filter" else ["-t", table]
            commands.append(["iptables", *table_args, "-F"])
            commands.append(["iptables", *table_args, "-X"])
        return commands

    async def flush(self) -> List[CommandResult]:
        """
        Remove all packet-filter state owned by this subsystem.

        Raises:
            EnforcementError: if any flush command fails
        """
        logger.info("Flushing existing firewall rules...")
        commands: List[Sequence[str]] = self.flush_commands()
        if await self.handle.set_exists(self.set_name):
            commands.append(["ipset", "destroy", self.set_name])

        results = await self.handle.apply_commands(commands)
        self._raise_on_failure(results, "flush")
        return results

    async def apply(
        self, rule_set: CompiledRuleSet, dry_run: bool = False
    ) -> EnforcementResult:
        """
        Replace the live state with ``rule_set`` (flush, then install).

        Raises:
            EnforcementError: if flushing or installing any rule fails. The
                engine does not roll back; state becomes ``UNTRUSTED``.
        """
        commands = rule_set.commands()

        if dry_run:
            planned = self.flush_commands() + commands
            results = await self.handle.apply_commands(planned, dry_run=True)
            return self._result(rule_set, results, dry_run=True, planned=len(planned))

        previous_state = self.state
        results: List[CommandResult] = []
        try:
            results.extend(await self.flush())
            logger.info("Installing %s firewall rules...", len(commands))
            install_results = await self.handle.apply_commands(commands)
            results.extend(install_results)
            self._raise_on_failure(install_results, "install")
        except EnforcementError:
            self.state = FirewallState.UNTRUSTED
            raise

        self.state = FirewallState.ENFORCING
        log_success(
            f"Firewall policy {rule_set.default_policy.value} active "
            f"({previous_state.value} -> {self.state.value})",
            logger,
        )
        return self._result(rule_set, results, dry_run=False, planned=len(commands))

    async def lockdown(
        self, preserved_nat_rules: Sequence[str] = ()
    ) -> List[CommandResult]:
        """
        Fail closed: drop everything except loopback.

        The container DNS NAT rules captured before the flush are restored so
        a later cycle can still resolve names.

        Raises:
            EnforcementError: if the lockdown itself cannot be applied
        """
        log_warning("Locking down network: all traffic except loopback denied", logger)
        commands: List[Sequence[str]] = self.flush_commands()
        if await self.handle.set_exists(self.set_name):
            commands.append(["ipset", "destroy", self.set_name])
        commands.extend(
            rule.command()
            for rule in RuleCompiler(self.set_name).nat_preserve_rules(
                preserved_nat_rules
            )
        )
        commands.extend(
            [
                ["iptables", "-A", "INPUT", "-i", "lo", "-j", "ACCEPT"],
                ["iptables", "-A", "OUTPUT", "-o", "lo", "-j", "ACCEPT"],
            ]
        )
        commands.extend(["iptables", "-P", chain, "DROP"] for chain in FILTER_CHAINS)

        results = await self.handle.apply_commands(commands)
        try:
            self._raise_on_failure(results, "lockdown")
        except EnforcementError:
            self.state = FirewallState.UNTRUSTED
            raise
        self.state = FirewallState.LOCKED_DOWN
        return results

    def _raise_on_failure(self, results: List[CommandResult], phase: str) -> None:
        failed: Optional[CommandResult] = next(
            (result for result in results if not result.success), None
        )
        if failed is None:
            return
        detail = (failed.error or failed.output or "").strip()
        log_error(f"{phase} failed at: {failed.command}", logger)
        raise EnforcementError(
            f"Firewall {phase} failed at '{failed.command}': {detail or 'unknown error'}",
            command_result=failed,
        )

    def _result(
        self,
        rule_set: CompiledRuleSet,
        results: List[CommandResult],
        dry_run: bool,
        planned: int,
    ) -> EnforcementResult:
        return EnforcementResult(
            state=self.state,
            dry_run=dry_run,
            commands_planned=planned,
            commands_executed=0 if dry_run else len(results),
            command_results=results,
            fingerprint=rule_set.fingerprint(),
            enforcement_timestamp=datetime.datetime.now().isoformat(),
        )
