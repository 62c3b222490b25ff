"""
Rule compiler: resolved allow set + policy -> ordered iptables/ipset commands.

The compiler is a pure function of its inputs so that two cycles over an
unchanged configuration produce byte-identical rule sets.
"""

import shlex
from typing import List, Sequence

from ..core.logging_config import get_logger
from ..core.policy import DNS_PORT, DefaultPolicy, PolicySpec
from ..core.rules import CompiledRule, CompiledRuleSet, ResolvedAllowSet, RuleSection

logger = get_logger(__name__)

DEFAULT_SET_NAME = "allowed-domains"
DEFAULT_LOG_LIMIT = "5/min"
LOG_PREFIX_OUT = "FIREWALL-BLOCKED-OUT: "
LOG_PREFIX_IN = "FIREWALL-BLOCKED-IN: "
REJECT_WITH = "icmp-admin-prohibited"

# Chains the container runtime needs for its embedded DNS resolver
DOCKER_NAT_CHAINS = ("DOCKER_OUTPUT", "DOCKER_POSTROUTING")
FILTER_CHAINS = ("INPUT", "FORWARD", "OUTPUT")


class RuleCompiler:
    """Builds a :class:`CompiledRuleSet` following the fixed skeleton."""

    def __init__(
        self, set_name: str = DEFAULT_SET_NAME, log_limit: str = DEFAULT_LOG_LIMIT
    ):
        self.set_name = set_name
        self.log_limit = log_limit

    def compile(
        self,
        allow_set: ResolvedAllowSet,
        spec: PolicySpec,
        preserved_nat_rules: Sequence[str] = (),
    ) -> CompiledRuleSet:
        rules: List[CompiledRule] = []
        rules.extend(self.nat_preserve_rules(preserved_nat_rules))
        rules.extend(self._baseline())
        rules.extend(self._ports(allow_set))
        rules.extend(self._allow_list(allow_set))
        if spec.log_blocked:
            rules.extend(self._logging())
        rules.extend(self._terminal(spec.default_policy))

        rule_set = CompiledRuleSet(
            set_name=self.set_name,
            default_policy=spec.default_policy,
            rules=tuple(rules),
        )
        logger.debug(
            "Compiled %s rules (fingerprint %s)",
            len(rule_set.rules),
            rule_set.fingerprint()[:12],
        )
        return rule_set

    def nat_preserve_rules(self, preserved: Sequence[str]) -> List[CompiledRule]:
        """Recreate the container DNS chains and re-add the captured lines."""
        if not preserved:
            return []
        section = RuleSection.NAT_PRESERVE
        rules = [
            CompiledRule(
                section=section,
                args=("-t", "nat", "-N", chain),
                description=f"Recreate {chain} chain",
            )
            for chain in DOCKER_NAT_CHAINS
        ]
        for line in preserved:
            rules.append(
                CompiledRule(
                    section=section,
                    args=("-t", "nat", *shlex.split(line)),
                    description="Restore container DNS rule",
                )
            )
        return rules

    def _baseline(self) -> List[CompiledRule]:
        section = RuleSection.BASELINE
        established = ("-m", "state", "--state", "ESTABLISHED,RELATED", "-j", "ACCEPT")
        return [
            CompiledRule(
                section=section,
                args=("-A", "INPUT", "-i", "lo", "-j", "ACCEPT"),
                description="Allow loopback in",
            ),
            CompiledRule(
                section=section,
                args=("-A", "OUTPUT", "-o", "lo", "-j", "ACCEPT"),
                description="Allow loopback out",
            ),
            CompiledRule(
                section=section,
                args=("-A", "INPUT", *established),
                description="Allow established return traffic in",
            ),
            CompiledRule(
                section=section,
                args=("-A", "OUTPUT", *established),
                description="Allow established traffic out",
            ),
        ]

    def _ports(self, allow_set: ResolvedAllowSet) -> List[CompiledRule]:
        section = RuleSection.PORTS
        rules = [
            CompiledRule(
                section=section,
                args=("-A", "OUTPUT", "-p", "udp", "--dport", str(DNS_PORT), "-j", "ACCEPT"),
                description="Allow DNS queries",
            ),
            CompiledRule(
                section=section,
                args=("-A", "INPUT", "-p", "udp", "--sport", str(DNS_PORT), "-j", "ACCEPT"),
                description="Allow DNS responses",
            ),
        ]
        for port in allow_set.tcp_ports:
            if port == DNS_PORT:
                continue
            rules.append(
                CompiledRule(
                    section=section,
                    args=("-A", "OUTPUT", "-p", "tcp", "--dport", str(port), "-j", "ACCEPT"),
                    description=f"Allow TCP/{port} out",
                )
            )
            rules.append(
                CompiledRule(
                    section=section,
                    args=(
                        "-A", "INPUT", "-p", "tcp", "--sport", str(port),
                        "-m", "state", "--state", "ESTABLISHED", "-j", "ACCEPT",
                    ),
                    description=f"Allow TCP/{port} replies",
                )
            )
        return rules

    def _allow_list(self, allow_set: ResolvedAllowSet) -> List[CompiledRule]:
        section = RuleSection.ALLOW_LIST
        rules = [
            CompiledRule(
                section=section,
                binary="ipset",
                args=("create", self.set_name, "hash:net"),
                description="Create allow-list set",
            )
        ]
        for cidr in allow_set.ip_ranges:
            rules.append(
                CompiledRule(
                    section=section,
                    binary="ipset",
                    args=("add", self.set_name, cidr),
                    description=f"Allow {cidr}",
                )
            )
        host_network = allow_set.host_network_cidr
        rules.extend(
            [
                CompiledRule(
                    section=section,
                    args=("-A", "INPUT", "-s", host_network, "-j", "ACCEPT"),
                    description="Allow host network in",
                ),
                CompiledRule(
                    section=section,
                    args=("-A", "OUTPUT", "-d", host_network, "-j", "ACCEPT"),
                    description="Allow host network out",
                ),
                CompiledRule(
                    section=section,
                    args=(
                        "-A", "OUTPUT", "-m", "set", "--match-set", self.set_name,
                        "dst", "-j", "ACCEPT",
                    ),
                    description="Allow destinations in the allow-list set",
                ),
            ]
        )
        return rules

    def _logging(self) -> List[CompiledRule]:
        section = RuleSection.LOGGING
        rules = []
        for chain, prefix in (("OUTPUT", LOG_PREFIX_OUT), ("INPUT", LOG_PREFIX_IN)):
            rules.append(
                CompiledRule(
                    section=section,
                    args=(
                        "-A", chain, "-m", "limit", "--limit", self.log_limit,
                        "-j", "LOG", "--log-prefix", prefix, "--log-level", "4",
                    ),
                    description=f"Log blocked {chain.lower()} packets",
                )
            )
        return rules

    def _terminal(self, default_policy: DefaultPolicy) -> List[CompiledRule]:
        section = RuleSection.TERMINAL
        # iptables chain policies can only be ACCEPT or DROP
        chain_policy = "ACCEPT" if default_policy == DefaultPolicy.ACCEPT else "DROP"
        rules = [
            CompiledRule(
                section=section,
                args=("-P", chain, chain_policy),
                description=f"Default {chain} policy {chain_policy}",
            )
            for chain in FILTER_CHAINS
        ]

        reject_chains = ["OUTPUT"]
        if default_policy == DefaultPolicy.REJECT:
            reject_chains = ["INPUT", "FORWARD", "OUTPUT"]
        for chain in reject_chains:
            rules.append(
                CompiledRule(
                    section=section,
                    args=("-A", chain, "-j", "REJECT", "--reject-with", REJECT_WITH),
                    description=f"Reject remaining {chain} traffic",
                )
            )
        return rules
