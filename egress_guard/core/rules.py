"""
Core rule definitions: the resolved allow set and the compiled rule set.
"""

import hashlib
from enum import IntEnum
from ipaddress import IPv4Address, IPv4Network
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from .objects import Port, cidr_sort_key, normalize_cidr
from .policy import DefaultPolicy


class RuleSection(IntEnum):
    """Fixed skeleton of a compiled rule set, in evaluation order."""

    NAT_PRESERVE = 1
    BASELINE = 2
    PORTS = 3
    ALLOW_LIST = 4
    LOGGING = 5
    TERMINAL = 6

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", "-")


class ResolvedAllowSet(BaseModel):
    """
    Concrete network objects to permit for one enforcement cycle.

    Rebuilt from scratch every cycle, never patched.
    """

    model_config = ConfigDict(frozen=True)

    ip_ranges: Tuple[str, ...] = ()
    tcp_ports: Tuple[int, ...] = ()
    host_network_cidr: str

    @field_validator("ip_ranges")
    @classmethod
    def validate_ranges(cls, v):
        normalized = {normalize_cidr(cidr) for cidr in v}
        return tuple(sorted(normalized, key=cidr_sort_key))

    @field_validator("tcp_ports")
    @classmethod
    def validate_ports(cls, v):
        return tuple(sorted({Port(number=port).number for port in v}))

    @field_validator("host_network_cidr")
    @classmethod
    def validate_host_network(cls, v):
        return normalize_cidr(v)

    @classmethod
    def build(
        cls,
        host_cidrs: Iterable[str],
        provider_ranges: Iterable[str],
        literal_cidrs: Iterable[str],
        ports: Iterable[int],
        host_network_cidr: str,
    ) -> "ResolvedAllowSet":
        """Union every source of allowed destinations."""
        ranges = list(host_cidrs) + list(provider_ranges) + list(literal_cidrs)
        return cls(
            ip_ranges=tuple(ranges),
            tcp_ports=tuple(ports),
            host_network_cidr=host_network_cidr,
        )

    def contains(self, address: str) -> bool:
        """Check whether an address falls inside any allowed range."""
        target = IPv4Address(address)
        return any(target in IPv4Network(cidr) for cidr in self.ip_ranges)


class CompiledRule(BaseModel):
    """A single packet-filter command with its place in the skeleton."""

    model_config = ConfigDict(frozen=True)

    section: RuleSection
    binary: str = "iptables"
    args: Tuple[str, ...]
    description: str = ""

    @field_validator("binary")
    @classmethod
    def validate_binary(cls, v):
        if v not in ("iptables", "ipset"):
            raise ValueError(f"Unsupported packet-filter binary: {v}")
        return v

    def command(self) -> List[str]:
        """Full argv for this rule."""
        return [self.binary, *self.args]

    def render(self) -> str:
        return " ".join(self.command())

    def __str__(self) -> str:
        return self.render()


class CompiledRuleSet(BaseModel):
    """
    Ordered rule set implementing default-deny with explicit exceptions.

    Sections never go backwards and the terminal rule is always last;
    otherwise every allow rule before it would be moot.
    """

    model_config = ConfigDict(frozen=True)

    set_name: str
    default_policy: DefaultPolicy
    rules: Tuple[CompiledRule, ...]

    @model_validator(mode="after")
    def check_ordering(self):
        if not self.rules:
            raise ValueError("Compiled rule set is empty")
        previous = RuleSection.NAT_PRESERVE
        for rule in self.rules:
            if rule.section < previous:
                raise ValueError(
                    f"Rule '{rule.render()}' in section {rule.section.label} "
                    f"follows section {previous.label}"
                )
            previous = rule.section
        if self.rules[-1].section != RuleSection.TERMINAL:
            raise ValueError("The last rule must belong to the terminal section")
        return self

    def commands(self) -> List[List[str]]:
        return [rule.command() for rule in self.rules]

    def rules_in(self, section: RuleSection) -> List[CompiledRule]:
        return [rule for rule in self.rules if rule.section == section]

    def render(self) -> str:
        return "\n".join(rule.render() for rule in self.rules)

    def fingerprint(self) -> str:
        """SHA-256 over the rendered commands; equal for equal rule sets."""
        return hashlib.sha256(self.render().encode("utf-8")).hexdigest()

    def find(self, *fragments: str) -> Optional[CompiledRule]:
        """First rule whose rendered command contains every fragment."""
        for rule in self.rules:
            rendered = rule.render()
            if all(fragment in rendered for fragment in fragments):
                return rule
        return None
