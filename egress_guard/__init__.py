"""
egress-guard - default-deny egress firewall for sandboxed containers

Turns a declarative allow-list into an iptables/ipset rule set, applies it
as a full flush-and-rebuild and verifies the result with live probes.
"""

__version__ = "0.1.0"

from .core.errors import EgressGuardError
from .core.objects import IPAddress, IPRange, Port
from .core.policy import DefaultPolicy, PolicySpec, SecurityConfig
from .core.rules import CompiledRuleSet, ResolvedAllowSet
from .devices.linux_iptables import LinuxIptables
from .enforcement.engine import EnforcementEngine
from .pipeline import CycleResult, EnforcementPipeline

__all__ = [
    "EnforcementPipeline",
    "CycleResult",
    "SecurityConfig",
    "PolicySpec",
    "DefaultPolicy",
    "ResolvedAllowSet",
    "CompiledRuleSet",
    "IPRange",
    "IPAddress",
    "Port",
    "EgressGuardError",
    "EnforcementEngine",
    "LinuxIptables",
]
