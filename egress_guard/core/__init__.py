"""
Core module for egress-guard.
"""

from .errors import (
    ConfigurationError,
    EgressGuardError,
    EnforcementError,
    HostNetworkError,
    ProviderFetchError,
    VerificationError,
)
from .objects import IPAddress, IPRange, Port
from .policy import (
    BUILTIN_DEFAULTS,
    DefaultPolicy,
    PolicyDefaults,
    PolicyResolution,
    PolicySpec,
    SecurityConfig,
    load_policy_file,
    load_policy_source,
    resolve_policy_spec,
)
from .rules import CompiledRule, CompiledRuleSet, ResolvedAllowSet, RuleSection

__all__ = [
    "SecurityConfig",
    "PolicySpec",
    "PolicyDefaults",
    "PolicyResolution",
    "DefaultPolicy",
    "BUILTIN_DEFAULTS",
    "load_policy_source",
    "load_policy_file",
    "resolve_policy_spec",
    "ResolvedAllowSet",
    "CompiledRule",
    "CompiledRuleSet",
    "RuleSection",
    "IPAddress",
    "IPRange",
    "Port",
    "EgressGuardError",
    "ConfigurationError",
    "ProviderFetchError",
    "HostNetworkError",
    "EnforcementError",
    "VerificationError",
]
