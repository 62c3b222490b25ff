"""
Rule compilation and enforcement.
"""

from .compiler import RuleCompiler
from .engine import EnforcementEngine, EnforcementResult, FirewallState

__all__ = [
    "RuleCompiler",
    "EnforcementEngine",
    "EnforcementResult",
    "FirewallState",
]
