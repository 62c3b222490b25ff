"""
Post-enforcement verification.
"""

from .verifier import VerificationResult, Verifier, default_allowed_probes

__all__ = [
    "Verifier",
    "VerificationResult",
    "default_allowed_probes",
]
