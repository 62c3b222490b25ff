"""
Exception hierarchy for fatal pipeline failures.

Every fatal error carries the pipeline stage it came from so the CLI can
tell the operator where the cycle stopped.
"""

from typing import Any, Optional


class EgressGuardError(Exception):
    """Base class for fatal egress-guard errors."""

    stage = "pipeline"
    exit_code = 1

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class ConfigurationError(EgressGuardError):
    """The configuration document could not be parsed or validated."""

    stage = "config"
    exit_code = 2


class ProviderFetchError(EgressGuardError):
    """The provider range document was unreachable, malformed or inconsistent."""

    stage = "provider"


class HostNetworkError(EgressGuardError):
    """The host network could not be derived from the default route."""

    stage = "host-network"


class EnforcementError(EgressGuardError):
    """A flush or rule installation failed; packet-filter state is untrusted."""

    stage = "enforcement"

    def __init__(self, message: str, command_result: Any = None):
        super().__init__(message)
        self.command_result = command_result


class VerificationError(EgressGuardError):
    """Post-enforcement probes did not match the intended policy."""

    stage = "verification"

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result
