"""
Egress policy definition and the policy source resolver.

The resolver merges the built-in allow-list with the user's ``devcon.yaml``
``network.security`` section into a single deduplicated :class:`PolicySpec`.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Union

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    StrictBool,
    ValidationError,
    field_validator,
)

from .errors import ConfigurationError
from .logging_config import get_logger, log_warning
from .objects import IPRange, Port, cidr_sort_key, normalize_hostname

logger = get_logger(__name__)

DNS_PORT = 53

DEFAULT_CONFIG_PATH = Path("/workspace/.devcontainer/devcon.yaml")

# Key in the top-level ``ports`` map that is a setting, not a port
PORT_ALLOCATION_KEY = "allocation_strategy"


class DefaultPolicy(str, Enum):
    """Terminal policy for traffic that matches no exception."""

    DROP = "DROP"
    REJECT = "REJECT"
    ACCEPT = "ACCEPT"


class PolicyDefaults(BaseModel):
    """Built-in allow-list entries, always included when the policy is enabled."""

    model_config = ConfigDict(frozen=True)

    hosts: FrozenSet[str] = frozenset(
        {
            "registry.npmjs.org",
            "api.anthropic.com",
            "sentry.io",
            "statsig.anthropic.com",
            "statsig.com",
            "marketplace.visualstudio.com",
            "vscode.blob.core.windows.net",
            "update.code.visualstudio.com",
        }
    )
    # DNS, SSH, git protocol
    ports: FrozenSet[int] = frozenset({DNS_PORT, 22, 9418})


BUILTIN_DEFAULTS = PolicyDefaults()


class SecurityConfig(BaseModel):
    """The ``network.security`` section of the configuration file."""

    model_config = ConfigDict(extra="ignore")

    enabled: StrictBool = False
    default_policy: DefaultPolicy = DefaultPolicy.DROP
    log_blocked: bool = True
    allowed_hosts: List[Any] = []
    allowed_ips: List[Any] = []
    allowed_ports: List[Any] = []
    provider_ranges: bool = True
    # Numeric values of the top-level ``ports`` map, copied in by the loader
    service_ports: Dict[str, Any] = {}

    @field_validator("default_policy", mode="before")
    @classmethod
    def normalize_default_policy(cls, v):
        if v is None:
            return DefaultPolicy.DROP
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("allowed_hosts", "allowed_ips", "allowed_ports", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return [] if v is None else v


class NetworkConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    security: Optional[SecurityConfig] = None


class DevconConfig(BaseModel):
    """The subset of ``devcon.yaml`` this package reads."""

    model_config = ConfigDict(extra="ignore")

    network: Optional[NetworkConfig] = None
    ports: Dict[str, Any] = {}

    @field_validator("ports", mode="before")
    @classmethod
    def none_as_empty(cls, v):
        return {} if v is None else v


class PolicySpec(BaseModel):
    """Fully merged, validated egress policy."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    default_policy: DefaultPolicy = DefaultPolicy.DROP
    log_blocked: bool = True
    allowed_ports: FrozenSet[int] = frozenset({DNS_PORT})
    allowed_hosts: FrozenSet[str] = frozenset()
    allowed_cidrs: FrozenSet[str] = frozenset()
    provider_ranges_enabled: bool = True

    @field_validator("allowed_ports")
    @classmethod
    def ensure_dns_port(cls, v):
        for port in v:
            Port(number=port)
        return frozenset(v) | {DNS_PORT}

    @field_validator("allowed_cidrs")
    @classmethod
    def validate_cidrs(cls, v):
        return frozenset(IPRange(cidr=cidr).cidr for cidr in v)

    def sorted_ports(self) -> List[int]:
        return sorted(self.allowed_ports)

    def sorted_hosts(self) -> List[str]:
        return sorted(self.allowed_hosts)

    def sorted_cidrs(self) -> List[str]:
        return sorted(self.allowed_cidrs, key=cidr_sort_key)


class PolicyResolution(BaseModel):
    """Outcome of policy source resolution."""

    spec: Optional[PolicySpec] = None
    warnings: List[str] = []
    default_hosts: List[str] = []
    additional_hosts: List[str] = []

    @property
    def is_enabled(self) -> bool:
        return self.spec is not None


def load_policy_source(data: Union[bytes, str]) -> Optional[SecurityConfig]:
    """
    Parse a ``devcon.yaml`` document into a :class:`SecurityConfig`.

    Returns ``None`` when the document is empty or has no
    ``network.security`` section.

    Raises:
        ConfigurationError: on malformed YAML or schema violations
    """
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration: {e}")

    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration must be a YAML mapping")

    try:
        config = DevconConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}")

    if config.network is None or config.network.security is None:
        return None

    return config.network.security.model_copy(
        update={"service_ports": dict(config.ports)}
    )


def load_policy_file(path: Union[str, Path]) -> Optional[SecurityConfig]:
    """Load the configuration file; an absent file means the policy is disabled."""
    path = Path(path)
    if not path.is_file():
        logger.info("No configuration found at %s", path)
        return None
    logger.debug("Loading configuration from %s", path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration {path}: {e}")
    return load_policy_source(data)


def _collect_ports(
    defaults: PolicyDefaults, config: SecurityConfig, warnings: List[str]
) -> FrozenSet[int]:
    ports = set(defaults.ports)

    for name, value in config.service_ports.items():
        if name == PORT_ALLOCATION_KEY or value is None:
            continue
        try:
            ports.add(Port(number=value).number)
            logger.debug("Adding port %s (%s)", value, name)
        except ValidationError:
            warnings.append(f"Ignoring non-numeric port '{name}': {value!r}")

    for value in config.allowed_ports:
        if value is None:
            continue
        try:
            ports.add(Port(number=value).number)
        except ValidationError:
            warnings.append(f"Ignoring invalid allowed port: {value!r}")

    ports.add(DNS_PORT)
    return frozenset(ports)


def normalize_host_entry(entry: Any, warnings: List[str]) -> Optional[str]:
    """
    Normalize one configured host entry.

    ``*.example.com`` becomes ``example.com``. This broadens the exception
    to every address the base domain resolves to, and a warning says so.
    """
    if not isinstance(entry, str) or not entry.strip():
        warnings.append(f"Ignoring invalid host entry: {entry!r}")
        return None

    host = entry.strip()
    if host.startswith("*."):
        host = host[2:]
        warnings.append(
            f"Wildcard host '{entry}' broadened to base domain '{host.lower()}'"
        )
    if "*" in host:
        warnings.append(f"Ignoring unsupported wildcard host: {entry}")
        return None

    try:
        return normalize_hostname(host)
    except ValueError:
        warnings.append(f"Ignoring invalid hostname: {entry}")
        return None


def _collect_cidrs(config: SecurityConfig, warnings: List[str]) -> FrozenSet[str]:
    cidrs = set()
    for entry in config.allowed_ips:
        if entry is None:
            continue
        try:
            cidrs.add(IPRange(cidr=str(entry)).cidr)
        except ValidationError:
            warnings.append(f"Ignoring invalid IP/CIDR format: {entry}")
    return frozenset(cidrs)


def resolve_policy_spec(
    config: Optional[SecurityConfig],
    defaults: PolicyDefaults = BUILTIN_DEFAULTS,
) -> PolicyResolution:
    """
    Merge built-in defaults with user configuration.

    An absent configuration, or one that is not explicitly enabled, yields a
    resolution with no spec: the caller must leave egress unrestricted.
    """
    if config is None:
        logger.info("No configuration found. Network policy disabled.")
        return PolicyResolution()
    if config.enabled is not True:
        logger.info("Network security is disabled in config.")
        return PolicyResolution()

    warnings: List[str] = []

    ports = _collect_ports(defaults, config, warnings)

    additional = set()
    for entry in config.allowed_hosts:
        host = normalize_host_entry(entry, warnings)
        if host is not None:
            additional.add(host)

    default_hosts = {normalize_hostname(host) for host in defaults.hosts}
    cidrs = _collect_cidrs(config, warnings)

    for warning in warnings:
        log_warning(warning, logger)

    spec = PolicySpec(
        enabled=True,
        default_policy=config.default_policy,
        log_blocked=config.log_blocked,
        allowed_ports=ports,
        allowed_hosts=frozenset(default_hosts | additional),
        allowed_cidrs=cidrs,
        provider_ranges_enabled=config.provider_ranges,
    )
    logger.debug(
        "Resolved policy: %s ports, %s hosts, %s CIDRs",
        len(spec.allowed_ports),
        len(spec.allowed_hosts),
        len(spec.allowed_cidrs),
    )

    return PolicyResolution(
        spec=spec,
        warnings=warnings,
        default_hosts=sorted(default_hosts),
        additional_hosts=sorted(additional - default_hosts),
    )

