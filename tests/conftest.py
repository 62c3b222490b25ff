"""
Shared test fixtures.
"""

from typing import Dict, List, Optional, Sequence

import pytest

from egress_guard.core.policy import PolicySpec
from egress_guard.core.rules import ResolvedAllowSet
from egress_guard.devices.base import CommandResult, FirewallHandle

DOCKER_NAT_SAVE = """# Generated by iptables-save
*nat
:PREROUTING ACCEPT [0:0]
:OUTPUT ACCEPT [0:0]
:DOCKER_OUTPUT - [0:0]
:DOCKER_POSTROUTING - [0:0]
-A OUTPUT -d 127.0.0.11/32 -j DOCKER_OUTPUT
-A POSTROUTING -d 127.0.0.11/32 -j DOCKER_POSTROUTING
-A DOCKER_OUTPUT -d 127.0.0.11/32 -p tcp -m tcp --dport 53 -j DNAT --to-destination 127.0.0.11:38417
-A DOCKER_OUTPUT -d 127.0.0.11/32 -p udp -m udp --dport 53 -j DNAT --to-destination 127.0.0.11:51522
-A DOCKER_POSTROUTING -s 127.0.0.11/32 -p tcp -m tcp --sport 38417 -j SNAT --to-source :53
-A DOCKER_POSTROUTING -s 127.0.0.11/32 -p udp -m udp --sport 51522 -j SNAT --to-source :53
-A POSTROUTING -s 172.17.0.0/16 -j MASQUERADE
COMMIT
"""

ROUTE_OUTPUT = """default via 172.17.0.1 dev eth0
172.17.0.0/16 dev eth0 proto kernel scope link src 172.17.0.2
"""


class FakeFirewallHandle(FirewallHandle):
    """In-memory packet-filter handle that records every command."""

    def __init__(
        self,
        nat_save: str = "",
        route: str = ROUTE_OUTPUT,
        existing_sets: Sequence[str] = (),
        fail_on: Optional[str] = None,
    ):
        self.nat_save = nat_save
        self.route = route
        self.existing_sets = list(existing_sets)
        self.fail_on = fail_on
        self.executed: List[str] = []

    async def execute_command(self, command: Sequence[str]) -> CommandResult:
        rendered = " ".join(command)
        self.executed.append(rendered)

        if self.fail_on is not None and self.fail_on in rendered:
            return CommandResult(
                command=rendered,
                success=False,
                output="",
                error="iptables: Operation not permitted.",
                exit_code=1,
                execution_time=0.0,
            )

        outputs: Dict[str, str] = {
            "iptables-save -t nat": self.nat_save,
            "ipset list -n": "\n".join(self.existing_sets),
            "ip route": self.route,
        }
        return CommandResult(
            command=rendered,
            success=True,
            output=outputs.get(rendered, ""),
            exit_code=0,
            execution_time=0.0,
        )

    def get_test_command(self) -> List[str]:
        return ["iptables", "--version"]

    def mutations(self) -> List[str]:
        """Executed commands that change packet-filter state."""
        read_only = ("iptables-save", "ipset list", "ip route")
        return [cmd for cmd in self.executed if not cmd.startswith(read_only)]


@pytest.fixture
def fake_handle() -> FakeFirewallHandle:
    return FakeFirewallHandle()


@pytest.fixture
def docker_handle() -> FakeFirewallHandle:
    return FakeFirewallHandle(nat_save=DOCKER_NAT_SAVE)


@pytest.fixture
def simple_spec() -> PolicySpec:
    return PolicySpec(
        allowed_ports=frozenset({22, 443}),
        allowed_hosts=frozenset({"api.example.com"}),
    )


@pytest.fixture
def simple_allow_set() -> ResolvedAllowSet:
    return ResolvedAllowSet.build(
        host_cidrs=["93.184.216.34/32"],
        provider_ranges=["140.82.112.0/20"],
        literal_cidrs=["10.0.0.0/8"],
        ports=[22, 53, 443],
        host_network_cidr="172.17.0.0/24",
    )
