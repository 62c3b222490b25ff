"""
Base classes for packet-filter handles.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from pydantic import BaseModel


class CommandResult(BaseModel):
    """Result of executing a command against the packet filter."""

    command: str
    success: bool
    output: str
    error: Optional[str] = None
    exit_code: Optional[int] = None
    execution_time: float


class FirewallHandle(ABC):
    """
    Explicit handle on the live packet-filter state of one environment.

    The enforcement engine is the only component that mutates state through
    a handle; everything else receives it read-only. Tests substitute a fake
    implementation.
    """

    @abstractmethod
    async def execute_command(self, command: Sequence[str]) -> CommandResult:
        """Run one command (argv form)."""
        pass

    @abstractmethod
    def get_test_command(self) -> List[str]:
        """Get a simple command to test that the packet filter is reachable."""
        pass

    async def capture_nat_rules(self, pattern: str = "127.0.0.11") -> List[str]:
        """
        Return the ``-A`` lines of the nat table that mention ``pattern``.

        Used to capture the container runtime's embedded-DNS rules before a
        flush so they can be re-installed verbatim.
        """
        result = await self.execute_command(["iptables-save", "-t", "nat"])
        if not result.success:
            return []
        return [
            line.strip()
            for line in result.output.splitlines()
            if line.startswith("-A") and pattern in line
        ]

    async def set_exists(self, name: str) -> bool:
        """Check whether an ipset with the given name exists."""
        result = await self.execute_command(["ipset", "list", "-n"])
        if not result.success:
            return False
        return name in [line.strip() for line in result.output.splitlines()]

    async def default_gateway(self) -> Optional[str]:
        """Gateway address of the default route, if any."""
        result = await self.execute_command(["ip", "route"])
        if not result.success:
            return None
        for line in result.output.splitlines():
            parts = line.split()
            if len(parts) >= 3 and parts[0] == "default" and parts[1] == "via":
                return parts[2]
        return None

    async def apply_commands(
        self, commands: List[Sequence[str]], dry_run: bool = False
    ) -> List[CommandResult]:
        """Apply commands in order, stopping at the first failure."""
        results = []
        for command in commands:
            if dry_run:
                results.append(
                    CommandResult(
                        command=" ".join(command),
                        success=True,
                        output=f"DRY RUN: Would execute: {' '.join(command)}",
                        execution_time=0.0,
                    )
                )
                continue

            result = await self.execute_command(command)
            results.append(result)
            if not result.success:
                break
        return results

    async def test_connectivity(self) -> bool:
        """Check that the packet-filter tooling responds."""
        result = await self.execute_command(self.get_test_command())
        return result.success

    def __str__(self) -> str:
        return self.__class__.__name__

    def __repr__(self) -> str:
        return self.__str__()
