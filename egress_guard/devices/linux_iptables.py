"""
Local Linux iptables/ipset packet-filter handle.
"""

import asyncio
import shutil
import subprocess
import time
from typing import List, Sequence

from ..core.logging_config import get_logger
from .base import CommandResult, FirewallHandle

logger = get_logger(__name__)

PRIVILEGED_BINARIES = ("iptables", "iptables-save", "ipset")


class LinuxIptables(FirewallHandle):
    """Packet filter of the local network namespace, driven through subprocesses."""

    def __init__(self, use_sudo: bool = False, timeout: float = 30.0):
        self.use_sudo = use_sudo
        self.timeout = timeout

    def _build_command(self, command: Sequence[str]) -> List[str]:
        argv = list(command)
        if self.use_sudo and argv and argv[0] in PRIVILEGED_BINARIES:
            argv = ["sudo", "-n"] + argv
        return argv

    def _run(self, argv: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    async def execute_command(self, command: Sequence[str]) -> CommandResult:
        """Execute a command, never raising; failures come back as results."""
        original_command = " ".join(command)
        argv = self._build_command(command)
        start_time = time.time()

        if not argv or shutil.which(argv[0]) is None:
            return CommandResult(
                command=original_command,
                success=False,
                output="",
                error=f"Executable not found: {argv[0] if argv else '<empty>'}",
                execution_time=0.0,
            )

        try:
            completed = await asyncio.to_thread(self._run, argv)
        except subprocess.TimeoutExpired:
            return CommandResult(
                command=original_command,
                success=False,
                output="",
                error=f"Command timed out after {self.timeout}s",
                execution_time=time.time() - start_time,
            )
        except OSError as e:
            return CommandResult(
                command=original_command,
                success=False,
                output="",
                error=f"Command execution failed: {e}",
                execution_time=time.time() - start_time,
            )

        result = CommandResult(
            command=original_command,
            success=completed.returncode == 0,
            output=completed.stdout,
            error=completed.stderr or None,
            exit_code=completed.returncode,
            execution_time=time.time() - start_time,
        )

        logger.debug("Executing command: %s", original_command)
        logger.debug(
            "Result: success=%s, exit_code=%s", result.success, result.exit_code
        )
        if result.error:
            logger.debug("Error: %s", result.error.strip())

        return result

    def get_test_command(self) -> List[str]:
        return ["iptables", "--version"]
