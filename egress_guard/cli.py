"""
Command-line interface for egress-guard.
"""

import asyncio
import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .core.errors import EgressGuardError
from .core.logging_config import get_logger, setup_logging
from .core.policy import BUILTIN_DEFAULTS, DEFAULT_CONFIG_PATH, load_policy_file
from .devices.linux_iptables import LinuxIptables
from .pipeline import CycleResult, CycleStatus, EnforcementPipeline
from .verification.verifier import Verifier, default_allowed_probes

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="egress-guard - default-deny egress firewall for sandboxed containers",
    no_args_is_help=True,
)
logger = get_logger(__name__)

CONFIG_ENV_VAR = "EGRESS_GUARD_CONFIG"


def version_callback(value: bool):
    if value:
        console.print(f"egress-guard version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version information",
    ),
):
    """
    egress-guard - default-deny egress firewall for sandboxed containers
    """


def resolve_config_path(config: Optional[Path]) -> Path:
    if config is not None:
        return config
    env_path = os.environ.get(CONFIG_ENV_VAR)
    return Path(env_path) if env_path else DEFAULT_CONFIG_PATH


def fail(error: EgressGuardError) -> None:
    """Print a fatal error with its stage and exit non-zero."""
    err_console.print(f"[red]✗ {error.stage} stage failed: {escape(str(error))}[/red]")
    logger.error("Fatal error in %s stage: %s", error.stage, error)
    raise typer.Exit(error.exit_code)


def load_config_or_exit(config_path: Path):
    try:
        return load_policy_file(config_path)
    except EgressGuardError as e:
        fail(e)


@app.command()
def apply(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help=f"Path to devcon.yaml (or ${CONFIG_ENV_VAR})"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Print the commands without changing the firewall"
    ),
    skip_verify: bool = typer.Option(
        False, "--skip-verify", help="Do not run the post-enforcement probes"
    ),
    lockdown: bool = typer.Option(
        True,
        "--lockdown/--no-lockdown",
        help="Deny all traffic if verification fails",
    ),
    sudo: bool = typer.Option(False, "--sudo", help="Prefix packet-filter commands with sudo"),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)"
    ),
):
    """Run a full enforcement cycle: resolve, compile, enforce, verify."""
    setup_logging(min(verbose, 2))

    config_path = resolve_config_path(config)
    security = load_config_or_exit(config_path)
    if security is None or not security.enabled:
        console.print("Network security is disabled in config. Skipping firewall setup.")
        raise typer.Exit(0)

    mode_text = "DRY RUN" if dry_run else "LIVE ENFORCEMENT"
    console.print(f"[bold yellow]Configuring firewall ({mode_text})...[/bold yellow]")

    pipeline = EnforcementPipeline(
        LinuxIptables(use_sudo=sudo), lockdown_on_failure=lockdown
    )
    try:
        result = asyncio.run(
            pipeline.run(security, dry_run=dry_run, verify=not skip_verify)
        )
    except EgressGuardError as e:
        fail(e)

    if dry_run:
        for command_result in result.enforcement.command_results:
            console.print(command_result.output, style="dim", soft_wrap=True)
    display_cycle_summary(result)

    if result.status == CycleStatus.ENFORCED:
        console.print("[bold green]✓ Firewall configuration complete![/bold green]")
        if result.spec.log_blocked:
            console.print("To view blocked connections:")
            console.print("  sudo dmesg | grep FIREWALL-BLOCKED")


@app.command()
def plan(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help=f"Path to devcon.yaml (or ${CONFIG_ENV_VAR})"
    ),
    sudo: bool = typer.Option(False, "--sudo", help="Prefix packet-filter commands with sudo"),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)"
    ),
):
    """Resolve and compile the policy, print the rule set, change nothing."""
    setup_logging(min(verbose, 2))

    security = load_config_or_exit(resolve_config_path(config))
    if security is None or not security.enabled:
        console.print("Network security is disabled in config. Nothing to plan.")
        raise typer.Exit(0)

    pipeline = EnforcementPipeline(LinuxIptables(use_sudo=sudo))
    try:
        result = asyncio.run(pipeline.plan(security))
    except EgressGuardError as e:
        fail(e)

    console.print(result.rule_set.render(), soft_wrap=True, highlight=False)
    console.print(f"\n[dim]fingerprint {result.rule_set.fingerprint()}[/dim]")
    display_cycle_summary(result)


@app.command()
def verify(
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help=f"Path to devcon.yaml (or ${CONFIG_ENV_VAR})"
    ),
    timeout: float = typer.Option(5.0, help="Probe timeout in seconds"),
    verbose: int = typer.Option(
        0, "-v", "--verbose", count=True, help="Increase verbosity (-v, -vv)"
    ),
):
    """Probe the live firewall: a blocked endpoint and allow-listed endpoints."""
    setup_logging(min(verbose, 2))

    security = load_config_or_exit(resolve_config_path(config))
    provider_enabled = security.provider_ranges if security is not None else True
    verifier = Verifier(
        allowed_urls=default_allowed_probes(provider_enabled), timeout=timeout
    )

    result = verifier.verify()
    display_verification(result)
    if not result.passed:
        err_console.print(
            "[red]✗ Firewall verification failed - "
            + escape("; ".join(result.failures()))
            + "[/red]"
        )
        raise typer.Exit(1)
    console.print("[green]✓ All verification tests passed![/green]")


@app.command()
def defaults():
    """Show the built-in allow-listed hosts and ports."""
    table = Table(title="Built-in allow-list")
    table.add_column("Kind", style="cyan")
    table.add_column("Value", style="white")
    for host in sorted(BUILTIN_DEFAULTS.hosts):
        table.add_row("host", host)
    for port in sorted(BUILTIN_DEFAULTS.ports):
        table.add_row("port", str(port))
    console.print(table)


def display_cycle_summary(result: CycleResult):
    """Display a firewall cycle summary."""
    console.print("\n[bold]Firewall Summary[/bold]")

    table = Table()
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    spec = result.spec
    table.add_row("Status", result.status.value)
    table.add_row("Base domains", str(len(result.default_hosts)))
    table.add_row("Additional domains", str(len(result.additional_hosts)))
    table.add_row("Total domains", str(len(result.domains_considered)))
    table.add_row("Resolution failures", str(len(result.resolution_failures)))
    table.add_row("Provider ranges added", str(result.provider_ranges_added))
    table.add_row(
        "Allowed ports", " ".join(str(port) for port in spec.sorted_ports())
    )
    table.add_row("Allow-list entries", str(len(result.allow_set.ip_ranges)))
    table.add_row("Host network", result.allow_set.host_network_cidr)
    table.add_row("Default policy", spec.default_policy.value)
    table.add_row("Logging", "on" if spec.log_blocked else "off")
    table.add_row("Preserved DNS NAT rules", str(len(result.preserved_nat_rules)))
    console.print(table)

    console.print("\n[bold]Domains considered[/bold]")
    for host in result.domains_considered:
        if host in result.resolution_failures:
            console.print(
                f"  [yellow]- {host} (unresolved: {result.resolution_failures[host]})[/yellow]"
            )
        else:
            console.print(f"  - {host}")

    if result.warnings:
        console.print("\n[bold yellow]Warnings[/bold yellow]")
        for warning in result.warnings:
            console.print(f"  [yellow]⚠ {warning}[/yellow]")

    if result.verification is not None:
        display_verification(result.verification)


def display_verification(result):
    """Display verification probe results."""
    table = Table(title="Verification")
    table.add_column("Probe", style="cyan")
    table.add_column("Expected", style="white")
    table.add_column("Result", style="white")

    table.add_row(
        result.blocked_target,
        "blocked",
        "[green]PASSED[/green]" if result.blocked_probe_passed else "[red]FAILED[/red]",
    )
    for target, ok in result.allowed_probes_passed.items():
        table.add_row(
            target, "allowed", "[green]PASSED[/green]" if ok else "[red]FAILED[/red]"
        )
    console.print(table)


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
