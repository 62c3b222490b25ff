#!/usr/bin/env python3
"""
Example script demonstrating egress-guard.

This script shows how to:
1. Load a devcon.yaml network.security section
2. Resolve it against the built-in allow-list
3. Plan the iptables/ipset rule set without touching the firewall

Planning reads the default route and the nat table, so run it inside the
container (with --sudo semantics if iptables-save needs root).

Usage:
    python plan_example.py
"""

import asyncio

from egress_guard import EnforcementPipeline, LinuxIptables
from egress_guard.core.policy import load_policy_source

DEVCON_YAML = """
ports:
  allocation_strategy: sequential
  web: 3000
network:
  security:
    enabled: true
    default_policy: DROP
    log_blocked: true
    allowed_hosts:
      - pypi.org
      - files.pythonhosted.org
      - "*.githubusercontent.com"
    allowed_ips:
      - 10.20.0.0/16
"""


async def main():
    print("🔥 egress-guard - plan example")
    print("=" * 50)

    config = load_policy_source(DEVCON_YAML)
    pipeline = EnforcementPipeline(LinuxIptables(use_sudo=True))

    result = await pipeline.plan(config)

    print(f"\n📋 Domains considered: {len(result.domains_considered)}")
    for host in result.domains_considered:
        marker = " (unresolved)" if host in result.resolution_failures else ""
        print(f"   - {host}{marker}")

    print(f"\n🌐 Allow-list entries: {len(result.allow_set.ip_ranges)}")
    print(f"   Host network: {result.allow_set.host_network_cidr}")
    print(f"   Ports: {', '.join(str(p) for p in result.spec.sorted_ports())}")

    for warning in result.warnings:
        print(f"⚠️  {warning}")

    print(f"\n📜 Rule set ({len(result.rule_set.rules)} commands):")
    print(result.rule_set.render())
    print(f"\nfingerprint {result.rule_set.fingerprint()}")


if __name__ == "__main__":
    asyncio.run(main())
