"""
Tests for egress_guard.enforcement.compiler module.
"""

from egress_guard.core.policy import DefaultPolicy, PolicySpec
from egress_guard.core.rules import ResolvedAllowSet, RuleSection
from egress_guard.enforcement.compiler import (
    LOG_PREFIX_IN,
    LOG_PREFIX_OUT,
    RuleCompiler,
)


def _index(rule_set, *fragments):
    rule = rule_set.find(*fragments)
    assert rule is not None, f"no rule matching {fragments}"
    return rule_set.rules.index(rule)


class TestRuleCompiler:
    """Test cases for RuleCompiler class."""

    def test_section_order(self, simple_allow_set, simple_spec):
        """Test that sections appear in skeleton order and terminal is last."""
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec)
        sections = [rule.section for rule in rule_set.rules]

        assert sections == sorted(sections)
        assert rule_set.rules[-1].section == RuleSection.TERMINAL
        assert not rule_set.rules_in(RuleSection.NAT_PRESERVE)

    def test_baseline_rules(self, simple_allow_set, simple_spec):
        """Test loopback and established-traffic rules."""
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec)
        baseline = [rule.render() for rule in rule_set.rules_in(RuleSection.BASELINE)]

        assert "iptables -A INPUT -i lo -j ACCEPT" in baseline
        assert "iptables -A OUTPUT -o lo -j ACCEPT" in baseline
        assert (
            "iptables -A OUTPUT -m state --state ESTABLISHED,RELATED -j ACCEPT"
            in baseline
        )

    def test_port_rules(self, simple_allow_set, simple_spec):
        """Test DNS and TCP port exceptions."""
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec)
        ports = [rule.render() for rule in rule_set.rules_in(RuleSection.PORTS)]

        assert ports[0] == "iptables -A OUTPUT -p udp --dport 53 -j ACCEPT"
        assert ports[1] == "iptables -A INPUT -p udp --sport 53 -j ACCEPT"
        assert "iptables -A OUTPUT -p tcp --dport 22 -j ACCEPT" in ports
        assert "iptables -A OUTPUT -p tcp --dport 443 -j ACCEPT" in ports
        assert (
            "iptables -A INPUT -p tcp --sport 443 -m state --state ESTABLISHED -j ACCEPT"
            in ports
        )
        assert not any("tcp --dport 53" in rule for rule in ports)

    def test_allow_list_rules(self, simple_allow_set, simple_spec):
        """Test ipset population and the host network exception."""
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec)
        allow = [rule.render() for rule in rule_set.rules_in(RuleSection.ALLOW_LIST)]

        assert allow[0] == "ipset create allowed-domains hash:net"
        for cidr in simple_allow_set.ip_ranges:
            assert f"ipset add allowed-domains {cidr}" in allow
        assert "iptables -A INPUT -s 172.17.0.0/24 -j ACCEPT" in allow
        assert "iptables -A OUTPUT -d 172.17.0.0/24 -j ACCEPT" in allow
        assert allow[-1] == (
            "iptables -A OUTPUT -m set --match-set allowed-domains dst -j ACCEPT"
        )

    def test_logging_before_terminal(self, simple_allow_set, simple_spec):
        """Test that logging rules precede the terminal rules."""
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec)

        log_out = _index(rule_set, "-j LOG", LOG_PREFIX_OUT.strip())
        log_in = _index(rule_set, "-j LOG", LOG_PREFIX_IN.strip())
        reject = _index(rule_set, "-A OUTPUT -j REJECT")

        assert log_out < reject
        assert log_in < reject
        assert "--limit 5/min" in rule_set.rules[log_out].render()

    def test_logging_disabled(self, simple_allow_set):
        """Test that no LOG rules are emitted when logging is off."""
        spec = PolicySpec(log_blocked=False)
        rule_set = RuleCompiler().compile(simple_allow_set, spec)
        assert not rule_set.rules_in(RuleSection.LOGGING)
        assert rule_set.find("-j LOG") is None

    def test_drop_terminal(self, simple_allow_set, simple_spec):
        """Test DROP: chain policies DROP plus an explicit outbound reject."""
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec)
        terminal = [rule.render() for rule in rule_set.rules_in(RuleSection.TERMINAL)]

        assert terminal == [
            "iptables -P INPUT DROP",
            "iptables -P FORWARD DROP",
            "iptables -P OUTPUT DROP",
            "iptables -A OUTPUT -j REJECT --reject-with icmp-admin-prohibited",
        ]

    def test_reject_terminal(self, simple_allow_set):
        """Test REJECT: every chain ends in an explicit reject."""
        spec = PolicySpec(default_policy=DefaultPolicy.REJECT)
        rule_set = RuleCompiler().compile(simple_allow_set, spec)
        terminal = [rule.render() for rule in rule_set.rules_in(RuleSection.TERMINAL)]

        assert "iptables -P OUTPUT DROP" in terminal
        for chain in ("INPUT", "FORWARD", "OUTPUT"):
            assert (
                f"iptables -A {chain} -j REJECT --reject-with icmp-admin-prohibited"
                in terminal
            )
        assert rule_set.default_policy == DefaultPolicy.REJECT

    def test_accept_terminal(self, simple_allow_set):
        """Test ACCEPT: chain policies ACCEPT, outbound still rejected."""
        spec = PolicySpec(default_policy=DefaultPolicy.ACCEPT)
        rule_set = RuleCompiler().compile(simple_allow_set, spec)
        terminal = [rule.render() for rule in rule_set.rules_in(RuleSection.TERMINAL)]

        assert "iptables -P OUTPUT ACCEPT" in terminal
        assert terminal[-1] == (
            "iptables -A OUTPUT -j REJECT --reject-with icmp-admin-prohibited"
        )

    def test_preserved_nat_rules_first(self, simple_allow_set, simple_spec):
        """Test that container DNS rules are restored before anything else."""
        preserved = [
            "-A OUTPUT -d 127.0.0.11/32 -j DOCKER_OUTPUT",
            "-A DOCKER_OUTPUT -d 127.0.0.11/32 -p udp -m udp --dport 53 -j DNAT --to-destination 127.0.0.11:51522",
        ]
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec, preserved)
        nat = [rule.render() for rule in rule_set.rules_in(RuleSection.NAT_PRESERVE)]

        assert nat[:2] == [
            "iptables -t nat -N DOCKER_OUTPUT",
            "iptables -t nat -N DOCKER_POSTROUTING",
        ]
        assert nat[2] == "iptables -t nat -A OUTPUT -d 127.0.0.11/32 -j DOCKER_OUTPUT"
        assert rule_set.rules[0].section == RuleSection.NAT_PRESERVE

    def test_preserved_rule_quoting(self, simple_allow_set, simple_spec):
        """Test that quoted arguments in saved rules stay single arguments."""
        preserved = [
            '-A DOCKER_OUTPUT -d 127.0.0.11/32 -m comment --comment "docker dns"'
            " -j DNAT --to-destination 127.0.0.11:51522"
        ]
        rule_set = RuleCompiler().compile(simple_allow_set, simple_spec, preserved)
        restored = rule_set.rules_in(RuleSection.NAT_PRESERVE)[-1]

        assert "docker dns" in restored.args
        assert '"docker' not in restored.args
        comment_at = restored.args.index("--comment")
        assert restored.args[comment_at + 1] == "docker dns"
        assert restored.args[-2:] == ("--to-destination", "127.0.0.11:51522")

    def test_ports_come_from_allow_set(self, simple_spec):
        """Test that TCP exceptions follow the resolved allow set's ports."""
        allow_set = ResolvedAllowSet.build(
            host_cidrs=[],
            provider_ranges=[],
            literal_cidrs=[],
            ports=[53, 8443],
            host_network_cidr="172.17.0.0/24",
        )
        rule_set = RuleCompiler().compile(allow_set, simple_spec)
        ports = [rule.render() for rule in rule_set.rules_in(RuleSection.PORTS)]

        assert "iptables -A OUTPUT -p tcp --dport 8443 -j ACCEPT" in ports
        assert not any("--dport 22 " in rule or "--dport 443 " in rule for rule in ports)
        assert len(ports) == 4

    def test_compile_is_deterministic(self, simple_spec):
        """Test that equal inputs in any order compile to identical rule sets."""
        first = ResolvedAllowSet.build(
            host_cidrs=["1.1.1.1/32", "2.2.2.2/32"],
            provider_ranges=["140.82.112.0/20"],
            literal_cidrs=[],
            ports=[443, 22],
            host_network_cidr="172.17.0.0/24",
        )
        second = ResolvedAllowSet.build(
            host_cidrs=["2.2.2.2/32", "1.1.1.1/32", "1.1.1.1/32"],
            provider_ranges=["140.82.112.0/20"],
            literal_cidrs=[],
            ports=[22, 443],
            host_network_cidr="172.17.0.0/24",
        )
        compiler = RuleCompiler()
        assert (
            compiler.compile(first, simple_spec).fingerprint()
            == compiler.compile(second, simple_spec).fingerprint()
        )

    def test_custom_set_name(self, simple_allow_set, simple_spec):
        """Test compiling against a different ipset name."""
        rule_set = RuleCompiler(set_name="sandbox-allow").compile(
            simple_allow_set, simple_spec
        )
        assert rule_set.set_name == "sandbox-allow"
        assert rule_set.find("--match-set sandbox-allow dst") is not None

    def test_resolution_failure_scenario(self, simple_spec):
        """Test a host that failed to resolve simply has no addresses."""
        allow_set = ResolvedAllowSet.build(
            host_cidrs=["104.16.0.1/32"],
            provider_ranges=[],
            literal_cidrs=[],
            ports=[22, 53, 443],
            host_network_cidr="172.17.0.0/24",
        )
        rule_set = RuleCompiler().compile(allow_set, simple_spec)
        adds = [
            rule
            for rule in rule_set.rules_in(RuleSection.ALLOW_LIST)
            if rule.args[0] == "add"
        ]
        assert [rule.args[2] for rule in adds] == ["104.16.0.1/32"]
