"""
CLI Test Suite

Target normalization and the scan command, with the orchestrator
replaced by a stub so nothing touches the network.
"""

import json

import click
import pytest
from click.testing import CliRunner

from smuggler import __version__
from smuggler.cli import main as cli_main
from smuggler.cli.main import cli, collect_targets, normalize_target
from smuggler.core.errors import ConnectError
from smuggler.core.types import ScanReport, Technique, Verdict


# =============================================================================
# TARGETS
# =============================================================================

class TestNormalizeTarget:

    def test_https_url(self):
        t = normalize_target("https://example.com/login?x=1")
        assert (t.host, t.port, t.tls, t.path) == ("example.com", 443, True, "/login?x=1")

    def test_http_url_with_port(self):
        t = normalize_target("http://example.com:8080")
        assert (t.host, t.port, t.tls, t.path) == ("example.com", 8080, False, None)

    def test_host_port_443_is_tls(self):
        t = normalize_target("example.com:443")
        assert t.tls and t.port == 443

    def test_host_port_plain(self):
        t = normalize_target("example.com:80")
        assert not t.tls and t.port == 80

    def test_bare_host_uses_default_port(self):
        assert normalize_target("example.com").port == 443
        assert normalize_target("example.com").tls
        t = normalize_target("example.com", default_port=8000)
        assert (t.port, t.tls) == (8000, False)

    def test_forced_tls(self):
        assert normalize_target("example.com:8443", force_tls=True).tls

    def test_rejects_other_schemes(self):
        with pytest.raises(click.BadParameter):
            normalize_target("ftp://example.com")

    def test_collect_targets_dedupes_in_order(self, tmp_path):
        path = tmp_path / "targets.txt"
        path.write_text("# comment\nc.com\n\nA.com\na.com\n")
        got = collect_targets(("d.com",), "a.com", "b.com, c.com", str(path))
        assert got == ["a.com", "b.com", "c.com", "A.com", "d.com"]


# =============================================================================
# COMMANDS
# =============================================================================

def _report(target):
    verdict = Verdict(technique=Technique.CL_TE, suspicious=True, confidence=0.75,
                      rationale="Potential CL.TE desync", signals=("Backend returned 400",))
    return ScanReport.from_verdicts(target, [verdict])


class StubOrchestrator:
    """Stands in for ProbeOrchestrator; records how it was built"""

    instances = []
    fail_hosts = set()

    def __init__(self, target, port, config=None, advisor=None, on_event=None):
        self.target, self.port, self.config, self.advisor = target, port, config, advisor
        StubOrchestrator.instances.append(self)

    async def run(self):
        if self.target in self.fail_hosts:
            raise ConnectError("refused", target=self.target)
        return _report(f"{self.target}:{self.port}")

    def report(self):
        return ScanReport.from_verdicts(f"{self.target}:{self.port}", [], error="ConnectError: refused")


@pytest.fixture
def stub(monkeypatch):
    StubOrchestrator.instances = []
    StubOrchestrator.fail_hosts = set()
    monkeypatch.setattr(cli_main, "ProbeOrchestrator", StubOrchestrator)
    return StubOrchestrator


class TestScanCommand:

    def test_version(self):
        result = CliRunner().invoke(cli, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_requires_targets(self, stub):
        result = CliRunner().invoke(cli, ["scan"])
        assert result.exit_code != 0
        assert "no targets" in result.output

    def test_json_lines(self, stub):
        result = CliRunner().invoke(cli, ["scan", "http://a.com", "--json"])
        assert result.exit_code == 0, result.output
        lines = [json.loads(l) for l in result.output.splitlines() if l.startswith("{")]
        assert lines[0]["type"] == "verdict"
        assert lines[0]["technique"] == "CL.TE"
        assert lines[-1]["type"] == "report"
        assert lines[-1]["most_likely_technique"] == "CL.TE"
        assert stub.instances[0].port == 80
        assert stub.instances[0].config.tls is False

    def test_console_output(self, stub):
        result = CliRunner().invoke(cli, ["scan", "a.com", "--confidence", "0.7"])
        assert result.exit_code == 0, result.output
        assert "CL.TE" in result.output
        assert stub.instances[0].config.confidence_threshold == 0.7
        assert stub.instances[0].config.tls is True

    def test_sequential_targets_and_failure_exit_code(self, stub):
        stub.fail_hosts = {"bad.com"}
        result = CliRunner().invoke(cli, ["scan", "--targets", "bad.com,good.com", "--json"])
        assert result.exit_code == 1
        assert [i.target for i in stub.instances] == ["bad.com", "good.com"]
        reports = [json.loads(l) for l in result.output.splitlines()
                   if l.startswith("{") and '"report"' in l]
        assert reports[0]["complete"] is False
        assert reports[1]["complete"] is True

    def test_ai_flag_builds_advisor(self, stub):
        result = CliRunner().invoke(cli, ["scan", "a.com", "--ai", "--ai-backend", "ollama",
                                          "--ollama-model", "mistral", "--json"])
        assert result.exit_code == 0, result.output
        advisor = stub.instances[0].advisor
        assert advisor is not None
        assert advisor.config.model == "mistral"

    def test_config_file(self, stub, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("detection:\n  confidence_threshold: 0.9\nprobe:\n  method: POST\n")
        result = CliRunner().invoke(cli, ["scan", "a.com", "-c", str(path), "--json"])
        assert result.exit_code == 0, result.output
        assert stub.instances[0].config.confidence_threshold == 0.9
        assert stub.instances[0].config.method == "POST"

    def test_bad_config_is_a_usage_error(self, stub, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("probe:\n  headers: [a, b]\n")
        result = CliRunner().invoke(cli, ["scan", "a.com", "-c", str(path)])
        assert result.exit_code == 2
        assert "probe.headers" in result.output
        assert not stub.instances
