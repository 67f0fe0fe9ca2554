"""
Reporter Test Suite

Console rendering and JSON-lines output of ScanReports.
"""

import io
import json

from rich.console import Console

from smuggler.core.response_model import decode_response
from smuggler.core.types import ScanReport, Technique, Verdict
from smuggler.reporters import ConsoleReporter, JSONLinesWriter

RESP = decode_response(b"HTTP/1.1 400 Bad Request\r\n\r\n", timing_ms=7, connection_closed=True)


def _report(error=None):
    verdicts = [
        Verdict(technique=Technique.CL_TE, suspicious=True, confidence=0.75,
                rationale="Potential CL.TE desync [x]", signals=("Backend returned 400",),
                strong_signal=True, test=RESP),
        Verdict(technique=Technique.TE_CL, suspicious=False, confidence=0.0,
                rationale="No signals fired"),
    ]
    return ScanReport.from_verdicts("example.com:443", verdicts, error=error)


class TestJSONLines:

    def test_one_line_per_verdict_then_report(self):
        out = io.StringIO()
        JSONLinesWriter(out).write_report(_report())
        lines = [json.loads(l) for l in out.getvalue().splitlines()]
        assert [l["type"] for l in lines] == ["verdict", "verdict", "report"]
        assert lines[0]["status_code"] == 400
        assert lines[0]["connection_closed"] is True
        assert lines[2]["suspicious_count"] == 1
        assert lines[2]["most_likely_technique"] == "CL.TE"
        assert "verdicts" not in lines[2]


class TestConsoleReporter:

    def _render(self, report, verbose=False):
        buf = io.StringIO()
        ConsoleReporter(Console(file=buf, width=120), verbose=verbose).render(report)
        return buf.getvalue()

    def test_render_summary_and_rationale(self):
        text = self._render(_report())
        assert "SUSPICIOUS" in text
        assert "Most likely: CL.TE" in text
        assert "Potential CL.TE desync [x]" in text
        assert "No signals fired" not in text

    def test_verbose_shows_every_rationale(self):
        assert "No signals fired" in self._render(_report(), verbose=True)

    def test_aborted_scan(self):
        text = self._render(_report(error="ConnectError: refused"))
        assert "Scan aborted: ConnectError: refused" in text
