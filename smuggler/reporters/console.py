"""
SMUGGLER Console Reporter

Renders ScanReports for a human at a terminal using rich tables and panels.
"""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from smuggler.core.types import ScanReport, Verdict


def confidence_style(verdict: Verdict) -> str:
    """Rich color for a verdict row"""
    if verdict.suspicious and verdict.confidence >= 0.75:
        return "bright_red"
    if verdict.suspicious:
        return "yellow"
    if verdict.confidence > 0:
        return "blue"
    return "dim"


class ConsoleReporter:
    """Pretty-prints scan reports"""

    def __init__(self, console: Optional[Console] = None, verbose: bool = False):
        self.console = console or Console()
        self.verbose = verbose

    def verdict_table(self, report: ScanReport) -> Table:
        table = Table(
            title=f"[bright_yellow]{report.target}[/bright_yellow]",
            show_header=True,
            header_style="bold cyan",
            border_style="bright_yellow",
            pad_edge=True,
        )
        table.add_column("Technique", style="bold green", min_width=14)
        table.add_column("Verdict", min_width=10)
        table.add_column("Confidence", justify="right")
        table.add_column("Status", justify="right")
        table.add_column("Timing", justify="right")
        table.add_column("Signals", style="white")

        for verdict in report.verdicts:
            style = confidence_style(verdict)
            status = str(verdict.test.status_code) if verdict.test else "-"
            timing = f"{verdict.test.timing_ms:.0f}ms" if verdict.test else "-"
            table.add_row(
                verdict.technique.value,
                f"[{style}]{'SUSPICIOUS' if verdict.suspicious else 'clean'}[/{style}]",
                f"[{style}]{verdict.confidence:.0%}[/{style}]",
                status,
                timing,
                escape("\n".join(verdict.signals)) or "[dim]none[/dim]",
            )
        return table

    def summary_panel(self, report: ScanReport) -> Panel:
        lines = [
            f"Probes run: [bold]{report.total_probes}[/bold]",
            f"Suspicious: [bold]{report.suspicious_count}[/bold]",
        ]
        best = report.most_likely
        if best is not None:
            lines.append(
                f"Most likely: [bold bright_red]{best.technique.value}[/bold bright_red] "
                f"({best.confidence:.0%})"
            )
        else:
            lines.append("Most likely: [dim]none[/dim]")
        if not report.complete:
            lines.append(f"[red]Scan aborted: {escape(report.error or '')}[/red]")
        border = "bright_red" if report.suspicious_count else "green"
        return Panel("\n".join(lines), title="[bold]Summary[/bold]", border_style=border)

    def render(self, report: ScanReport) -> None:
        self.console.print()
        if report.verdicts:
            self.console.print(self.verdict_table(report))
        self.console.print(self.summary_panel(report))

        shown = report.verdicts if self.verbose else report.suspicious
        for verdict in shown:
            self.console.print(Panel(
                escape(verdict.rationale),
                title=f"[bold]{verdict.technique.value}[/bold]",
                border_style=confidence_style(verdict),
            ))
