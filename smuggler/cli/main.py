"""
SMUGGLER CLI

Command-line interface for the desync probe engine.

Usage:
    smuggler scan example.com                       # TLS on 443
    smuggler scan http://example.com:8080/login     # URL decides scheme, port, path
    smuggler scan -t a.com --targets b.com,c.com    # Several targets, one after another
    smuggler scan --input-file targets.txt --json   # JSON lines on stdout
    smuggler scan example.com --ai --ai-backend ollama
"""

import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import click
from rich.console import Console
from rich.markup import escape

from smuggler import __version__
from smuggler.ai.advisor import AdvisoryConfig, LLMAdvisor
from smuggler.core.engine import ProbeOrchestrator, ScanConfig
from smuggler.core.errors import ConfigError, MalformedInputError, TransportError
from smuggler.core.types import Verdict
from smuggler.reporters import ConsoleReporter, JSONLinesWriter

console = Console()
err_console = Console(stderr=True)


# =============================================================================
# TARGETS
# =============================================================================

@dataclass(frozen=True)
class Target:
    """A normalized scan target"""
    host: str
    port: int
    tls: bool
    path: Optional[str] = None

    def __str__(self) -> str:
        scheme = "https" if self.tls else "http"
        return f"{scheme}://{self.host}:{self.port}{self.path or ''}"


def normalize_target(raw: str, default_port: int = 443, force_tls: bool = False) -> Target:
    """
    Turn user input into host, port and TLS mode.

    A URL's scheme decides TLS and its default port; ``host:port`` and bare
    hosts use TLS when the port is 443 or when forced.
    """
    raw = raw.strip()
    if not raw:
        raise click.BadParameter("empty target")

    if "://" in raw:
        parsed = urlparse(raw)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise click.BadParameter(f"unsupported target URL: {raw}")
        tls = parsed.scheme == "https" or force_tls
        try:
            port = parsed.port or (443 if parsed.scheme == "https" else 80)
        except ValueError:
            raise click.BadParameter(f"invalid port in {raw}")
        path = parsed.path or None
        if path and parsed.query:
            path = f"{path}?{parsed.query}"
        return Target(host=parsed.hostname, port=port, tls=tls, path=path)

    host, sep, port_text = raw.rpartition(":")
    if sep and port_text.isdigit() and host:
        port = int(port_text)
    else:
        host, port = raw, default_port
    return Target(host=host, port=port, tls=force_tls or port == 443)


def read_targets_file(path: Path) -> List[str]:
    """One target per line; blank lines and # comments are skipped"""
    targets = []
    with open(path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                targets.append(line)
    return targets


def collect_targets(positional, target, targets, input_file) -> List[str]:
    collected: List[str] = []
    if target:
        collected.append(target)
    if targets:
        collected.extend(t.strip() for t in targets.split(",") if t.strip())
    if input_file:
        collected.extend(read_targets_file(Path(input_file)))
    collected.extend(positional)
    # Keep first occurrence order
    return list(dict.fromkeys(collected))


# =============================================================================
# PROGRESS
# =============================================================================

def make_progress_callback(verbose: bool):
    """Render orchestrator events on stderr"""

    def _on_event(event: str, data: dict) -> None:
        if event == "baseline":
            err_console.print(
                f"  [dim]baseline[/dim] {data['status']} "
                f"{data['body_length']}B {data['timing_ms']:.0f}ms"
            )
        elif event == "probe_done":
            verdict: Verdict = data["verdict"]
            mark = "[bright_red]![/bright_red]" if verdict.suspicious else "[green]✓[/green]"
            err_console.print(
                f"  {mark} {verdict.technique.value:<14} {verdict.confidence:.0%}"
            )
        elif event == "advisory_error":
            err_console.print(
                f"  [yellow]advisory unavailable ({data['technique']}): "
                f"{escape(data['error'])}[/yellow]"
            )
        elif event == "scan_error":
            err_console.print(f"  [red]{escape(data['error'])}[/red]")
        elif event == "log" and verbose:
            err_console.print(f"  [dim]{escape(data['message'])}[/dim]")
        elif event in ("probe_start", "advisory") and verbose:
            detail = ", ".join(f"{k}={v}" for k, v in data.items() if k != "target")
            err_console.print(f"  [dim]{event}: {escape(detail)}[/dim]")

    return _on_event


# =============================================================================
# COMMANDS
# =============================================================================

@click.group()
@click.version_option(__version__, prog_name="smuggler")
def cli():
    """
    \b
    SMUGGLER - HTTP Request Smuggling Desync Probe

    \b
    QUICK START:
      smuggler scan example.com             Probe a target over TLS
      smuggler scan http://host:8080        Probe a plaintext target
    """


@cli.command()
def version():
    """Show version"""
    console.print(f"smuggler {__version__}")


@cli.command()
@click.argument("positional", nargs=-1)
@click.option("--target", "-t", help="Single target")
@click.option("--targets", help="Comma-separated targets")
@click.option("--input-file", "-i", type=click.Path(exists=True, dir_okay=False),
              help="File with one target per line")
@click.option("--port", "-p", default=443, show_default=True, help="Port for bare hosts")
@click.option("--https", "force_tls", is_flag=True, help="Force TLS")
@click.option("--insecure", is_flag=True, help="Skip TLS certificate verification")
@click.option("--confidence", type=float, default=None,
              help="Confidence threshold 0.0-1.0 (default 0.5)")
@click.option("--read-timeout", type=float, default=None, help="Read deadline in seconds")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False),
              help="YAML config file")
@click.option("--json", "json_output", is_flag=True, help="Write JSON lines to stdout")
@click.option("--ai", is_flag=True, help="Consult an LLM advisory after each probe")
@click.option("--ai-backend", type=click.Choice(["openai", "ollama", "anthropic"]),
              default=None, help="Advisory backend")
@click.option("--api-key", envvar="OPENAI_API_KEY", default=None, help="Advisory API key")
@click.option("--ollama-endpoint", default=None, help="Ollama endpoint")
@click.option("--ollama-model", default=None, help="Ollama model")
@click.option("--verbose", "-v", is_flag=True, help="Show progress and every rationale")
def scan(positional, target, targets, input_file, port, force_tls, insecure, confidence,
         read_timeout, config_path, json_output, ai, ai_backend, api_key,
         ollama_endpoint, ollama_model, verbose):
    """
    Probe targets for request smuggling.

    \b
    Each target runs: baseline, CL.TE, TE.CL, Mixed-TE, Obfuscated-TE,
    then the two-request poisoning probe. Targets are scanned one after
    another.
    """
    raw_targets = collect_targets(positional, target, targets, input_file)
    if not raw_targets:
        raise click.UsageError("no targets given")

    try:
        base = ScanConfig.from_yaml(Path(config_path)) if config_path else ScanConfig()
        base = base.merged(
            confidence_threshold=confidence,
            read_timeout=read_timeout,
            insecure=insecure or None,
            ai_enabled=ai or None,
            ai_backend=ai_backend,
            verbose=verbose or None,
        )
    except ConfigError as e:
        raise click.UsageError(str(e))

    advisor = None
    if base.ai_enabled:
        backend = base.ai_backend
        if backend == "ollama":
            advisory_config = AdvisoryConfig(
                backend=backend,
                model=ollama_model or base.ai_model,
                endpoint=ollama_endpoint or base.ai_endpoint,
                timeout=base.ai_timeout,
            )
        else:
            advisory_config = AdvisoryConfig(
                backend=backend,
                api_key=(api_key if backend == "openai" else None) or base.ai_api_key,
                model=base.ai_model,
                endpoint=base.ai_endpoint,
                timeout=base.ai_timeout,
            )
        advisor = LLMAdvisor(advisory_config)

    writer = JSONLinesWriter(sys.stdout) if json_output else None
    reporter = ConsoleReporter(console, verbose=base.verbose)
    failed = 0

    for raw in raw_targets:
        normalized = normalize_target(raw, default_port=port, force_tls=force_tls)
        cfg = base.merged(tls=normalized.tls or base.tls, path=normalized.path)
        if not json_output:
            console.print(f"\n[bold cyan]⚡ Probing {escape(str(normalized))}[/bold cyan]")

        orchestrator = ProbeOrchestrator(
            normalized.host,
            normalized.port,
            config=cfg,
            advisor=advisor,
            on_event=make_progress_callback(base.verbose),
        )
        try:
            report = asyncio.run(orchestrator.run())
        except (TransportError, MalformedInputError):
            failed += 1
            report = orchestrator.report()

        if writer:
            writer.write_report(report)
        else:
            reporter.render(report)

    if failed:
        err_console.print(f"[red]{failed} of {len(raw_targets)} targets failed[/red]")
        sys.exit(1)


# =============================================================================
# ENTRY POINT
# =============================================================================

def main():
    """Main entry point"""
    cli()


if __name__ == "__main__":
    main()
