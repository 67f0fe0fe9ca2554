"""
SMUGGLER Core Engine

Probe orchestration for a single target:
- Baseline capture
- Technique dispatch in a fixed order
- Two-step poisoning protocol
- Optional advisory merge
- Verdict aggregation

One orchestrator drives one target on one logical thread of control.
Scan several targets with several orchestrators; they share nothing.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from rich.console import Console

from smuggler.ai.advisor import AdvisoryService, ResponseSummary
from smuggler.scanners.detector import DEFAULT_THRESHOLD, ConfidenceDetector
from smuggler.scanners.payloads import (
    DEFAULT_POISON_PREFIX,
    ProbeBuilder,
    default_smuggled_request,
    poison_token,
)

from .errors import AdvisoryUnavailable, ConfigError
from .response_model import diff_responses
from .transport import RawSender
from .types import DecodedResponse, ScanReport, Technique, Verdict

# Canonical probe order after the baseline
PROBE_ORDER: Tuple[Technique, ...] = (
    Technique.CL_TE,
    Technique.TE_CL,
    Technique.MIXED_TE,
    Technique.OBFUSCATED_TE,
    Technique.POISONING,
)

err_console = Console(stderr=True)

# TE.CL framing variants selectable from config
TE_CL_VARIANTS = ("standard", "tab")


def _section(data: Dict[str, Any], name: str, path: Path) -> Dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"{path}: {name} must be a mapping")
    return section


@dataclass
class ScanConfig:
    """Scan configuration"""
    # Transport
    connect_timeout: float = 10.0
    write_timeout: float = 10.0
    read_timeout: float = 10.0
    tls: bool = False
    insecure: bool = False

    # Detection
    confidence_threshold: float = DEFAULT_THRESHOLD

    # Probes
    method: str = "GET"
    path: str = "/"
    headers: List[Tuple[str, str]] = field(default_factory=list)
    smuggled_request: Optional[str] = None  # None = harmless default
    obfuscations: List[str] = field(default_factory=lambda: ["cow"])
    te_cl_variant: str = "standard"  # "standard" or "tab"
    poison_prefix: str = DEFAULT_POISON_PREFIX
    follow_up_method: str = "POST"
    techniques: List[Technique] = field(default_factory=list)  # empty = all

    # Advisory
    ai_enabled: bool = False
    ai_backend: str = "openai"
    ai_model: Optional[str] = None
    ai_endpoint: Optional[str] = None
    ai_api_key: Optional[str] = None
    ai_timeout: float = 30.0

    # Output
    verbose: bool = False

    def __post_init__(self):
        for name in ("connect_timeout", "write_timeout", "read_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive")
        try:
            self.techniques = [
                t if isinstance(t, Technique) else Technique.from_name(t)
                for t in self.techniques
            ]
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if isinstance(self.headers, dict):
            self.headers = list(self.headers.items())
        if self.te_cl_variant not in TE_CL_VARIANTS:
            raise ConfigError(
                f"te_cl_variant must be one of {list(TE_CL_VARIANTS)}, got {self.te_cl_variant!r}"
            )

    @classmethod
    def from_yaml(cls, path: Path) -> "ScanConfig":
        """Load config from YAML file"""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")

        transport = _section(data, "transport", path)
        detection = _section(data, "detection", path)
        probe = _section(data, "probe", path)
        advisory = _section(data, "advisory", path)
        output = _section(data, "output", path)

        headers = probe.get("headers") or {}
        if not isinstance(headers, dict):
            raise ConfigError(f"{path}: probe.headers must be a mapping of name to value")

        return cls(
            connect_timeout=float(transport.get("connect_timeout", 10)),
            write_timeout=float(transport.get("write_timeout", 10)),
            read_timeout=float(transport.get("read_timeout", 10)),
            tls=bool(transport.get("tls", False)),
            insecure=bool(transport.get("insecure", False)),
            confidence_threshold=float(detection.get("confidence_threshold", DEFAULT_THRESHOLD)),
            method=probe.get("method", "GET"),
            path=probe.get("path", "/"),
            headers=[(str(k), str(v)) for k, v in headers.items()],
            smuggled_request=probe.get("smuggled_request"),
            obfuscations=list(probe.get("obfuscations") or ["cow"]),
            te_cl_variant=probe.get("te_cl_variant", "standard"),
            poison_prefix=probe.get("poison_prefix", DEFAULT_POISON_PREFIX),
            follow_up_method=probe.get("follow_up_method", "POST"),
            techniques=list(probe.get("techniques") or []),
            ai_enabled=bool(advisory.get("enabled", False)),
            ai_backend=advisory.get("backend", "openai"),
            ai_model=advisory.get("model"),
            ai_endpoint=advisory.get("endpoint"),
            ai_api_key=advisory.get("api_key"),
            ai_timeout=float(advisory.get("timeout", 30)),
            verbose=bool(output.get("verbose", False)),
        )

    def merged(self, **overrides: Any) -> "ScanConfig":
        """Copy with every non-None override applied (CLI flags win over file values)"""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"unknown config keys: {sorted(unknown)}")
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def plan(self) -> List[Technique]:
        """Techniques to run, always in canonical order"""
        if not self.techniques:
            return list(PROBE_ORDER)
        return [t for t in PROBE_ORDER if t in self.techniques]


class ProbeOrchestrator:
    """
    Drives one target through baseline capture and every technique probe.

    Probes never overlap. A TransportError or MalformedInputError aborts
    the scan and propagates unchanged; report() still returns whatever
    was collected before the failure, marked incomplete. Advisory
    failures never abort a scan.
    """

    name = "smuggler"

    def __init__(self,
                 target: str,
                 port: Optional[int] = None,
                 config: Optional[ScanConfig] = None,
                 sender: Optional[RawSender] = None,
                 detector: Optional[ConfidenceDetector] = None,
                 advisor: Optional[AdvisoryService] = None,
                 on_event: Optional[Callable] = None):
        self.config = config or ScanConfig()
        self.target = target
        self.port = port or (443 if self.config.tls else 80)
        self.sender = sender or RawSender(
            use_tls=self.config.tls,
            insecure_tls=self.config.insecure,
            connect_timeout=self.config.connect_timeout,
            write_timeout=self.config.write_timeout,
            read_timeout=self.config.read_timeout,
        )
        self.detector = detector or ConfidenceDetector(self.config.confidence_threshold)
        self.advisor = advisor
        self._on_event = on_event  # Callback for real-time progress

        self.builder = ProbeBuilder(
            host=target,
            port=self.port,
            method=self.config.method,
            path=self.config.path,
            headers=self.config.headers,
            use_tls=self.config.tls,
        )

        self.baseline: Optional[DecodedResponse] = None
        self._verdicts: List[Verdict] = []
        self._error: Optional[str] = None
        self._steps: Dict[Technique, Callable] = {
            Technique.CL_TE: self.probe_cl_te,
            Technique.TE_CL: self.probe_te_cl,
            Technique.MIXED_TE: self.probe_mixed_te,
            Technique.OBFUSCATED_TE: self.probe_obfuscated_te,
            Technique.POISONING: self.probe_poisoning,
        }

    @property
    def label(self) -> str:
        return f"{self.target}:{self.port}"

    def _emit(self, event: str, **kwargs) -> None:
        """Emit a progress event to the callback if registered"""
        if self._on_event:
            self._on_event(event, kwargs)

    def log(self, message: str, level: str = "info") -> None:
        """Route a message through the event callback, or to stderr"""
        if self._on_event:
            self._emit("log", message=message, level=level)
        elif self.config.verbose or level in ("warning", "error"):
            err_console.print(f"[{self.name}] {message}")

    # =========================================================================
    # RUN
    # =========================================================================

    async def run(self) -> ScanReport:
        """Baseline, then every planned technique in canonical order"""
        self._verdicts = []
        self._error = None
        self.baseline = None

        try:
            self.baseline = await self.capture_baseline()
            for technique in self.config.plan():
                self._emit("probe_start", target=self.label, technique=technique.value)
                verdict = await self._steps[technique]()
                verdict = await self._consult(verdict)
                self._verdicts.append(verdict)
                self._emit("probe_done", target=self.label, verdict=verdict)
        except Exception as e:
            # Re-raised unchanged; the partial report records why it stopped
            self._error = f"{type(e).__name__}: {e}"
            self._emit("scan_error", target=self.label, error=self._error)
            self.log(f"Scan aborted: {self._error}", level="error")
            raise

        report = self.report()
        self.log(
            f"{report.suspicious_count}/{report.total_probes} probes suspicious"
            + (f", most likely {report.most_likely_technique.value}"
               if report.most_likely_technique else "")
        )
        return report

    def report(self) -> ScanReport:
        """Report of everything collected so far, partial if the scan aborted"""
        return self.detector.build_report(self.label, self._verdicts, error=self._error)

    async def _send(self, payload: bytes) -> DecodedResponse:
        return await self.sender.send(self.target, self.port, payload)

    async def capture_baseline(self) -> DecodedResponse:
        baseline = await self._send(self.builder.baseline())
        if baseline.anomaly:
            self.log(f"Baseline decode anomaly: {baseline.anomaly}", level="warning")
        self._emit(
            "baseline",
            target=self.label,
            status=baseline.status_code,
            timing_ms=baseline.timing_ms,
            body_length=baseline.body_length,
        )
        self.log(f"Baseline: {baseline.status_code}, {baseline.body_length} bytes, "
                 f"{baseline.timing_ms:.0f}ms")
        return baseline

    def _require_baseline(self) -> DecodedResponse:
        if self.baseline is None:
            raise RuntimeError("baseline must be captured before any technique probe")
        return self.baseline

    @property
    def smuggled(self) -> str:
        return self.config.smuggled_request or default_smuggled_request(self.builder.host_header)

    # =========================================================================
    # TECHNIQUE STEPS
    # =========================================================================

    async def _weighted_probe(self, technique: Technique, payload: bytes) -> Verdict:
        baseline = self._require_baseline()
        test = await self._send(payload)
        return self.detector.analyze(technique, diff_responses(baseline, test))

    async def probe_cl_te(self) -> Verdict:
        return await self._weighted_probe(Technique.CL_TE, self.builder.cl_te(self.smuggled))

    async def probe_te_cl(self) -> Verdict:
        if self.config.te_cl_variant == "tab":
            payload = self.builder.te_cl_whitespace(self.smuggled)
        else:
            payload = self.builder.te_cl(self.smuggled)
        return await self._weighted_probe(Technique.TE_CL, payload)

    async def probe_mixed_te(self) -> Verdict:
        return await self._weighted_probe(Technique.MIXED_TE, self.builder.mixed_te(self.smuggled))

    async def probe_obfuscated_te(self) -> Verdict:
        payload = self.builder.obfuscated_te(self.smuggled, self.config.obfuscations)
        return await self._weighted_probe(Technique.OBFUSCATED_TE, payload)

    async def probe_poisoning(self) -> Verdict:
        """Smuggle a one-method-prefix, then probe on a fresh connection"""
        baseline = self._require_baseline()
        poison = self.builder.poison(self.config.poison_prefix)
        follow_up = self.builder.follow_up(self.config.follow_up_method)

        # The first connection must finish before the second opens
        await self._send(poison)
        response = await self._send(follow_up)

        token = poison_token(self.config.poison_prefix, self.config.follow_up_method)
        return self.detector.analyze_poisoning(baseline, response, token)

    # =========================================================================
    # ADVISORY
    # =========================================================================

    async def _consult(self, verdict: Verdict) -> Verdict:
        if self.advisor is None or verdict.test is None:
            return verdict
        try:
            assessment = await self.advisor.assess(
                ResponseSummary.of(self._require_baseline()),
                ResponseSummary.of(verdict.test),
                verdict.technique,
            )
        except AdvisoryUnavailable as e:
            self._emit("advisory_error", target=self.label,
                       technique=verdict.technique.value, error=str(e))
            self.log(f"Advisory unavailable for {verdict.technique.value}: {e}", level="warning")
            return verdict

        merged = verdict.with_assessment(assessment)
        self._emit("advisory", target=self.label, technique=verdict.technique.value,
                   confidence=assessment.confidence, vulnerable=assessment.is_vulnerable)
        return merged
