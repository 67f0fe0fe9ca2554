"""
SMUGGLER Confidence Detector

Turns a ResponseDiff into a Verdict using a declarative, per-technique
signal table. Every fired signal adds its weight; the sum is clamped to
1.0. A single gate decides suspicion for all weighted techniques:

    suspicious = (at least one strong signal fired) and confidence >= threshold

The poisoning technique is not weighted. Its follow-up response is
searched for the corrupted method token instead.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from smuggler.core.types import (
    DecodedResponse,
    ResponseDiff,
    ScanReport,
    Technique,
    Verdict,
)

DEFAULT_THRESHOLD = 0.5

# Timing / size cutoffs in ms and bytes, not normalized for latency
FASTER_MS = 30.0
SLOWER_MS = 1000.0
BODY_SHRINK_BYTES = 200

UNRECOGNIZED_METHOD_PHRASE = "unrecognized method"

# Poisoning confidences
POISON_TOKEN_CONFIDENCE = 1.0
POISON_PHRASE_CONFIDENCE = 0.9
POISON_STATUS_CONFIDENCE = 0.4

_CL_TE_FAMILY = (Technique.CL_TE, Technique.OBFUSCATED_TE)
_WEIGHTED = (Technique.CL_TE, Technique.TE_CL, Technique.MIXED_TE, Technique.OBFUSCATED_TE)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


# =============================================================================
# SIGNAL TABLE
# =============================================================================

@dataclass(frozen=True)
class Signal:
    """One row of the detection table"""
    name: str
    weights: Dict[Technique, float]
    strong: bool
    predicate: Callable[[ResponseDiff], bool]
    describe: Callable[[ResponseDiff], str]

    def weight_for(self, technique: Technique) -> Optional[float]:
        return self.weights.get(technique)


def _weights(standard: Optional[float] = None,
             mixed: Optional[float] = None,
             only: Iterable[Technique] = (Technique.CL_TE, Technique.TE_CL,
                                          Technique.OBFUSCATED_TE)) -> Dict[Technique, float]:
    table = {}
    if standard is not None:
        for technique in only:
            table[technique] = standard
    if mixed is not None:
        table[Technique.MIXED_TE] = mixed
    return table


SIGNALS: Tuple[Signal, ...] = (
    Signal(
        name="status_400",
        weights=_weights(0.25, 0.30),
        strong=True,
        predicate=lambda d: d.status_changed and d.new_status == 400,
        describe=lambda d: f"Backend returned 400 (was {d.old_status}): request rejected as malformed",
    ),
    Signal(
        name="status_5xx",
        weights=_weights(0.35, 0.40),
        strong=True,
        predicate=lambda d: d.status_changed and d.new_status >= 500,
        describe=lambda d: f"Backend returned {d.new_status} (was {d.old_status}): possible parser confusion",
    ),
    Signal(
        name="connection_closed",
        weights=_weights(0.20, 0.20),
        strong=True,
        predicate=lambda d: d.connection_changed and d.new_connection_closed,
        describe=lambda d: "Server closed the connection where the baseline kept it open",
    ),
    Signal(
        name="faster",
        weights=_weights(0.15, only=_CL_TE_FAMILY),
        strong=False,
        predicate=lambda d: d.timing_delta_ms <= -FASTER_MS,
        describe=lambda d: f"Response {-d.timing_delta_ms:.0f}ms faster (possible early rejection)",
    ),
    Signal(
        name="slower",
        weights=_weights(0.25, only=(Technique.TE_CL,)),
        strong=False,
        predicate=lambda d: d.timing_delta_ms > SLOWER_MS,
        describe=lambda d: f"Response {d.timing_delta_ms:.0f}ms slower (back-end waiting for more body)",
    ),
    Signal(
        name="body_shrank",
        weights=_weights(0.15, only=_CL_TE_FAMILY),
        strong=False,
        predicate=lambda d: d.body_changed and d.body_size_delta <= -BODY_SHRINK_BYTES,
        describe=lambda d: f"Response body {-d.body_size_delta} bytes smaller (possible content absorption)",
    ),
    Signal(
        name="te_removed",
        weights=_weights(0.10, only=_CL_TE_FAMILY),
        strong=False,
        predicate=lambda d: "Transfer-Encoding" in d.headers_removed,
        describe=lambda d: "Transfer-Encoding header removed by back-end",
    ),
    Signal(
        name="cl_added",
        weights=_weights(0.10, only=(Technique.TE_CL,)),
        strong=False,
        predicate=lambda d: "Content-Length" in d.headers_added,
        describe=lambda d: "Content-Length header added by back-end",
    ),
    Signal(
        name="body_changed",
        weights=_weights(0.10, only=(Technique.TE_CL,)),
        strong=False,
        predicate=lambda d: d.body_changed,
        describe=lambda d: f"Response body changed by {d.body_size_delta:+d} bytes",
    ),
)


# =============================================================================
# DETECTOR
# =============================================================================

class ConfidenceDetector:
    """
    Weighted-signal detector.

    Stateless apart from the threshold, so one instance can score any
    number of probes.
    """

    def __init__(self, threshold: float = DEFAULT_THRESHOLD,
                 signals: Tuple[Signal, ...] = SIGNALS):
        self.threshold = clamp(threshold)
        self.signals = signals

    def set_threshold(self, threshold: float) -> "ConfidenceDetector":
        self.threshold = clamp(threshold)
        return self

    def analyze(self, technique: Technique, diff: ResponseDiff) -> Verdict:
        """Score one weighted-technique probe"""
        if technique not in _WEIGHTED:
            raise ValueError(f"{technique.value} is not scored by the signal table")

        total = 0.0
        strong = False
        fired: List[str] = []
        for signal in self.signals:
            weight = signal.weight_for(technique)
            if weight is None or not signal.predicate(diff):
                continue
            total += weight
            strong = strong or signal.strong
            fired.append(signal.describe(diff))

        # Rounded so that e.g. 0.25 + 0.15 + 0.10 compares equal to 0.5
        confidence = clamp(round(total, 6))
        suspicious = self.is_suspicious(strong, confidence)
        return Verdict(
            technique=technique,
            suspicious=suspicious,
            confidence=confidence,
            rationale=self._rationale(technique, suspicious, confidence, strong, fired),
            signals=tuple(fired),
            strong_signal=strong,
            threshold=self.threshold,
            baseline=diff.baseline,
            test=diff.test,
        )

    def is_suspicious(self, strong: bool, confidence: float) -> bool:
        """The one gating rule shared by every weighted technique"""
        return strong and confidence >= self.threshold

    def _rationale(self, technique: Technique, suspicious: bool, confidence: float,
                   strong: bool, fired: List[str]) -> str:
        if suspicious:
            lines = [
                f"Potential {technique.value} desync detected "
                f"(confidence: {confidence:.1%} >= {self.threshold:.1%})",
                "Detection signals:",
            ]
            lines.extend(f"  - {s}" for s in fired)
            lines.append("")
            lines.append(f"Technique: {technique.explanation}")
            return "\n".join(lines)

        if not fired:
            return (f"No signals fired (confidence: {confidence:.1%}, "
                    f"threshold: {self.threshold:.1%})")

        reason = "no strong signal fired" if not strong else "below threshold"
        lines = [
            f"Insufficient evidence, {reason} "
            f"(confidence: {confidence:.1%}, threshold: {self.threshold:.1%})",
            "Fired signals:",
        ]
        lines.extend(f"  - {s}" for s in fired)
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Poisoning
    # -------------------------------------------------------------------------

    def analyze_poisoning(self, baseline: DecodedResponse,
                          follow_up: DecodedResponse, token: str) -> Verdict:
        """
        Score the follow-up response of the two-step poisoning probe.

        Independent of the threshold: the corrupted method token or the
        generic unrecognized-method phrase is conclusive, a bare status
        change is reported as a weaker non-strong finding.
        """
        raw = follow_up.raw.decode("latin-1").lower()
        signals: List[str] = []

        if token and token.lower() in raw:
            signals.append(f"Follow-up response contains corrupted method {token!r}")
            confidence, strong = POISON_TOKEN_CONFIDENCE, True
        elif UNRECOGNIZED_METHOD_PHRASE in raw:
            signals.append("Follow-up response reports an unrecognized method")
            confidence, strong = POISON_PHRASE_CONFIDENCE, True
        elif follow_up.status_code != baseline.status_code:
            signals.append(
                f"Follow-up status {follow_up.status_code} differs from baseline "
                f"{baseline.status_code}"
            )
            confidence, strong = POISON_STATUS_CONFIDENCE, False
        else:
            return Verdict(
                technique=Technique.POISONING,
                suspicious=False,
                confidence=0.0,
                rationale=(f"Follow-up response shows no sign of poisoning "
                           f"(token {token!r} absent, status {follow_up.status_code})"),
                threshold=self.threshold,
                baseline=baseline,
                test=follow_up,
            )

        lines = [
            f"Potential {Technique.POISONING.value} desync detected "
            f"(confidence: {confidence:.1%})",
            "Detection signals:",
        ]
        lines.extend(f"  - {s}" for s in signals)
        lines.append("")
        lines.append(f"Technique: {Technique.POISONING.explanation}")
        return Verdict(
            technique=Technique.POISONING,
            suspicious=True,
            confidence=confidence,
            rationale="\n".join(lines),
            signals=tuple(signals),
            strong_signal=strong,
            threshold=self.threshold,
            baseline=baseline,
            test=follow_up,
        )

    def build_report(self, target: str, verdicts: Iterable[Verdict],
                     error: Optional[str] = None) -> ScanReport:
        return ScanReport.from_verdicts(target, verdicts, error=error)
