"""
SMUGGLER Core Types

Data classes and enums used throughout the engine.
Every record here is immutable once built; the orchestrator and
detector produce new values instead of editing old ones.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

# =============================================================================
# TECHNIQUES
# =============================================================================

class Technique(Enum):
    """Desync technique classes probed by the orchestrator"""
    CL_TE = "CL.TE"                  # Front-end uses CL, back-end uses TE
    TE_CL = "TE.CL"                  # Front-end uses TE, back-end uses CL
    MIXED_TE = "Mixed-TE"            # Conflicting TE values, one chosen per tier
    OBFUSCATED_TE = "Obfuscated-TE"  # Non-standard TE only one tier honors
    POISONING = "CL.TE-Poison"       # Two-step socket poisoning

    @property
    def explanation(self) -> str:
        """One-paragraph description of the desync this technique targets"""
        return {
            Technique.CL_TE: (
                "The front-end honors Content-Length while the back-end honors "
                "Transfer-Encoding. Bytes after the chunked terminator stay in the "
                "back-end socket and prefix the next request."
            ),
            Technique.TE_CL: (
                "The front-end honors Transfer-Encoding while the back-end honors "
                "Content-Length. The back-end stops reading early and treats the "
                "rest of the chunked body as a new request."
            ),
            Technique.MIXED_TE: (
                "Conflicting Transfer-Encoding headers make each tier pick a "
                "different encoding for the same message."
            ),
            Technique.OBFUSCATED_TE: (
                "A malformed Transfer-Encoding value is honored by one tier and "
                "ignored by the other, reducing the desync to CL.TE or TE.CL."
            ),
            Technique.POISONING: (
                "A smuggled request prefix is left in the back-end socket and "
                "corrupts the next request on that connection."
            ),
        }[self]

    @classmethod
    def from_name(cls, name: str) -> "Technique":
        """Look up a technique by value ('CL.TE') or member name ('cl_te')"""
        for technique in cls:
            if name == technique.value or name.upper().replace("-", "_") == technique.name:
                return technique
        raise ValueError(f"Unknown technique: {name}")


# =============================================================================
# HEADERS
# =============================================================================

class HeaderMap(Mapping[str, str]):
    """
    Read-only case-insensitive header mapping.

    Keys keep the case last seen on the wire; lookups ignore case.
    A repeated header name keeps the last value.
    """

    __slots__ = ("_items",)

    def __init__(self, items: Optional[Iterable[Tuple[str, str]]] = None):
        store: Dict[str, Tuple[str, str]] = {}
        if isinstance(items, Mapping):
            items = items.items()
        for key, value in items or ():
            store[key.lower()] = (key, value)
        self._items = store

    def __getitem__(self, key: str) -> str:
        return self._items[key.lower()][1]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._items

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def lower_items(self) -> Dict[str, str]:
        """Header values keyed by lower-cased name"""
        return {k: v for k, (_, v) in self._items.items()}

    def __eq__(self, other: object) -> bool:
        if isinstance(other, HeaderMap):
            return self.lower_items() == other.lower_items()
        if isinstance(other, Mapping):
            return self.lower_items() == HeaderMap(other.items()).lower_items()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self.lower_items().items()))

    def __repr__(self) -> str:
        return f"HeaderMap({dict(self.items())!r})"


# =============================================================================
# RESPONSES
# =============================================================================

@dataclass(frozen=True)
class DecodedResponse:
    """A raw HTTP/1.1 response as read off the socket"""
    status_code: int
    headers: HeaderMap = field(default_factory=HeaderMap)
    body: bytes = b""
    timing_ms: float = 0.0
    connection_closed: bool = False
    raw: bytes = b""
    anomaly: Optional[str] = None  # set when the status line could not be read

    @property
    def body_length(self) -> int:
        return len(self.body)

    @property
    def text(self) -> str:
        return self.raw.decode("latin-1")


@dataclass(frozen=True)
class ResponseDiff:
    """Field-by-field comparison of a test response against the baseline"""
    baseline: DecodedResponse
    test: DecodedResponse
    status_changed: bool
    old_status: int
    new_status: int
    timing_delta_ms: float
    connection_changed: bool
    old_connection_closed: bool
    new_connection_closed: bool
    headers_added: HeaderMap
    headers_removed: HeaderMap
    headers_modified: HeaderMap
    body_size_delta: int
    body_changed: bool

    # Timing noise below this is not reported as a change line
    TIMING_REPORT_MS = 100.0

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def changes(self) -> Tuple[str, ...]:
        """Human-readable description of every difference"""
        lines: List[str] = []
        if self.status_changed:
            lines.append(f"Status code changed: {self.old_status} -> {self.new_status}")
        if abs(self.timing_delta_ms) > self.TIMING_REPORT_MS and self.baseline.timing_ms > 0:
            pct = self.timing_delta_ms / self.baseline.timing_ms * 100
            lines.append(
                f"Timing changed: {self.baseline.timing_ms:.0f}ms -> "
                f"{self.test.timing_ms:.0f}ms ({self.timing_delta_ms:+.0f}ms, {pct:+.1f}%)"
            )
        if self.connection_changed:
            lines.append(
                f"Connection behavior changed: closed={self.old_connection_closed} -> "
                f"closed={self.new_connection_closed}"
            )
        if self.headers_added:
            lines.append(f"Headers added: {sorted(self.headers_added)}")
        if self.headers_removed:
            lines.append(f"Headers removed: {sorted(self.headers_removed)}")
        if self.headers_modified:
            lines.append(f"Headers modified: {sorted(self.headers_modified)}")
        if self.body_changed:
            lines.append(
                f"Body changed: {self.baseline.body_length} bytes -> "
                f"{self.test.body_length} bytes (diff: {self.body_size_delta:+d})"
            )
        return tuple(lines)


# =============================================================================
# ADVISORY
# =============================================================================

def _text_items(value) -> Tuple[str, ...]:
    """List field of an LLM answer; a lone string or scalar counts as one item"""
    if value is None or value == "":
        return ()
    if isinstance(value, (str, int, float, bool)):
        return (str(value),)
    if isinstance(value, Mapping):
        return tuple(str(v) for v in value.values())
    return tuple(str(v) for v in value)


@dataclass(frozen=True)
class Assessment:
    """Advisory opinion about one probe, produced by an AdvisoryService"""
    is_vulnerable: bool
    confidence: float
    reasoning: str = ""
    signals: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    techniques: Tuple[str, ...] = ()
    source: str = ""

    @classmethod
    def from_dict(cls, data: Mapping, source: str = "") -> "Assessment":
        """Build from the JSON object returned by an LLM backend"""
        if not isinstance(data, Mapping):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        try:
            confidence = float(data.get("confidence", 0.0) or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        # Some models answer in percent
        if confidence > 1.0:
            confidence = confidence / 100.0
        return cls(
            is_vulnerable=bool(data.get("is_vulnerable", False)),
            confidence=min(max(confidence, 0.0), 1.0),
            reasoning=str(data.get("reasoning", "") or ""),
            signals=_text_items(data.get("suspicious_signals")),
            recommendations=_text_items(data.get("recommendations")),
            techniques=_text_items(data.get("techniques")),
            source=source,
        )


# =============================================================================
# VERDICTS & REPORTS
# =============================================================================

@dataclass(frozen=True)
class Verdict:
    """Detector output for one technique probe"""
    technique: Technique
    suspicious: bool
    confidence: float
    rationale: str
    signals: Tuple[str, ...] = ()
    strong_signal: bool = False
    threshold: float = 0.5
    baseline: Optional[DecodedResponse] = None
    test: Optional[DecodedResponse] = None
    assessment: Optional[Assessment] = None

    def with_assessment(self, assessment: Assessment) -> "Verdict":
        """
        Fold an advisory assessment into a new verdict.

        Confidence only ever rises and a suspicious verdict is never
        cleared; a weaker assessment is attached but changes nothing.
        """
        confidence = max(self.confidence, assessment.confidence)
        suspicious = self.suspicious or assessment.is_vulnerable
        rationale = self.rationale
        if assessment.reasoning:
            label = assessment.source or "advisory"
            rationale = f"{rationale}\n[{label}] {assessment.reasoning}"
        return dataclasses.replace(
            self,
            confidence=confidence,
            suspicious=suspicious,
            rationale=rationale,
            assessment=assessment,
        )

    def to_dict(self) -> Dict:
        data = {
            "technique": self.technique.value,
            "suspicious": self.suspicious,
            "confidence": round(self.confidence, 4),
            "strong_signal": self.strong_signal,
            "threshold": self.threshold,
            "signals": list(self.signals),
            "rationale": self.rationale,
        }
        if self.test is not None:
            data["status_code"] = self.test.status_code
            data["timing_ms"] = round(self.test.timing_ms, 2)
            data["connection_closed"] = self.test.connection_closed
        if self.assessment is not None:
            data["assessment"] = {
                "source": self.assessment.source,
                "is_vulnerable": self.assessment.is_vulnerable,
                "confidence": self.assessment.confidence,
                "reasoning": self.assessment.reasoning,
                "recommendations": list(self.assessment.recommendations),
            }
        return data


@dataclass(frozen=True)
class ScanReport:
    """Aggregated outcome of one target scan"""
    target: str
    verdicts: Tuple[Verdict, ...] = ()
    complete: bool = True
    error: Optional[str] = None

    @classmethod
    def from_verdicts(cls, target: str, verdicts: Iterable[Verdict],
                      error: Optional[str] = None) -> "ScanReport":
        return cls(
            target=target,
            verdicts=tuple(verdicts),
            complete=error is None,
            error=error,
        )

    @property
    def total_probes(self) -> int:
        return len(self.verdicts)

    @property
    def suspicious(self) -> List[Verdict]:
        return [v for v in self.verdicts if v.suspicious]

    @property
    def suspicious_count(self) -> int:
        return len(self.suspicious)

    @property
    def most_likely(self) -> Optional[Verdict]:
        """Highest-confidence suspicious verdict, first in probe order on ties"""
        best: Optional[Verdict] = None
        for verdict in self.suspicious:
            if best is None or verdict.confidence > best.confidence:
                best = verdict
        return best

    @property
    def most_likely_technique(self) -> Optional[Technique]:
        best = self.most_likely
        return best.technique if best else None

    def to_dict(self) -> Dict:
        return {
            "target": self.target,
            "complete": self.complete,
            "error": self.error,
            "total_probes": self.total_probes,
            "suspicious_count": self.suspicious_count,
            "most_likely_technique": (
                self.most_likely_technique.value if self.most_likely_technique else None
            ),
            "verdicts": [v.to_dict() for v in self.verdicts],
        }
