"""
SMUGGLER Core

Data model, raw transport, response decoding and probe orchestration.
"""

from .engine import ProbeOrchestrator, ScanConfig
from .errors import (
    AdvisoryUnavailable,
    ConfigError,
    ConnectError,
    MalformedInputError,
    ProbeCancelled,
    SmugglerError,
    TransmissionError,
    TransportError,
)
from .response_model import decode_response, diff_responses, summarize_diff
from .transport import RawSender
from .types import (
    DecodedResponse,
    HeaderMap,
    ResponseDiff,
    ScanReport,
    Technique,
    Verdict,
)

__all__ = [
    "ProbeOrchestrator",
    "ScanConfig",
    "RawSender",
    "decode_response",
    "diff_responses",
    "summarize_diff",
    "DecodedResponse",
    "HeaderMap",
    "ResponseDiff",
    "ScanReport",
    "Technique",
    "Verdict",
    "SmugglerError",
    "TransportError",
    "ConnectError",
    "TransmissionError",
    "ProbeCancelled",
    "MalformedInputError",
    "ConfigError",
    "AdvisoryUnavailable",
]
