"""
SMUGGLER - HTTP Request Smuggling Desync Probe Engine

Sends deliberately ambiguous HTTP/1.1 messages (CL.TE, TE.CL, Mixed-TE,
Obfuscated-TE, socket poisoning) and scores the differential against a
clean baseline.
"""

__version__ = "1.0.0"
__author__ = "SMUGGLER"

from smuggler.core.engine import ProbeOrchestrator, ScanConfig
from smuggler.core.types import DecodedResponse, ResponseDiff, ScanReport, Technique, Verdict

__all__ = [
    "ProbeOrchestrator",
    "ScanConfig",
    "DecodedResponse",
    "ResponseDiff",
    "ScanReport",
    "Technique",
    "Verdict",
    "__version__",
]
