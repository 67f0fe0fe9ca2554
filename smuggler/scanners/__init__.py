"""
SMUGGLER Scanners

Probe construction and confidence scoring for each desync technique.
"""

from .detector import SIGNALS, ConfidenceDetector, Signal
from .payloads import (
    CHUNKED_PREFIX,
    CHUNKED_TERMINATOR,
    OBFUSCATION_PATTERNS,
    ProbeBuilder,
    default_smuggled_request,
    poison_token,
)

__all__ = [
    "ConfidenceDetector",
    "Signal",
    "SIGNALS",
    "ProbeBuilder",
    "CHUNKED_PREFIX",
    "CHUNKED_TERMINATOR",
    "OBFUSCATION_PATTERNS",
    "default_smuggled_request",
    "poison_token",
]
