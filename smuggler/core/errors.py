"""
SMUGGLER Error Taxonomy

Transport and builder errors propagate to the caller unchanged.
Decode anomalies are data (see DecodedResponse.anomaly), never raised.
Advisory failures are absorbed by the orchestrator.
"""

import asyncio
from typing import Optional


class SmugglerError(Exception):
    """Base class for every error raised by smuggler"""


class TransportError(SmugglerError):
    """Network-level failure talking to the target"""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target

    def __str__(self) -> str:
        msg = super().__str__()
        if self.target:
            return f"{self.target}: {msg}"
        return msg


class ConnectError(TransportError):
    """DNS, TCP connect, TLS handshake or connect timeout failure"""


class TransmissionError(TransportError):
    """Write failure or write timeout"""


class ProbeCancelled(TransportError, asyncio.CancelledError):
    """The probe was cancelled while a connection was in flight"""


class MalformedInputError(SmugglerError, ValueError):
    """A probe builder was called with arguments it cannot frame"""


class ConfigError(SmugglerError, ValueError):
    """Invalid scan configuration"""


class AdvisoryUnavailable(SmugglerError):
    """The advisory backend could not produce an assessment"""
