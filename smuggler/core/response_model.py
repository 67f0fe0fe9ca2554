"""
SMUGGLER Response Model

Decodes raw HTTP/1.1 response bytes and computes the structural
difference between a baseline response and a probe response.

This is deliberately not a compliant HTTP parser: it reads the status
code, the header block and whatever bytes follow the first blank line,
exactly as they came off the socket. Chunked bodies are not de-chunked.
"""

from typing import List, Optional, Tuple

from .types import DecodedResponse, HeaderMap, ResponseDiff

CRLF = b"\r\n"
HEADER_END = b"\r\n\r\n"


def _parse_status(line: bytes) -> Tuple[int, Optional[str]]:
    """Status code from the second token of the status line"""
    if not line:
        return 0, "empty status line"
    parts = line.split()
    if len(parts) < 2:
        return 0, f"status line has no status code: {line[:80]!r}"
    try:
        return int(parts[1]), None
    except ValueError:
        return 0, f"non-numeric status code: {parts[1][:20]!r}"


def decode_response(raw: bytes, timing_ms: float = 0.0,
                    connection_closed: bool = False) -> DecodedResponse:
    """
    Decode raw response bytes into a DecodedResponse.

    Never raises on malformed input: an unreadable status line yields
    status_code 0 with the reason recorded in ``anomaly``. Header lines
    without a colon (or with a colon in the first position) are skipped.
    """
    if not raw:
        return DecodedResponse(
            status_code=0,
            timing_ms=timing_ms,
            connection_closed=connection_closed,
            raw=b"",
            anomaly="empty response",
        )

    head, sep, body = raw.partition(HEADER_END)
    if not sep:
        # No header terminator: everything is header block, no body
        body = b""
    lines = head.split(CRLF)

    status_code, anomaly = _parse_status(lines[0])

    pairs: List[Tuple[str, str]] = []
    for line in lines[1:]:
        colon = line.find(b":")
        if colon <= 0:
            continue
        name = line[:colon].strip().decode("latin-1")
        value = line[colon + 1:].strip().decode("latin-1")
        if name:
            pairs.append((name, value))

    return DecodedResponse(
        status_code=status_code,
        headers=HeaderMap(pairs),
        body=body,
        timing_ms=timing_ms,
        connection_closed=connection_closed,
        raw=raw,
        anomaly=anomaly,
    )


def diff_responses(baseline: DecodedResponse, test: DecodedResponse) -> ResponseDiff:
    """Compare a probe response against the baseline. Pure."""
    base_headers = baseline.headers.lower_items()
    test_headers = test.headers.lower_items()

    added = [(name, test.headers[name]) for name in test.headers
             if name.lower() not in base_headers]
    removed = [(name, baseline.headers[name]) for name in baseline.headers
               if name.lower() not in test_headers]
    modified = [(name, test.headers[name]) for name in test.headers
                if name.lower() in base_headers
                and base_headers[name.lower()] != test_headers[name.lower()]]

    return ResponseDiff(
        baseline=baseline,
        test=test,
        status_changed=baseline.status_code != test.status_code,
        old_status=baseline.status_code,
        new_status=test.status_code,
        timing_delta_ms=test.timing_ms - baseline.timing_ms,
        connection_changed=baseline.connection_closed != test.connection_closed,
        old_connection_closed=baseline.connection_closed,
        new_connection_closed=test.connection_closed,
        headers_added=HeaderMap(added),
        headers_removed=HeaderMap(removed),
        headers_modified=HeaderMap(modified),
        body_size_delta=test.body_length - baseline.body_length,
        body_changed=baseline.body != test.body,
    )


def summarize_diff(diff: ResponseDiff) -> str:
    """Numbered, human-readable list of every change in the diff"""
    changes = diff.changes
    if not changes:
        return "No differences detected"
    lines = [f"Found {len(changes)} differences:"]
    lines.extend(f"  {i}. {change}" for i, change in enumerate(changes, 1))
    return "\n".join(lines)
