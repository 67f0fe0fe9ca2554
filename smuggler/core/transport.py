"""
SMUGGLER Raw Transport

Writes exact bytes to a TCP (optionally TLS) socket and reads until the
server closes the connection or the read deadline passes.

An HTTP client library would normalize the very framing headers these
probes depend on, so nothing here goes through one.
"""

import asyncio
import ssl
import time
from typing import Optional

from .errors import ConnectError, ProbeCancelled, TransmissionError
from .response_model import decode_response
from .types import DecodedResponse

READ_CHUNK = 4096


def build_ssl_context(insecure: bool = False) -> ssl.SSLContext:
    """TLS 1.2+ client context; insecure disables certificate checks"""
    ctx = ssl.create_default_context()
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    if insecure:
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    return ctx


class RawSender:
    """
    One-shot raw request sender.

    Every send() opens its own connection and closes it before
    returning, so a single sender can be shared by independent scans.
    Failures are never retried.
    """

    def __init__(self,
                 use_tls: bool = False,
                 insecure_tls: bool = False,
                 connect_timeout: float = 10.0,
                 write_timeout: float = 10.0,
                 read_timeout: float = 10.0):
        self.use_tls = use_tls
        self.insecure_tls = insecure_tls
        self.connect_timeout = connect_timeout
        self.write_timeout = write_timeout
        self.read_timeout = read_timeout
        self._ssl_context: Optional[ssl.SSLContext] = None

    @property
    def ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.use_tls:
            return None
        if self._ssl_context is None:
            self._ssl_context = build_ssl_context(self.insecure_tls)
        return self._ssl_context

    async def send(self, host: str, port: int, payload: bytes) -> DecodedResponse:
        """
        Send payload verbatim and decode whatever comes back.

        Raises ConnectError if the connection cannot be established,
        TransmissionError if the payload cannot be written, and
        ProbeCancelled if the task is cancelled mid-flight. A read
        deadline is not an error: the bytes read so far are returned
        with connection_closed=False.
        """
        target = f"{host}:{port}"
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host, port,
                    ssl=self.ssl_context,
                    server_hostname=host if self.use_tls else None,
                ),
                timeout=self.connect_timeout,
            )
        except asyncio.CancelledError:
            raise ProbeCancelled("cancelled while connecting", target=target)
        except asyncio.TimeoutError:
            raise ConnectError(f"connect timed out after {self.connect_timeout}s", target=target)
        except (OSError, ssl.SSLError) as e:
            raise ConnectError(f"connect failed: {e}", target=target) from e

        try:
            return await self._exchange(reader, writer, payload, target)
        except asyncio.CancelledError as e:
            if isinstance(e, ProbeCancelled):
                raise
            raise ProbeCancelled("cancelled while probe was in flight", target=target)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError):
                pass

    async def _exchange(self, reader: asyncio.StreamReader,
                        writer: asyncio.StreamWriter,
                        payload: bytes, target: str) -> DecodedResponse:
        start = time.monotonic()
        try:
            writer.write(payload)
            await asyncio.wait_for(writer.drain(), timeout=self.write_timeout)
        except asyncio.TimeoutError:
            raise TransmissionError(f"write timed out after {self.write_timeout}s", target=target)
        except (OSError, ssl.SSLError) as e:
            raise TransmissionError(f"write failed: {e}", target=target) from e

        chunks = []
        last_read: Optional[float] = None
        deadline = time.monotonic() + self.read_timeout
        closed = False

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                data = await asyncio.wait_for(reader.read(READ_CHUNK), timeout=remaining)
            except asyncio.TimeoutError:
                # Server kept the connection open past the deadline
                break
            except (OSError, ssl.SSLError):
                # Reset by peer counts as a close
                closed = True
                break
            if not data:
                closed = True
                break
            chunks.append(data)
            last_read = time.monotonic()

        end = last_read if last_read is not None else time.monotonic()
        timing_ms = (end - start) * 1000.0
        return decode_response(b"".join(chunks), timing_ms=timing_ms,
                               connection_closed=closed)
