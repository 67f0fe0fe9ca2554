"""
Raw Transport Test Suite

Runs RawSender against throwaway local asyncio servers.
"""

import asyncio
import socket
import struct

import pytest

from smuggler.core.errors import ConnectError, ProbeCancelled, TransmissionError, TransportError
from smuggler.core.transport import RawSender, build_ssl_context

RESPONSE = b"HTTP/1.1 200 OK\r\nContent-Length: 2\r\nServer: test\r\n\r\nok"


async def start_server(handler):
    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


class TestRawSender:

    @pytest.mark.asyncio
    async def test_sends_exact_bytes_and_reads_until_close(self):
        received = []

        async def handler(reader, writer):
            received.append(await reader.readuntil(b"\r\n\r\n"))
            writer.write(RESPONSE)
            await writer.drain()
            writer.close()

        server, port = await start_server(handler)
        async with server:
            payload = b"GET / HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n"
            resp = await RawSender(read_timeout=2).send("127.0.0.1", port, payload)

        assert received == [payload]
        assert resp.status_code == 200
        assert resp.headers["server"] == "test"
        assert resp.body == b"ok"
        assert resp.connection_closed is True
        assert resp.timing_ms >= 0

    @pytest.mark.asyncio
    async def test_read_deadline_is_not_an_error(self):
        release = asyncio.Event()

        async def handler(reader, writer):
            await reader.readuntil(b"\r\n\r\n")
            writer.write(RESPONSE)
            await writer.drain()
            await release.wait()
            writer.close()

        server, port = await start_server(handler)
        async with server:
            resp = await RawSender(read_timeout=0.3).send("127.0.0.1", port, b"GET / HTTP/1.1\r\n\r\n")
            release.set()

        assert resp.status_code == 200
        assert resp.connection_closed is False

    @pytest.mark.asyncio
    async def test_silent_server_yields_empty_response(self):
        release = asyncio.Event()

        async def handler(reader, writer):
            await release.wait()
            writer.close()

        server, port = await start_server(handler)
        async with server:
            resp = await RawSender(read_timeout=0.2).send("127.0.0.1", port, b"GET / HTTP/1.1\r\n\r\n")
            release.set()

        assert resp.status_code == 0
        assert resp.anomaly == "empty response"
        assert resp.connection_closed is False

    @pytest.mark.asyncio
    async def test_refused_connection_raises_connect_error(self):
        server, port = await start_server(lambda r, w: w.close())
        server.close()
        await server.wait_closed()

        with pytest.raises(ConnectError) as exc:
            await RawSender(connect_timeout=2).send("127.0.0.1", port, b"x")
        assert isinstance(exc.value, TransportError)
        assert exc.value.target == f"127.0.0.1:{port}"

    @pytest.mark.asyncio
    async def test_cancellation_raises_probe_cancelled(self):
        release = asyncio.Event()

        async def handler(reader, writer):
            await release.wait()
            writer.close()

        async def send_until_cancelled(port):
            with pytest.raises(ProbeCancelled) as exc:
                await RawSender(read_timeout=5).send("127.0.0.1", port, b"GET / HTTP/1.1\r\n\r\n")
            return exc.value

        server, port = await start_server(handler)
        async with server:
            task = asyncio.ensure_future(send_until_cancelled(port))
            await asyncio.sleep(0.1)
            task.cancel()
            err = await task
            release.set()

        assert err.target == f"127.0.0.1:{port}"
        assert isinstance(err, asyncio.CancelledError)

    @pytest.mark.asyncio
    async def test_write_timeout_raises_transmission_error(self, monkeypatch):
        release = asyncio.Event()

        async def handler(reader, writer):
            await release.wait()
            writer.close()

        async def stalled_drain(self):
            await asyncio.sleep(10)

        server, port = await start_server(handler)
        async with server:
            monkeypatch.setattr(asyncio.StreamWriter, "drain", stalled_drain)
            with pytest.raises(TransmissionError) as exc:
                await RawSender(write_timeout=0.1).send("127.0.0.1", port, b"GET / HTTP/1.1\r\n\r\n")
            monkeypatch.undo()
            release.set()

        assert "write timed out" in str(exc.value)
        assert isinstance(exc.value, TransportError)

    @pytest.mark.asyncio
    async def test_write_failure_raises_transmission_error(self, monkeypatch):
        release = asyncio.Event()

        async def handler(reader, writer):
            await release.wait()
            writer.close()

        async def broken_drain(self):
            raise BrokenPipeError("broken pipe")

        server, port = await start_server(handler)
        async with server:
            monkeypatch.setattr(asyncio.StreamWriter, "drain", broken_drain)
            with pytest.raises(TransmissionError) as exc:
                await RawSender().send("127.0.0.1", port, b"GET / HTTP/1.1\r\n\r\n")
            monkeypatch.undo()
            release.set()

        assert isinstance(exc.value.__cause__, BrokenPipeError)

    @pytest.mark.asyncio
    async def test_reset_by_peer_counts_as_close(self):
        async def handler(reader, writer):
            await reader.readuntil(b"\r\n\r\n")
            sock = writer.get_extra_info("socket")
            # Zero linger turns the close into a RST
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0))
            writer.close()

        server, port = await start_server(handler)
        async with server:
            resp = await RawSender(read_timeout=2).send("127.0.0.1", port, b"GET / HTTP/1.1\r\n\r\n")

        assert resp.connection_closed is True
        assert resp.status_code == 0

    def test_probe_cancelled_is_transport_and_cancel(self):
        err = ProbeCancelled("x", target="h:1")
        assert isinstance(err, TransportError)
        assert isinstance(err, asyncio.CancelledError)


class TestTLSContext:

    def test_secure_context_verifies(self):
        import ssl
        ctx = build_ssl_context(insecure=False)
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.minimum_version >= ssl.TLSVersion.TLSv1_2

    def test_insecure_context(self):
        import ssl
        ctx = build_ssl_context(insecure=True)
        assert ctx.verify_mode == ssl.CERT_NONE
        assert not ctx.check_hostname

    def test_plaintext_sender_has_no_context(self):
        assert RawSender(use_tls=False).ssl_context is None
        assert RawSender(use_tls=True).ssl_context is not None
