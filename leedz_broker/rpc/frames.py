"""Line-delimited JSON-RPC frame loop over a duplex byte stream.

The host agent reads the primary stream (stdout) as JSON-RPC, so nothing but
one-line JSON values may ever be written to it.  This module:

1. Reads newline-terminated frames from a blocking binary stream in a daemon
   thread, so the event loop never blocks on stdin and an open stdin never
   keeps the process alive after a shutdown signal.
2. Drops anything that doesn't look like JSON, and answers malformed JSON with
   a parse error only when the line was plausibly a JSON-RPC attempt.
3. Runs each request as its own task, and serializes every reply through a
   single lock so two responses can never interleave on the wire.
"""

import asyncio
import json
import logging
import sys
import threading
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any, BinaryIO

import anyio

from leedz_broker.rpc.dispatcher import Dispatcher
from leedz_broker.rpc.types import PARSE_ERROR, error_response

logger = logging.getLogger(__name__)

_DROP = object()
_UNPARSEABLE = object()

# Substrings that make a malformed line worth answering with -32700
_JSONRPC_MARKERS = ('"jsonrpc"', '"method"')


async def read_lines(stream: BinaryIO) -> AsyncIterator[bytes]:
    """Yield raw lines from a blocking binary stream until EOF.

    A daemon thread does the blocking reads and pushes lines into a memory
    stream.  When the consumer stops early the thread is left blocked in
    ``readline``; being a daemon, it never holds up interpreter exit.
    """
    loop = asyncio.get_running_loop()
    line_writer, line_reader = anyio.create_memory_object_stream[bytes](32)

    def _reader() -> None:
        try:
            while True:
                line = stream.readline()
                if not line:
                    logger.info("Protocol stream closed (EOF)")
                    break
                asyncio.run_coroutine_threadsafe(line_writer.send(line), loop).result()
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            logger.debug("Line consumer went away; reader thread exiting")
        except RuntimeError:
            # Event loop already closed during shutdown
            return
        except Exception:
            logger.exception("stdin reader thread crashed")
        try:
            loop.call_soon_threadsafe(line_writer.close)
        except RuntimeError:
            pass

    threading.Thread(target=_reader, daemon=True, name="protocol-stdin-reader").start()
    async with line_reader:
        async for line in line_reader:
            yield line


def bind_stdio() -> tuple[BinaryIO, BinaryIO]:
    """Claim stdin/stdout for the protocol and point ``sys.stdout`` at stderr.

    After this call a stray ``print()`` anywhere in the process lands on the
    diagnostics sink instead of corrupting the JSON-RPC stream.

    Input goes through a private reader on the stdin descriptor: the reader
    thread may still be blocked in it at interpreter exit, and it must not hold
    the lock of ``sys.stdin.buffer`` when that gets closed.
    """
    protocol_in = open(sys.stdin.fileno(), "rb", closefd=False)
    protocol_out = sys.stdout.buffer
    sys.stdout = sys.stderr
    return protocol_in, protocol_out


class FrameWriter:
    """Writes one JSON value per line, atomically, to a blocking binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._lock = anyio.Lock()

    async def write(self, payload: dict[str, Any] | list[dict[str, Any]]) -> None:
        data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n").encode(
            "utf-8"
        )
        async with self._lock:
            await anyio.to_thread.run_sync(self._write_blocking, data)

    def _write_blocking(self, data: bytes) -> None:
        self._stream.write(data)
        self._stream.flush()


class FrameLoop:
    """Demultiplexes inbound frames to the dispatcher and writes the replies.

    Requests are decoded in arrival order and handled concurrently; replies
    are written in completion order, each one correlated by its ``id``.

    Usage::

        stdin, stdout = bind_stdio()
        loop = FrameLoop(dispatcher, FrameWriter(stdout))
        await loop.run(read_lines(stdin))
    """

    def __init__(self, dispatcher: Dispatcher, writer: FrameWriter) -> None:
        self._dispatcher = dispatcher
        self._writer = writer
        self._read_scope: anyio.CancelScope | None = None
        self._stopped = False

    def stop(self) -> None:
        """Stop reading new frames; in-flight requests still get their replies."""
        self._stopped = True
        self._dispatcher.begin_shutdown()
        if self._read_scope is not None:
            self._read_scope.cancel()

    async def run(self, lines: AsyncIterable[bytes | str]) -> None:
        """Read frames until EOF or stop(), then drain in-flight handlers."""
        async with anyio.create_task_group() as tg:
            with anyio.CancelScope() as self._read_scope:
                async for raw in lines:
                    if self._stopped:
                        break
                    message = self._decode(raw)
                    if message is _DROP:
                        continue
                    if message is _UNPARSEABLE:
                        tg.start_soon(
                            self._send, error_response(None, PARSE_ERROR, "Parse error")
                        )
                        continue
                    tg.start_soon(self._process, message)
            logger.info("Frame loop draining in-flight requests")
        self._dispatcher.begin_shutdown()
        logger.info("Frame loop stopped")

    # ── Internal ───────────────────────────────────────────────────────────────

    def _decode(self, raw: bytes | str) -> Any:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        stripped = line.strip()
        if not stripped:
            return _DROP
        if not stripped.startswith(("{", "[")):
            logger.debug("Ignoring non-JSON input: %.50s", stripped)
            return _DROP

        try:
            return json.loads(stripped)
        except json.JSONDecodeError as exc:
            logger.warning("Invalid JSON received (%s): %.100s", exc.msg, stripped)
            if any(marker in stripped for marker in _JSONRPC_MARKERS):
                return _UNPARSEABLE
            return _DROP

    async def _process(self, message: Any) -> None:
        reply = await self._dispatcher.handle(message)
        if reply is not None:
            await self._send(reply)

    async def _send(self, reply: dict[str, Any] | list[dict[str, Any]]) -> None:
        try:
            await self._writer.write(reply)
        except OSError as exc:
            logger.error("Protocol stream write failed: %s — stopping", exc)
            self.stop()
