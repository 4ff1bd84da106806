"""
Stdio transport: newline-delimited JSON-RPC over standard input/output.

This is the pipe-channel transport. It has no session identifier and no
HTTP semantics; the surrounding process owns its lifetime.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from io import TextIOWrapper
from typing import TextIO

import anyio

from transport.base import JSONMessage, Transport, TransportClosedError

logger = logging.getLogger(__name__)


class StdioTransport(Transport):
    """Transport over the process's stdin/stdout (or injected text streams)."""

    def __init__(self, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
        super().__init__(session_id=None)
        self._stdin_source = stdin
        self._stdout_source = stdout
        self._stdout: anyio.AsyncFile[str] | None = None
        self._reader_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._reader_task is not None:
            raise RuntimeError("Stdio transport already started")

        # Re-wrap the binary streams so encoding doesn't depend on the locale
        stdin = self._stdin_source or TextIOWrapper(sys.stdin.buffer, encoding="utf-8")
        stdout = self._stdout_source or TextIOWrapper(sys.stdout.buffer, encoding="utf-8")
        self._stdout = anyio.wrap_file(stdout)
        self._reader_task = asyncio.create_task(self._read_loop(anyio.wrap_file(stdin)))

    async def _read_loop(self, stdin: anyio.AsyncFile[str]) -> None:
        try:
            async for line in stdin:
                if not line.strip():
                    continue
                try:
                    message = json.loads(line)
                    if not isinstance(message, dict):
                        raise ValueError("JSON-RPC message must be an object")
                    await self.dispatch(message)
                except Exception as e:
                    await self.report_error(e)
        except Exception as e:
            logger.error(f"Stdio read failed: {e}")
            await self.report_error(e)
        finally:
            await self.close()

    async def send(self, message: JSONMessage) -> None:
        if self.is_closed or self._stdout is None:
            raise TransportClosedError("Stdio transport is closed")
        await self._stdout.write(json.dumps(message, separators=(",", ":")) + "\n")
        await self._stdout.flush()

    async def _teardown(self) -> None:
        task = self._reader_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
