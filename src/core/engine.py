"""
Protocol engine contract and the MCP server bridge.

The router never interprets JSON-RPC itself. It hands each transport to a
ProtocolEngine via connect(); the engine installs the transport's message
handler, starts it, and replies through transport.send().
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import anyio
import mcp.types as types
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp.server.lowlevel import Server
from mcp.server.models import InitializationOptions
from mcp.shared.message import SessionMessage
from pydantic import TypeAdapter

from transport.base import JSONMessage, Transport, TransportClosedError

logger = logging.getLogger(__name__)

# JSONRPCMessage is a RootModel in some mcp releases and a bare Union in others
_jsonrpc_message = TypeAdapter(types.JSONRPCMessage)


class ProtocolEngine(Protocol):
    """Anything that can take over a transport and speak the protocol on it."""

    async def connect(self, transport: Transport) -> None: ...


class McpServerEngine:
    """Connects transports to an MCP low-level server, one server run per transport."""

    def __init__(
        self,
        server: Server,
        initialization_options: InitializationOptions | None = None,
    ) -> None:
        self.server = server
        self._initialization_options = initialization_options
        self._runs: set[asyncio.Task[None]] = set()

    @property
    def active_runs(self) -> int:
        return len(self._runs)

    async def connect(self, transport: Transport) -> None:
        read_stream_writer, read_stream = anyio.create_memory_object_stream[
            SessionMessage | Exception
        ](0)
        write_stream, write_stream_reader = anyio.create_memory_object_stream[SessionMessage](0)

        async def deliver(payload: JSONMessage) -> None:
            message = _jsonrpc_message.validate_python(payload)
            await read_stream_writer.send(SessionMessage(message))

        transport.message_handler = deliver
        # Ending the inbound stream makes server.run() return
        transport.on_close(read_stream_writer.close)

        await transport.start()

        task = asyncio.create_task(
            self._run(transport, read_stream, write_stream, write_stream_reader)
        )
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    async def _run(
        self,
        transport: Transport,
        read_stream: MemoryObjectReceiveStream[SessionMessage | Exception],
        write_stream: MemoryObjectSendStream[SessionMessage],
        write_stream_reader: MemoryObjectReceiveStream[SessionMessage],
    ) -> None:
        label = transport.session_id or "stdio"
        options = self._initialization_options or self.server.create_initialization_options()
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._pump_outgoing, transport, write_stream_reader)
                await self.server.run(read_stream, write_stream, options)
                tg.cancel_scope.cancel()
        except Exception as e:
            logger.exception(f"Protocol engine failed on transport [{label}]")
            await transport.report_error(e)
        finally:
            read_stream.close()
            write_stream.close()
            write_stream_reader.close()
            await transport.close()
            logger.debug(f"Protocol engine detached from transport [{label}]")

    async def _pump_outgoing(
        self,
        transport: Transport,
        write_stream_reader: MemoryObjectReceiveStream[SessionMessage],
    ) -> None:
        async for session_message in write_stream_reader:
            payload = session_message.message.model_dump(
                by_alias=True, mode="json", exclude_none=True
            )
            try:
                await transport.send(payload)
            except TransportClosedError:
                # Keep draining so the server never blocks on a dead peer
                logger.debug(f"Dropped message for closed transport [{transport.session_id}]")
