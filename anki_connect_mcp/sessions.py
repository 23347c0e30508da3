"""
Server-sent events transport with an explicitly owned session table.

Each ``GET`` on the endpoint opens one event stream and one MCP session.
The client is told where to post its messages through the first ``endpoint``
event; every follow-up ``POST`` carries the session id in its query string
and is routed to that session's inbound stream.
"""

from typing import Dict, Optional
from urllib.parse import quote
from uuid import uuid4
import logging

from anyio.streams.memory import MemoryObjectSendStream
from mcp import types
from mcp.shared.message import SessionMessage
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import Receive, Scope, Send
import anyio

logger = logging.getLogger('anki_connect_mcp')

KEEPALIVE_SECONDS = 30


class SessionRegistry:
    """Maps session ids to the write end of each session's inbound stream"""

    def __init__(self):
        self._sessions: Dict[str, MemoryObjectSendStream] = {}

    def open(self, writer: MemoryObjectSendStream) -> str:
        session_id = uuid4().hex
        self._sessions[session_id] = writer
        logger.debug(f"Opened session {session_id} ({len(self._sessions)} active)")
        return session_id

    def get(self, session_id: str) -> Optional[MemoryObjectSendStream]:
        return self._sessions.get(session_id)

    def close(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.debug(f"Closed session {session_id} ({len(self._sessions)} active)")

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


class SseTransport:
    """ASGI app for the event stream plus a request handler for posted messages.

    The instance itself is the ``GET`` endpoint; ``handle_post_message`` is
    the ``POST`` endpoint for the same path.
    """

    def __init__(self, server, registry: SessionRegistry, endpoint: str = "/sse"):
        self.server = server
        self.registry = registry
        self.endpoint = endpoint

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
        write_stream, write_stream_reader = anyio.create_memory_object_stream(0)
        sse_stream_writer, sse_stream_reader = anyio.create_memory_object_stream(0)

        session_id = self.registry.open(read_stream_writer)
        root_path = scope.get("root_path", "").rstrip("/")
        post_uri = f"{quote(root_path + self.endpoint)}?sessionId={session_id}"
        logger.info(f"SSE connection started for session {session_id}")

        async def sse_writer():
            async with sse_stream_writer, write_stream_reader:
                try:
                    await sse_stream_writer.send({"event": "endpoint", "data": post_uri})
                    async for session_message in write_stream_reader:
                        await sse_stream_writer.send({
                            "event": "message",
                            "data": session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                        })
                except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                    logger.info(f"Write to session {session_id} failed, dropping it")
                    self.registry.close(session_id)

        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self.server.run_session, read_stream, write_stream)
                response = EventSourceResponse(
                    content=sse_stream_reader,
                    data_sender_callable=sse_writer,
                    ping=KEEPALIVE_SECONDS,
                )
                await response(scope, receive, send)
                tg.cancel_scope.cancel()
        finally:
            self.registry.close(session_id)
            await read_stream_writer.aclose()
            logger.info(f"SSE connection closed for session {session_id}")

    async def handle_post_message(self, request: Request) -> Response:
        session_id = request.query_params.get("sessionId")
        if not session_id:
            return JSONResponse({"error": "Missing sessionId"}, status_code=400)

        writer = self.registry.get(session_id)
        if writer is None:
            logger.warning(f"Message for unknown session {session_id}")
            return JSONResponse({"error": "Session not found"}, status_code=404)

        body = await request.body()
        try:
            message = types.JSONRPCMessage.model_validate_json(body)
        except ValidationError as e:
            logger.warning(f"Could not parse message for session {session_id}: {str(e)}")
            return JSONResponse({"error": "Could not parse message"}, status_code=400)

        try:
            await writer.send(SessionMessage(message))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError):
            self.registry.close(session_id)
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return Response("Accepted", status_code=202)

