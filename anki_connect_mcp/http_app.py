from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from typing import Optional
import logging
import os
import time

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
import anyio
import uvicorn

from .anki_connect import AnkiConnectClient, AnkiConnectError
from .formatting import build_search_query
from .server import AnkiMCPServer
from .sessions import SessionRegistry, SseTransport

logger = logging.getLogger('anki_connect_mcp')

DEFAULT_PORT = 45453


def create_app(server: AnkiMCPServer, registry: Optional[SessionRegistry] = None) -> Starlette:
    """Build the Starlette app serving the MCP event stream and the plain HTTP API.

    Args:
        server: MCP server whose tools are exposed over the event stream
        registry: Session table for the event stream; a fresh one is created when omitted
    """
    registry = registry if registry is not None else SessionRegistry()
    transport = SseTransport(server, registry)
    anki = server.anki

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await server.validate_tools()
        try:
            yield
        finally:
            await anki.aclose()

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({
            "status": "healthy",
            "timestamp": int(time.time() * 1000),
            "sessions": len(registry),
        })

    async def decks(request: Request) -> JSONResponse:
        try:
            names = await anki.invoke("deckNames")
        except AnkiConnectError as e:
            logger.error(f"Error listing decks: {str(e)}")
            return JSONResponse({"error": "Failed to get decks", "details": str(e)}, status_code=500)
        return JSONResponse({"decks": names})

    async def due_cards(request: Request) -> JSONResponse:
        query = build_search_query("due", request.query_params.get("deck"))
        try:
            card_ids = await anki.invoke("findCards", query=query)
            cards = await anki.invoke("cardsInfo", cards=card_ids) if card_ids else []
        except AnkiConnectError as e:
            logger.error(f"Error getting due cards: {str(e)}")
            return JSONResponse({"error": "Failed to get due cards", "details": str(e)}, status_code=500)
        return JSONResponse({
            "count": len(card_ids),
            "cards": [
                {
                    "id": card.get("cardId"),
                    "question": card.get("question"),
                    "answer": card.get("answer"),
                    "deckName": card.get("deckName"),
                    "due": card.get("due"),
                }
                for card in cards
            ],
        })

    async def add_note(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Request body must be JSON"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)
        note = {
            "deckName": body.get("deckName"),
            "modelName": body.get("modelName"),
            "fields": body.get("fields"),
            "tags": body.get("tags") or [],
        }
        try:
            note_id = await anki.invoke("addNote", note=note)
        except AnkiConnectError as e:
            logger.error(f"Error adding note: {str(e)}")
            return JSONResponse({"error": "Failed to add note", "details": str(e)}, status_code=500)
        return JSONResponse({"noteId": note_id})

    routes = [
        Route(transport.endpoint, endpoint=transport, methods=["GET"]),
        Route(transport.endpoint, endpoint=transport.handle_post_message, methods=["POST"]),
        Route("/health", endpoint=health, methods=["GET"]),
        Route("/decks", endpoint=decks, methods=["GET"]),
        Route("/due-cards", endpoint=due_cards, methods=["GET"]),
        Route("/add-note", endpoint=add_note, methods=["POST"]),
    ]
    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"],
        )
    ]
    app = Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.sessions = registry
    return app


async def serve(server: AnkiMCPServer, host: str, port: int) -> None:
    app = create_app(server)
    config = uvicorn.Config(app, host=host, port=port, log_level="info")
    logger.info(f"Anki MCP server running on http://{host}:{port}")
    logger.info(f"MCP SSE endpoint: http://{host}:{port}/sse")
    logger.info("HTTP API: GET /health, GET /decks, GET /due-cards?deck=<name>, POST /add-note")
    await uvicorn.Server(config).serve()


def main():
    host = os.getenv("ANKI_MCP_HOST", "localhost")
    port = int(os.getenv("ANKI_MCP_PORT", str(DEFAULT_PORT)))
    server = AnkiMCPServer(AnkiConnectClient.from_env())
    anyio.run(serve, server, host, port)


if __name__ == "__main__":
    main()
