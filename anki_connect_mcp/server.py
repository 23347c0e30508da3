from typing import Annotated, Any, Dict, List, NamedTuple, Optional, Tuple
import json
import logging
import os
import sys

from mcp.server.fastmcp import FastMCP
from pydantic import Field
import anyio

from .anki_connect import AnkiConnectClient
from .formatting import build_search_query, ease_label, format_card, group_decks

# Set up logging
logging.basicConfig(
    level=os.getenv("ANKI_MCP_LOG_LEVEL", "DEBUG").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    stream=sys.stderr
)
logger = logging.getLogger('anki_connect_mcp')

SERVER_NAME = "anki-mcp"
DETAIL_LIMIT = 5


class ToolEntry(NamedTuple):
    name: str
    description: str
    arguments: Tuple[str, ...]


TOOL_CATALOG = (
    ToolEntry("listDecks", "List all available Anki decks in your collection, grouping subdecks under their parent deck", ()),
    ToolEntry("listModels", "Get the names of all note models from Anki", ()),
    ToolEntry("getModel", "Get a model, including field and template definitions, from Anki", ("modelName",)),
    ToolEntry("addNote", "Create a new flashcard note in your Anki collection", ("deckName", "modelName", "fields", "tags")),
    ToolEntry("addNotes", "Create many notes in a deck", ("notes",)),
    ToolEntry("getDueCards", "Retrieve cards that are currently due for review, with optional deck filtering", ("deckName",)),
    ToolEntry("getNewCards", "Retrieve new cards that have not been studied yet, with optional deck filtering", ("deckName",)),
    ToolEntry("answerCard", "Answer a card review with an ease from 1 (Again) to 4 (Easy)", ("cardId", "ease")),
)

DeckFilter = Annotated[
    Optional[str],
    Field(description="Optional: filter by deck name. If omitted, cards from all decks are used"),
]


class AnkiMCPServer:
    """MCP tools, resources and prompts backed by AnkiConnect.

    Tool argument names follow AnkiConnect's camelCase note shape so that
    note objects can be forwarded without renaming.
    """

    def __init__(self, anki: AnkiConnectClient):
        logger.info(f"Initializing AnkiMCP server for AnkiConnect at {anki.url}")
        self.anki = anki
        self.mcp = FastMCP(SERVER_NAME)
        self._handlers = {
            "listDecks": self.list_decks,
            "listModels": self.list_models,
            "getModel": self.get_model,
            "addNote": self.add_note,
            "addNotes": self.add_notes,
            "getDueCards": self.get_due_cards,
            "getNewCards": self.get_new_cards,
            "answerCard": self.answer_card,
        }
        logger.info("Setting up resources...")
        self._setup_resources()
        logger.info("Setting up tools...")
        self._setup_tools()
        logger.info("Setting up prompts...")
        self._setup_prompts()
        logger.info("Server initialization complete")

    def _setup_resources(self):
        @self.mcp.resource("anki://decks", mime_type="application/json")
        async def deck_index() -> str:
            """Map of deck names to deck ids"""
            decks = await self.anki.invoke("deckNamesAndIds")
            return json.dumps(decks)

        @self.mcp.resource("anki://decks/{deck_id}", mime_type="application/json")
        async def deck_resource(deck_id: str) -> str:
            """A single deck, by id"""
            return json.dumps({"deckId": int(deck_id)})

        @self.mcp.resource("anki://models/{model_id}", mime_type="application/json")
        async def model_resource(model_id: str) -> str:
            """A note model with its fields and templates, by id"""
            logger.debug(f"Reading model resource {model_id}")
            models = await self.anki.invoke("findModelsById", modelIds=[int(model_id)])
            return json.dumps(models)

    def _setup_tools(self):
        for entry in TOOL_CATALOG:
            self.mcp.add_tool(self._handlers[entry.name], name=entry.name, description=entry.description)

    def _setup_prompts(self):
        @self.mcp.prompt()
        def study_session_prompt(deck_name: str) -> str:
            """Run a review session for a deck"""
            logger.debug(f"Creating study session prompt for deck: {deck_name}")
            return f"""Help me review the Anki deck '{deck_name}'.

Use the following tools:
- getDueCards: fetch the cards due in this deck (and getNewCards for unseen ones)
- answerCard: record my answer once I have responded

Rules:
1. Show me one card at a time and only the question side.
2. Wait for my answer before revealing the back of the card.
3. Suggest an ease (1 Again, 2 Hard, 3 Good, 4 Easy) and confirm it with me before calling answerCard.
"""

    async def validate_tools(self) -> None:
        """Check that the advertised tools match TOOL_CATALOG.

        Raises:
            RuntimeError: if a tool is missing, unexpected, or advertises different arguments
        """
        advertised = {
            tool.name: set(tool.inputSchema.get("properties", {}))
            for tool in await self.mcp.list_tools()
        }
        problems = []
        for entry in TOOL_CATALOG:
            properties = advertised.pop(entry.name, None)
            if properties is None:
                problems.append(f"{entry.name}: not registered")
            elif properties != set(entry.arguments):
                problems.append(f"{entry.name}: advertises {sorted(properties)}, expected {sorted(entry.arguments)}")
        problems.extend(f"{name}: not in catalog" for name in advertised)
        if problems:
            raise RuntimeError("Tool catalog mismatch: " + "; ".join(problems))
        logger.debug(f"Validated {len(TOOL_CATALOG)} tools")

    async def list_decks(self) -> str:
        logger.debug("Listing all decks")
        try:
            decks = await self.anki.invoke("deckNames")
        except Exception as e:
            logger.error(f"Error listing decks: {str(e)}", exc_info=True)
            raise

        top_level, children = group_decks(decks)
        lines = []
        for name in top_level:
            lines.append(f"• {name}")
            lines.extend(f"    ◦ {child}" for child in children.get(name, []))
        for root, subdecks in children.items():
            if root not in top_level:
                lines.append(f"• {root}")
                lines.extend(f"    ◦ {child}" for child in subdecks)

        logger.debug(f"Found {len(decks)} decks")
        return (
            f"📚 Found {len(decks)} decks in your Anki collection:\n\n"
            + "\n".join(lines)
            + "\n\nUse getDueCards with a specific deck name to see due cards from that deck."
        )

    async def list_models(self) -> str:
        logger.debug("Listing note models")
        try:
            models = await self.anki.invoke("modelNames")
        except Exception as e:
            logger.error(f"Error listing note models: {str(e)}", exc_info=True)
            raise
        return f"🧩 Found {len(models)} note models in your Anki collection:\n\n• " + "\n• ".join(models)

    async def get_model(
        self,
        modelName: Annotated[str, Field(description="Name of the model to get")],
    ) -> str:
        logger.debug(f"Getting model: {modelName}")
        try:
            model = await self.anki.invoke("findModelsByName", modelNames=[modelName])
        except Exception as e:
            logger.error(f"Error getting model {modelName}: {str(e)}", exc_info=True)
            raise
        return f"Here is the {modelName} model in the user's Anki collection: {json.dumps(model)}"

    async def add_note(
        self,
        deckName: Annotated[str, Field(description="Name of the deck to add note to")],
        modelName: Annotated[str, Field(description="Name of the note model/type to use")],
        fields: Annotated[Dict[str, str], Field(description="Map of fields to the value in the note model being used")],
        tags: Annotated[Optional[List[str]], Field(description="Tags to apply to the note")] = None,
    ) -> str:
        logger.debug(f"Adding note to deck {deckName} using model {modelName}")
        note = {"deckName": deckName, "modelName": modelName, "fields": fields, "tags": tags or []}
        try:
            note_id = await self.anki.invoke("addNote", note=note)
        except Exception as e:
            logger.error(f"Error adding note to deck {deckName}: {str(e)}", exc_info=True)
            raise
        logger.debug(f"Created note {note_id}")
        return (
            f"✅ Successfully created new note with ID: {note_id}\n\n"
            "The note has been added to your Anki collection and will appear in your review queue "
            "according to your deck settings."
        )

    async def add_notes(
        self,
        notes: Annotated[
            List[Dict[str, Any]],
            Field(description="Notes to create, each with deckName, modelName, fields and optional tags"),
        ],
    ) -> str:
        """Create several notes at once.

        AnkiConnect reports a note it could not add (for example a duplicate)
        as a null id; those are counted rather than treated as failures.
        """
        logger.debug(f"Adding {len(notes)} notes")
        try:
            note_ids = await self.anki.invoke("addNotes", notes=notes)
        except Exception as e:
            logger.error(f"Error adding notes: {str(e)}", exc_info=True)
            raise

        created = [str(note_id) for note_id in note_ids if note_id is not None]
        result = f"✅ Created {len(created)} of {len(notes)} notes with the following IDs: {', '.join(created)}"
        skipped = len(note_ids) - len(created)
        if skipped:
            result += f"\n⚠️ {skipped} notes could not be added (duplicate or invalid fields)"
        return result

    async def get_due_cards(self, deckName: DeckFilter = None) -> str:
        return await self._card_listing("due", deckName)

    async def get_new_cards(self, deckName: DeckFilter = None) -> str:
        return await self._card_listing("new", deckName)

    async def _card_listing(self, state: str, deck_name: Optional[str]) -> str:
        """Find cards in a state and describe the first DETAIL_LIMIT of them"""
        query = build_search_query(state, deck_name)
        logger.debug(f"Finding cards: {query}")
        in_deck = f' in deck "{deck_name}"' if deck_name else ""
        try:
            card_ids = await self.anki.invoke("findCards", query=query)
            if not card_ids:
                logger.debug(f"No cards match {query}")
                if state == "due":
                    return f"🎉 No cards are due for review{in_deck}!"
                return f"🎉 No new cards to study{in_deck}!"

            cards = await self.anki.invoke("cardsInfo", cards=card_ids[:DETAIL_LIMIT])
        except Exception as e:
            logger.error(f"Error finding {state} cards: {str(e)}", exc_info=True)
            raise

        deck_filter = f' from deck "{deck_name}"' if deck_name else " from all decks"
        if state == "due":
            summary = f"📝 Found {len(card_ids)} cards due for review{deck_filter}"
        else:
            summary = f"🆕 Found {len(card_ids)} new cards{deck_filter}"

        details = "\n\n".join(format_card(card, index) for index, card in enumerate(cards, start=1))
        result = f"{summary}\n\nShowing details for first {len(cards)} cards:\n\n{details}"
        if len(card_ids) > DETAIL_LIMIT:
            result += f"\n\n... and {len(card_ids) - DETAIL_LIMIT} more cards"
        return result

    async def answer_card(
        self,
        cardId: Annotated[int, Field(description="ID of the card being answered")],
        ease: Annotated[int, Field(description="1 (Again), 2 (Hard), 3 (Good) or 4 (Easy)")],
    ) -> str:
        logger.debug(f"Answering card {cardId} with ease {ease}")
        try:
            answered = await self.anki.invoke("answerCards", answers=[{"cardId": cardId, "ease": ease}])
        except Exception as e:
            logger.error(f"Error answering card {cardId}: {str(e)}", exc_info=True)
            raise

        label = ease_label(ease)
        rating = f"ease {ease} ({label})" if label else f"ease {ease}"
        if not answered or not answered[0]:
            logger.warning(f"AnkiConnect did not answer card {cardId}")
            return f"⚠️ Card {cardId} could not be answered with {rating}. Check that the card exists."
        return f"✅ Answered card {cardId} with {rating}."

    async def run_session(self, read_stream, write_stream) -> None:
        """Serve one MCP session over an already connected pair of streams"""
        # FastMCP does not expose the low-level server for custom transports
        server = self.mcp._mcp_server
        await server.run(read_stream, write_stream, server.create_initialization_options())

    async def run_stdio(self):
        """Run the Anki MCP server using stdio transport"""
        logger.info("Starting server with stdio transport")
        try:
            await self.validate_tools()
            await self.mcp.run_stdio_async()
        except Exception as e:
            logger.error(f"Error running server: {str(e)}", exc_info=True)
            raise
        finally:
            await self.anki.aclose()


def main():
    logger.info("Starting AnkiConnect MCP server")
    server = AnkiMCPServer(AnkiConnectClient.from_env())
    anyio.run(server.run_stdio)


if __name__ == "__main__":
    main()
