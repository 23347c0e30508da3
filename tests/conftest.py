"""Shared fixtures: a fake AnkiConnect endpoint behind httpx.MockTransport."""

import json

import httpx
import pytest

from anki_connect_mcp.anki_connect import AnkiConnectClient
from anki_connect_mcp.server import AnkiMCPServer

ANKI_URL = "http://anki.test:8765"


class FakeAnkiConnect:
    """Answers AnkiConnect actions from a canned table and records each call."""

    def __init__(self):
        self.results = {}
        self.errors = {}
        self.calls = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        action = payload["action"]
        self.calls.append((action, payload["params"]))
        if action in self.errors:
            return httpx.Response(200, json={"result": None, "error": self.errors[action]})
        return httpx.Response(200, json={"result": self.results.get(action), "error": None})

    @property
    def actions(self):
        return [action for action, _ in self.calls]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake_anki():
    return FakeAnkiConnect()


@pytest.fixture
def anki_client(fake_anki):
    transport = httpx.MockTransport(fake_anki.handle)
    return AnkiConnectClient(ANKI_URL, client=httpx.AsyncClient(transport=transport))


@pytest.fixture
def server(anki_client):
    return AnkiMCPServer(anki_client)


def make_card(card_id, front="<b>Question</b>", deck="Default"):
    return {
        "cardId": card_id,
        "deckName": deck,
        "modelName": "Basic",
        "fields": {
            "Back": {"value": "Answer", "order": 1},
            "Front": {"value": front, "order": 0},
        },
        "question": front,
        "answer": "Answer",
        "due": 12,
        "reps": 3,
        "interval": 4,
    }
