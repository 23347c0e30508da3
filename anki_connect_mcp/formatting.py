import re
from typing import Any, Dict, List, Optional, Tuple

DECK_SEPARATOR = "::"
CONTENT_LIMIT = 100

EASE_LABELS = {
    1: "Again",
    2: "Hard",
    3: "Good",
    4: "Easy",
}

_TAG_RE = re.compile(r"<[^>]*>")


def build_search_query(state: str, deck_name: Optional[str] = None) -> str:
    """Build an Anki search query for cards in a given state.

    Example:
        state: due
        deck_name: Japanese
        result: is:due deck:"Japanese"
    """
    query = f"is:{state}"
    if deck_name:
        query += f' deck:"{deck_name}"'
    return query


def group_decks(names: List[str]) -> Tuple[List[str], Dict[str, List[str]]]:
    """Split deck names into top-level decks and subdecks grouped by root deck.

    A name without the separator is only returned in the top-level list.
    A subdeck such as ``Japanese::N3::Verbs`` goes into the ``Japanese`` bucket.
    """
    top_level = []
    children: Dict[str, List[str]] = {}
    for name in names:
        if DECK_SEPARATOR in name:
            root = name.split(DECK_SEPARATOR, 1)[0]
            children.setdefault(root, []).append(name)
        else:
            top_level.append(name)
    return top_level, children


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text)


def truncate(text: str, limit: int = CONTENT_LIMIT) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def ease_label(ease: int) -> Optional[str]:
    """Human-readable label for an answer button, None when ease is not 1-4."""
    return EASE_LABELS.get(ease)


def primary_field(card: Dict[str, Any]) -> str:
    # AnkiConnect returns fields as {"Front": {"value": ..., "order": 0}, ...}
    fields = card.get("fields") or {}
    if not fields:
        return "No content"
    first = min(fields.values(), key=lambda field: field.get("order", 0))
    return first.get("value") or "No content"


def format_card(card: Dict[str, Any], index: int) -> str:
    content = truncate(strip_html(primary_field(card)))
    return (
        f"{index}. Card ID: {card.get('cardId')}\n"
        f"   Deck: {card.get('deckName')}\n"
        f"   Model: {card.get('modelName')}\n"
        f"   Content: {content}\n"
        f"   Due: {card.get('due')} | Reps: {card.get('reps')} | Interval: {card.get('interval')} days"
    )
