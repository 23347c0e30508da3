"""Tests for response formatting helpers."""

import pytest

from anki_connect_mcp.formatting import (
    build_search_query,
    ease_label,
    format_card,
    group_decks,
    primary_field,
    strip_html,
    truncate,
)

from conftest import make_card


class TestSearchQuery:
    def test_without_deck(self):
        assert build_search_query("due") == "is:due"

    def test_with_deck(self):
        assert build_search_query("new", "Japanese::N3") == 'is:new deck:"Japanese::N3"'

    def test_empty_deck_name_is_ignored(self):
        assert build_search_query("due", "") == "is:due"


class TestGroupDecks:
    def test_subdecks_grouped_under_root(self):
        top_level, children = group_decks(
            ["Default", "Japanese", "Japanese::N3", "Japanese::N3::Verbs", "Spanish"]
        )

        assert top_level == ["Default", "Japanese", "Spanish"]
        assert children == {"Japanese": ["Japanese::N3", "Japanese::N3::Verbs"]}

    def test_name_without_separator_only_top_level(self):
        top_level, children = group_decks(["Default"])

        assert top_level == ["Default"]
        assert children == {}

    def test_subdeck_never_top_level(self):
        top_level, children = group_decks(["Orphan::Child"])

        assert top_level == []
        assert children == {"Orphan": ["Orphan::Child"]}

    def test_single_colon_is_not_a_separator(self):
        top_level, children = group_decks(["Time: 10:30"])

        assert top_level == ["Time: 10:30"]
        assert children == {}


class TestEaseLabel:
    @pytest.mark.parametrize("ease,label", [(1, "Again"), (2, "Hard"), (3, "Good"), (4, "Easy")])
    def test_known_eases(self, ease, label):
        assert ease_label(ease) == label

    @pytest.mark.parametrize("ease", [0, 5, -1])
    def test_other_values_have_no_label(self, ease):
        assert ease_label(ease) is None


class TestText:
    def test_strip_html(self):
        assert strip_html('<div class="q">What is <b>2+2</b>?</div><br/>') == "What is 2+2?"

    def test_truncate_short_text(self):
        assert truncate("short") == "short"

    def test_truncate_long_text(self):
        assert truncate("x" * 150) == "x" * 100 + "..."

    def test_truncate_exact_limit(self):
        assert truncate("x" * 100) == "x" * 100


class TestFormatCard:
    def test_primary_field_uses_field_order(self):
        assert primary_field(make_card(1, front="Front side")) == "Front side"

    def test_primary_field_without_fields(self):
        assert primary_field({"fields": {}}) == "No content"
        assert primary_field({}) == "No content"

    def test_markup_does_not_count_towards_limit(self):
        front = "<b>" + "x" * 98 + "</b>"

        text = format_card(make_card(1, front=front), 1)

        assert len(front) == 105
        assert "Content: " + "x" * 98 + "\n" in text
        assert "..." not in text

    def test_long_text_is_truncated(self):
        text = format_card(make_card(1, front="<p>" + "y" * 120 + "</p>"), 1)

        assert "Content: " + "y" * 100 + "...\n" in text

    def test_format_card(self):
        text = format_card(make_card(42, front="<i>猫</i>", deck="Japanese"), 1)

        assert text.startswith("1. Card ID: 42\n")
        assert "Deck: Japanese" in text
        assert "Model: Basic" in text
        assert "Content: 猫\n" in text
        assert "Due: 12 | Reps: 3 | Interval: 4 days" in text
