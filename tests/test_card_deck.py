import random

from app.models.card import normalize_card_key
from app.services.card_deck import DECK, CardDeck
from app.services.mode_catalog import FALLBACK_MODE, Mode


def test_builtin_deck_covers_every_mode():
    for mode in Mode:
        assert DECK.size(mode) > 0, mode


def test_draw_skips_excluded_keys():
    cards = DECK.get(Mode.TRIVIA)
    excluded = {normalize_card_key(c) for c in cards[1:]}

    drawn = DECK.draw(Mode.TRIVIA, excluded, random.Random(1))

    assert drawn == cards[0]


def test_draw_ignores_exclusions_when_pool_is_exhausted():
    excluded = {normalize_card_key(c) for c in DECK.get(Mode.TABOO)}

    drawn = DECK.draw(Mode.TABOO, excluded, random.Random(1))

    assert drawn in DECK.get(Mode.TABOO)


def test_unknown_mode_falls_back_to_first_explain_card():
    assert DECK.draw("karaoke") == DECK.get(FALLBACK_MODE)[0]


def test_invalid_entries_are_skipped(tmp_path):
    path = tmp_path / "deck.json"
    path.write_text(
        '{"trivia": ["not an object", {"q": "Q?", "a": "A", "options": ["A", "B", "C", "D"]}],'
        ' "explain": ["Faith"], "karaoke": ["x"]}',
        encoding="utf-8",
    )

    deck = CardDeck(path)

    assert deck.size(Mode.TRIVIA) == 1
    assert deck.size(Mode.EXPLAIN) == 1
    # mode vide → première carte du mode de repli
    assert deck.draw(Mode.ACT).text == "Faith"
