"""
Service: card_deck.py
Rôle:
- Charger en mémoire la pioche intégrée (cartes statiques par mode).
- Tirer une carte au hasard en évitant les cartes déjà vues dans la session.

Fichier source:
- app/data/builtin_cards.json → {"<mode>": [<carte fil>, ...], ...}

Garanties:
- `draw()` ne renvoie jamais "pas de carte" : si l'exclusion vide le paquet, on tire
  sans exclusion (pour ce tirage seulement) ; si le mode est inconnu, on renvoie la
  première carte du mode de repli.
"""
from __future__ import annotations

import logging
import random
from pathlib import Path
from typing import Any, Collection, Dict, List, Optional

from app.models.card import Card, InvalidCardError, card_from_raw, normalize_card_key
from app.services.mode_catalog import FALLBACK_MODE, Mode, UnknownModeError, parse_mode
from .io_utils import read_json

logger = logging.getLogger(__name__)

DECK_PATH = Path(__file__).resolve().parent.parent / "data" / "builtin_cards.json"


class CardDeck:
    """Pioche intégrée, indexée par mode (cartes déjà typées et validées)."""

    def __init__(self, path: Path = DECK_PATH):
        self.path = path
        self.cards: Dict[Mode, List[Card]] = {}
        self.load()

    def load(self) -> None:
        """Charge le JSON ; les entrées invalides sont ignorées (et journalisées)."""
        raw = read_json(self.path, default={}) or {}
        cards: Dict[Mode, List[Card]] = {}
        for key, entries in raw.items():
            try:
                mode = parse_mode(key)
            except UnknownModeError:
                logger.warning("Unknown mode in builtin deck", extra={"deck_mode": key})
                continue
            bucket = cards.setdefault(mode, [])
            for entry in entries or []:
                try:
                    bucket.append(card_from_raw(mode, entry))
                except InvalidCardError:
                    logger.warning("Skipping invalid builtin card", extra={"deck_mode": key})
        self.cards = cards

    def get(self, mode: Mode) -> List[Card]:
        return list(self.cards.get(mode, []))

    def size(self, mode: Mode) -> int:
        return len(self.cards.get(mode, []))

    def draw(
        self,
        mode: Any,
        excluded: Optional[Collection[str]] = None,
        rng: Optional[random.Random] = None,
    ) -> Card:
        """Tire une carte du mode, hors clés exclues si possible."""
        rng = rng or random.Random()
        try:
            pool = self.cards.get(parse_mode(mode)) or []
        except UnknownModeError:
            pool = []
        if not pool:
            return self.cards[FALLBACK_MODE][0]

        if excluded:
            fresh = [c for c in pool if normalize_card_key(c) not in excluded]
            if fresh:
                return rng.choice(fresh)
            logger.info("Builtin deck exhausted, ignoring exclusions", extra={"deck_mode": str(mode)})
        return rng.choice(pool)


DECK = CardDeck()
