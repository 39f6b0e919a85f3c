"""
Service: card_resolver.py
Rôle:
- Choisir UNE carte pour un mode donné et indiquer la source qui l'a fournie.

Ordre de résolution (le premier qui réussit gagne) :
1) mode présent au catalogue ET activé par la configuration ;
2) tirage pondéré (`top_up_rate`) → source générative (LLM), seulement si la session
   n'a pas dépassé ses plafonds souples ; chaque tentative est comptée UNE fois ;
   un doublon (clé déjà vue) est écarté sans compter comme échec ;
3) mots personnalisés (modes texte uniquement), filtrés par difficulté/région/exclusions ;
4) pioche intégrée (toujours une carte).

La configuration (`ResolverConfig`) est une valeur passée à l'appel ; `CONFIG` garde la
valeur courante modifiable par l'admin.
"""
from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field, replace
from threading import RLock
from typing import Any, Callable, Collection, FrozenSet, Iterable, Optional

from app.config.settings import settings
from app.models.card import (
    Card,
    CardSource,
    InvalidCardError,
    card_from_raw,
    normalize_card_key,
    normalize_raw_key,
)
from app.services import llm_engine
from app.services.card_deck import DECK, CardDeck
from app.services.custom_words import POOL, CustomWordPool
from app.services.llm_engine import GenerationResult
from app.services.mode_catalog import FREE_TEXT_MODES, Mode, filter_modes, parse_mode
from app.services.usage_tracker import TRACKER, UsageTracker

logger = logging.getLogger(__name__)

DEFAULT_TOP_UP_RATE = 0.3


class ModeDisabledError(ValueError):
    """Mode connu mais désactivé par la configuration."""


def clamp_rate(value: Any, default: float = DEFAULT_TOP_UP_RATE) -> float:
    try:
        rate = float(value)
    except (TypeError, ValueError):
        return default
    if rate != rate:  # NaN
        return default
    return min(1.0, max(0.0, rate))


@dataclass(frozen=True)
class ResolverConfig:
    top_up_rate: float = DEFAULT_TOP_UP_RATE
    enabled_modes: FrozenSet[Mode] = field(default_factory=lambda: frozenset(Mode))

    def __post_init__(self) -> None:
        object.__setattr__(self, "top_up_rate", clamp_rate(self.top_up_rate))
        modes = frozenset(filter_modes(self.enabled_modes)) or frozenset(Mode)
        object.__setattr__(self, "enabled_modes", modes)

    def is_enabled(self, mode: Mode) -> bool:
        return mode in self.enabled_modes

    def to_dict(self) -> dict:
        return {
            "topUpRate": self.top_up_rate,
            "enabledModes": [m.value for m in Mode if m in self.enabled_modes],
        }


class ConfigStore:
    """Configuration courante (éditable par l'admin), lue par snapshot à chaque requête."""

    def __init__(self, initial: Optional[ResolverConfig] = None) -> None:
        self._config = initial or ResolverConfig()
        self._lock = RLock()

    def get(self) -> ResolverConfig:
        with self._lock:
            return self._config

    def update(self, top_up_rate: Any = None, enabled_modes: Optional[Iterable[Any]] = None) -> ResolverConfig:
        """
        Mise à jour tolérante :
        - taux hors [0, 1] ou non numérique → ignoré ;
        - modes inconnus filtrés, liste vide → ignorée.
        """
        with self._lock:
            cfg = self._config
            if top_up_rate is not None:
                try:
                    rate = float(top_up_rate)
                except (TypeError, ValueError):
                    rate = -1.0
                if 0.0 <= rate <= 1.0:
                    cfg = replace(cfg, top_up_rate=rate)
            if enabled_modes is not None and not isinstance(enabled_modes, str):
                modes = filter_modes(enabled_modes)
                if modes:
                    cfg = replace(cfg, enabled_modes=frozenset(modes))
            self._config = cfg
            return cfg


CONFIG = ConfigStore(
    ResolverConfig(
        top_up_rate=settings.CARD_TOP_UP_RATE,
        enabled_modes=frozenset(filter_modes(settings.ENABLED_MODES)),
    )
)


@dataclass(frozen=True)
class ResolvedCard:
    card: Card
    source: CardSource
    mode: Mode

    @property
    def key(self) -> str:
        return normalize_card_key(self.card)


Generator = Callable[..., GenerationResult]


class CardResolver:
    """Pipeline de résolution d'une carte (générative → personnalisée → intégrée)."""

    def __init__(
        self,
        *,
        deck: CardDeck = DECK,
        pool: CustomWordPool = POOL,
        tracker: UsageTracker = TRACKER,
        generator: Optional[Generator] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.deck = deck
        self.pool = pool
        self.tracker = tracker
        # résolu à l'appel pour que les tests puissent patcher llm_engine.generate_card
        self.generator = generator
        self.rng = rng or random.Random()

    def _generate(self, mode: Mode, difficulty, region, excluded: Collection[str]) -> GenerationResult:
        gen = self.generator or llm_engine.generate_card
        try:
            return gen(mode, difficulty=difficulty, region=region, excluded=list(excluded))
        except Exception as exc:
            logger.exception("Card generator raised", extra={"card_mode": mode.value})
            return GenerationResult(card=None, tokens=0, success=False, error=str(exc))

    def _try_generated(
        self,
        mode: Mode,
        difficulty: Optional[str],
        region: Optional[str],
        excluded: Collection[str],
        session_id: Optional[str],
    ) -> Optional[Card]:
        result = self._generate(mode, difficulty, region, excluded)
        card = result.card if result.success else None
        if card is not None and normalize_card_key(card) in excluded:
            logger.info("Generated card already used, discarding", extra={"card_mode": mode.value})
            card = None
        self.tracker.record(session_id, tokens=result.tokens, success=result.success, fallback=card is None)
        if card is None and not result.success:
            logger.info(
                "No generated card, falling back",
                extra={"card_mode": mode.value, "llm_error": result.error},
            )
        return card

    def _try_custom(
        self,
        mode: Mode,
        difficulty: Optional[str],
        region: Optional[str],
        excluded: Collection[str],
    ) -> Optional[Card]:
        if mode not in FREE_TEXT_MODES:
            return None
        try:
            stored = self.pool.query(mode, difficulty, region)
        except (OSError, ValueError):
            logger.warning("Custom word pool unreadable, skipping", exc_info=True, extra={"card_mode": mode.value})
            return None
        words = [w for w in stored if normalize_raw_key(w) not in excluded]
        if not words:
            return None
        try:
            return card_from_raw(mode, self.rng.choice(words))
        except InvalidCardError:
            logger.warning("Invalid custom word skipped", extra={"card_mode": mode.value})
            return None

    def resolve(
        self,
        mode: Any,
        *,
        difficulty: Optional[str] = None,
        region: Optional[str] = None,
        excluded_keys: Optional[Iterable[Any]] = None,
        session_id: Optional[str] = None,
        config: Optional[ResolverConfig] = None,
    ) -> ResolvedCard:
        """
        Résout une carte. Lève UnknownModeError / ModeDisabledError avant tout appel externe.
        `excluded_keys` accepte des clés normalisées ou des cartes sous forme fil.
        """
        m = parse_mode(mode)
        cfg = config or CONFIG.get()
        if not cfg.is_enabled(m):
            raise ModeDisabledError("This mode is currently disabled")

        # dict : ordre d'arrivée conservé pour le prompt
        excluded = dict.fromkeys(normalize_raw_key(k) for k in (excluded_keys or []) if k is not None)
        excluded.pop("", None)

        if self.rng.random() < cfg.top_up_rate and not self.tracker.is_over_limit(session_id):
            card = self._try_generated(m, difficulty, region, excluded, session_id)
            if card is not None:
                return ResolvedCard(card=card, source=CardSource.GENERATED, mode=m)

        card = self._try_custom(m, difficulty, region, excluded)
        if card is not None:
            return ResolvedCard(card=card, source=CardSource.CUSTOM, mode=m)

        return ResolvedCard(card=self.deck.draw(m, excluded, self.rng), source=CardSource.BUILTIN, mode=m)


RESOLVER = CardResolver()
