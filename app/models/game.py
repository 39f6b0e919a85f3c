"""
Models / game.py
Rôle:
- Définir l'état typé d'une partie (équipes, manches jouées, set en cours, phase).
- Ce modèle sert à la fois d'état interne du moteur et de réponse API (alias camelCase).

Invariants tenus par le moteur (`app/services/game_engine.py`) :
- `round_set.total_rounds_in_set` est fixé pour la durée d'un set et ne dépasse jamais les manches restantes ;
- `round_set.rounds_completed_in_set` croît jusqu'à `total_rounds_in_set`, puis le set se ferme ;
- `current_team_index` avance d'un cran (modulo nb d'équipes) exactement une fois par manche jouée ;
- la partie est complète ssi `len(rounds) == len(teams) * rounds_per_team`.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.card import CardSource
from app.services.mode_catalog import Mode


class GameError(Exception):
    """Base des refus du moteur de partie."""


class GameSetupError(GameError, ValueError):
    """Refus de validation (équipes, mode, taille de set, points) : état inchangé."""


class RoundNotActiveError(GameError):
    """Demande de carte hors manche active."""


class CardFetchError(GameError):
    """La requête de carte elle-même a échoué (à réessayer si `retryable`)."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class GamePhase(str, Enum):
    SETUP = "SETUP"
    MODE_SELECTED = "MODE_SELECTED"
    SHOW_RULES = "SHOW_RULES"
    ROUND_ACTIVE = "ROUND_ACTIVE"
    ROUND_RESULT = "ROUND_RESULT"
    MODE_COMPLETE = "MODE_COMPLETE"
    GAME_COMPLETE = "GAME_COMPLETE"


class GameStatus(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    FINISHED = "finished"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Team(_CamelModel):
    name: str
    color: Optional[str] = None
    score: int = Field(0, ge=0)


class Round(_CamelModel):
    """Manche jouée : créée une seule fois (score ou fin de chrono), immuable ensuite."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    team_name: str
    mode: Mode
    # forme fil ; None seulement pour une manche expirée avant qu'une carte n'arrive
    card: Optional[Union[str, Dict[str, Any]]] = None
    points_earned: int = 0
    timestamp: datetime = Field(default_factory=utcnow)
    source: Optional[CardSource] = None
    duration_ms: Optional[int] = None
    skipped: bool = False


class SetProgress(_CamelModel):
    selected_mode: Optional[Mode] = None
    total_rounds_in_set: int = 0
    rounds_completed_in_set: int = 0

    @property
    def done(self) -> bool:
        return self.total_rounds_in_set > 0 and self.rounds_completed_in_set >= self.total_rounds_in_set


class GameState(_CamelModel):
    session_id: str
    teams: List[Team] = Field(default_factory=list)
    rounds: List[Round] = Field(default_factory=list)
    current_team_index: int = 0
    rounds_per_team: int = 5
    status: GameStatus = GameStatus.IDLE
    phase: GamePhase = GamePhase.SETUP
    difficulty: Optional[str] = None
    region: Optional[str] = None
    used_card_keys: List[str] = Field(default_factory=list)
    round_set: SetProgress = Field(default_factory=SetProgress)
    current_card: Optional[Union[str, Dict[str, Any]]] = None
    current_card_source: Optional[CardSource] = None
    started_at: Optional[datetime] = None
    ended_early: bool = False

    @property
    def total_rounds(self) -> int:
        return len(self.teams) * self.rounds_per_team

    @property
    def remaining_rounds(self) -> int:
        return max(0, self.total_rounds - len(self.rounds))

    @property
    def is_complete(self) -> bool:
        return bool(self.teams) and len(self.rounds) == self.total_rounds

    @property
    def current_team(self) -> Optional[Team]:
        if not self.teams:
            return None
        return self.teams[self.current_team_index % len(self.teams)]
