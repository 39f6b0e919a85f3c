"""
Module routes/game.py
Rôle:
- Pilote la machine à états d'une partie (une partie par session client).

Flux nominal:
    POST /game                       → crée la partie, renvoie sessionId + état
    POST /game/{id}/start            → équipes + manches par équipe
    POST /game/{id}/set              → verrouille un mode pour N manches
    POST /game/{id}/rules/dismiss    → démarre la manche (et le chrono si le mode est minuté)
    POST /game/{id}/card             → carte de la manche (une seule par manche)
    POST /game/{id}/score            → 0 ou 2 points
    POST /game/{id}/next             → manche suivante / fin de set / fin de partie
    POST /game/{id}/end | /reset     → fin anticipée / remise à zéro

Codes retour:
- 400 saisie invalide (message affichable tel quel, ex. "Add at least 2 teams to start a game")
- 404 partie inconnue
- 409 demande de carte hors manche active
- 503 échec de la requête de carte (réessayable)

Une transition hors phase (scorer deux fois...) n'est pas une erreur : l'état inchangé est renvoyé.
"""
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.models.card import card_to_raw
from app.models.game import CardFetchError, GameSetupError, RoundNotActiveError
from app.services.game_engine import DEFAULT_ROUNDS_PER_TEAM, GameEngine
from app.services.game_store import create_game, drop_game, get_game

router = APIRouter(prefix="/game", tags=["game"])


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateGamePayload(_Payload):
    session_id: Optional[str] = Field(None, alias="sessionId")


class StartGamePayload(_Payload):
    teams: List[Any] = Field(default_factory=list)
    rounds_per_team: Any = Field(DEFAULT_ROUNDS_PER_TEAM, alias="roundsPerTeam")
    difficulty: Optional[str] = None
    region: Optional[str] = Field(None, description="Préférence régionale (hum / sing)")


class RoundSetPayload(_Payload):
    mode: Optional[str] = None
    rounds_in_set: Any = Field(None, alias="roundsInSet")


class CardRequestPayload(_Payload):
    used_prompts: List[Any] = Field(default_factory=list, alias="usedPrompts")


class ScorePayload(_Payload):
    points: int
    card: Optional[Any] = None
    source: Optional[str] = None
    duration_ms: Optional[int] = Field(None, alias="durationMs", ge=0)


def _engine(session_id: str) -> GameEngine:
    engine = get_game(session_id)
    if engine is None:
        raise HTTPException(status_code=404, detail="game_not_found")
    return engine


def _guarded(fn, *args, **kwargs):
    """Exécute une transition ; GameSetupError → 400."""
    try:
        return fn(*args, **kwargs)
    except GameSetupError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("")
async def create(payload: Optional[CreateGamePayload] = None):
    engine = create_game(payload.session_id if payload else None)
    return {"sessionId": engine.session_id, "state": engine.snapshot()}


@router.get("/{session_id}")
async def state(session_id: str):
    return _engine(session_id).snapshot()


@router.post("/{session_id}/start")
async def start(session_id: str, payload: StartGamePayload):
    engine = _engine(session_id)
    _guarded(engine.start_game, payload.teams, payload.rounds_per_team, payload.difficulty, payload.region)
    return engine.snapshot()


@router.post("/{session_id}/set")
async def start_set(session_id: str, payload: RoundSetPayload):
    engine = _engine(session_id)
    _guarded(engine.start_round_set, payload.mode, payload.rounds_in_set)
    return engine.snapshot()


@router.post("/{session_id}/mode/next")
async def choose_next_mode(session_id: str):
    engine = _engine(session_id)
    engine.choose_next_mode()
    return engine.snapshot()


@router.post("/{session_id}/rules/dismiss")
async def dismiss_rules(session_id: str):
    engine = _engine(session_id)
    engine.dismiss_rules()
    return engine.snapshot()


@router.post("/{session_id}/card")
async def request_card(session_id: str, payload: Optional[CardRequestPayload] = None):
    """Carte de la manche active ; renvoie la même carte tant que la manche n'est pas scorée."""
    engine = _engine(session_id)
    try:
        resolved = await engine.request_card(payload.used_prompts if payload else None)
    except RoundNotActiveError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except CardFetchError as exc:
        raise HTTPException(status_code=503 if exc.retryable else 400, detail=str(exc))
    return {"card": card_to_raw(resolved.card), "source": resolved.source.value, "mode": resolved.mode.value}


@router.post("/{session_id}/score")
async def score(session_id: str, payload: ScorePayload):
    engine = _engine(session_id)
    _guarded(engine.score_round, payload.points, payload.card, payload.source, payload.duration_ms)
    return engine.snapshot()


@router.post("/{session_id}/expire")
async def expire(session_id: str):
    """Fin de chrono signalée par le client (sans effet si la manche est déjà scorée)."""
    engine = _engine(session_id)
    engine.expire_round()
    return engine.snapshot()


@router.post("/{session_id}/next")
async def next_round(session_id: str):
    engine = _engine(session_id)
    engine.next_round()
    return engine.snapshot()


@router.post("/{session_id}/end")
async def end(session_id: str):
    engine = _engine(session_id)
    engine.end_game()
    return engine.snapshot()


@router.post("/{session_id}/reset")
async def reset(session_id: str):
    engine = _engine(session_id)
    engine.reset()
    return engine.snapshot()


@router.delete("/{session_id}")
async def leave(session_id: str):
    """Quitte la partie : le moteur est retiré, aucune manche partielle n'est archivée."""
    engine = _engine(session_id)
    engine.reset()
    drop_game(session_id)
    return {"ok": True}


@router.get("/{session_id}/summary")
async def summary(session_id: str):
    return _engine(session_id).summary()
