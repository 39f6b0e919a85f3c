"""
Game store registry
===================

Expose des helpers pour récupérer le `GameEngine` d'une session client.
Les moteurs vivent en mémoire uniquement (la partie n'est pas persistée pendant le jeu) ;
à la fin d'une partie, le résumé part vers l'enregistreur de sessions.
"""
from __future__ import annotations

from threading import RLock
from typing import Dict, Optional
from uuid import uuid4

from .game_engine import GameEngine
from .session_recorder import record_finished_game

_ENGINES: Dict[str, GameEngine] = {}
_LOCK = RLock()


def create_game(session_id: Optional[str] = None) -> GameEngine:
    """Crée (ou remplace) le moteur de la session et le met en cache."""
    sid = (session_id or uuid4().hex).strip() or uuid4().hex
    with _LOCK:
        engine = GameEngine(session_id=sid, on_finish=record_finished_game)
        _ENGINES[sid] = engine
        return engine


def get_game(session_id: str) -> Optional[GameEngine]:
    """Retourne le moteur associé à `session_id` (None si inconnu)."""
    with _LOCK:
        return _ENGINES.get((session_id or "").strip())


def drop_game(session_id: str) -> None:
    """Retire une partie du cache (navigation quittée, reset complet)."""
    with _LOCK:
        _ENGINES.pop(session_id, None)


def list_game_ids() -> list[str]:
    """Retourne la liste des parties actuellement chargées en mémoire."""
    with _LOCK:
        return list(_ENGINES.keys())
