"""
Module routes/sessions.py
Rôle:
- Enregistrer le résumé d'une partie terminée (upsert idempotent par sessionId).
- Relire une partie enregistrée.
"""
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException

from app.services.session_recorder import RECORDER

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", status_code=201)
async def save_session(summary: Dict[str, Any] = Body(...)):
    """Un second envoi du même sessionId remplace le premier."""
    try:
        return RECORDER.save(summary)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/{session_id}")
async def get_session(session_id: str):
    record = RECORDER.get(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail="session_not_found")
    return record
