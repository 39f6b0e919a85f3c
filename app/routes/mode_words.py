"""
Mode words routes (public).
Players can submit their own words for the free-text modes; they join the
custom pool used between the generative source and the built-in deck.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.services.custom_words import POOL, DuplicateWordError
from app.services.mode_catalog import FREE_TEXT_MODES, UnknownModeError, parse_mode

router = APIRouter(prefix="/mode-words", tags=["mode-words"])

MAX_WORD_LENGTH = 120


class WordPayload(BaseModel):
    mode: Optional[str] = None
    word: Optional[str] = None
    difficulty: Optional[str] = None
    region: Optional[str] = None


def add_word(payload: WordPayload, source: str):
    """Shared by the public and admin endpoints: validation → 400, duplicate → 409."""
    try:
        mode = parse_mode(payload.mode)
    except UnknownModeError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if mode not in FREE_TEXT_MODES:
        raise HTTPException(status_code=400, detail=f"Custom words are not supported for '{mode.value}'")
    if len((payload.word or "").strip()) > MAX_WORD_LENGTH:
        raise HTTPException(status_code=400, detail=f"Words are limited to {MAX_WORD_LENGTH} characters")
    try:
        return POOL.insert(mode, payload.word, payload.difficulty, payload.region, source=source)
    except DuplicateWordError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("", status_code=201)
async def submit_word(payload: WordPayload):
    """Submit a custom word for a free-text mode."""
    return add_word(payload, source="user")
