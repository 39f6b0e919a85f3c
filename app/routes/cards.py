"""
Module routes/cards.py
Rôle:
- Tirage sans état d'une carte (générative → mots personnalisés → pioche intégrée).
- Le client envoie ses cartes déjà vues (`usedPrompts`) pour la déduplication de session.

Codes retour:
- 200 {card, source}
- 400 mode invalide ou désactivé
"""
from typing import Any, List, Optional

from anyio import to_thread
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.models.card import card_to_raw
from app.services.card_resolver import CONFIG, RESOLVER, ModeDisabledError
from app.services.mode_catalog import UnknownModeError

router = APIRouter(prefix="/cards", tags=["cards"])


class GenerateCardPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mode: Optional[str] = None
    difficulty: Optional[str] = None
    country: Optional[str] = Field(None, description="Préférence régionale (hum / sing)")
    used_prompts: List[Any] = Field(default_factory=list, alias="usedPrompts")
    session_id: Optional[str] = Field(None, alias="sessionId")


@router.post("/generate")
async def generate_card(payload: GenerateCardPayload):
    """Résout une carte pour `mode` ; `source` ∈ generated | custom | builtin."""
    try:
        resolved = await to_thread.run_sync(
            lambda: RESOLVER.resolve(
                payload.mode,
                difficulty=payload.difficulty,
                region=payload.country,
                excluded_keys=payload.used_prompts,
                session_id=payload.session_id,
                config=CONFIG.get(),
            )
        )
    except (UnknownModeError, ModeDisabledError) as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"card": card_to_raw(resolved.card), "source": resolved.source.value}
