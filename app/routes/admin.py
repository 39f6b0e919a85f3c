"""
Module routes/admin.py
Rôle:
- Portail admin : mots personnalisés, consommation LLM par session, configuration
  du résolveur de cartes, parties enregistrées.
- Protégé par `admin_required` (Bearer ADMIN_TOKEN) sur tout le router.

Intégrations:
- POOL: mots personnalisés (ajout source="admin", suppression).
- TRACKER: compteurs calls / tokens / failures / fallbacks.
- CONFIG: taux de complément génératif + modes activés (mise à jour tolérante).
- RECORDER: parties terminées.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from app.deps.auth import admin_required
from app.routes.mode_words import WordPayload, add_word
from app.services.card_resolver import CONFIG
from app.services.custom_words import POOL
from app.services.mode_catalog import UnknownModeError, parse_mode
from app.services.session_recorder import RECORDER
from app.services.usage_tracker import TRACKER

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(admin_required)]  # ← garde-fou admin sur tout le router
)


class ConfigPatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    top_up_rate: Optional[float] = Field(None, alias="topUpRate")
    enabled_modes: Optional[List[str]] = Field(None, alias="enabledModes")


@router.get("/words")
async def list_words(mode: Optional[str] = Query(None)):
    """Mots personnalisés, plus récents d'abord ; `mode` filtre optionnel."""
    m = None
    if mode:
        try:
            m = parse_mode(mode)
        except UnknownModeError as exc:
            raise HTTPException(status_code=400, detail=str(exc))
    return {"words": POOL.list(m)}


@router.post("/words", status_code=201)
async def create_word(payload: WordPayload):
    return add_word(payload, source="admin")


@router.delete("/words/{word_id}")
async def delete_word(word_id: str):
    if not POOL.delete(word_id):
        raise HTTPException(status_code=404, detail="word_not_found")
    return {"ok": True}


@router.get("/usage")
async def usage():
    """Consommation par session + sessions au-delà des limites souples."""
    records = TRACKER.all()
    return {
        "usage": records,
        "overLimit": sorted(sid for sid in records if TRACKER.is_over_limit(sid)),
        "limits": {"calls": TRACKER.soft_call_limit, "tokens": TRACKER.soft_token_limit},
    }


@router.get("/config")
async def get_config():
    return CONFIG.get().to_dict()


@router.patch("/config")
async def patch_config(payload: ConfigPatch):
    """Valeurs invalides ignorées (taux hors [0, 1], liste de modes vide ou inconnue)."""
    return CONFIG.update(top_up_rate=payload.top_up_rate, enabled_modes=payload.enabled_modes).to_dict()


@router.get("/sessions")
async def sessions(limit: int = Query(50, ge=1, le=100)):
    return {"sessions": RECORDER.recent(limit)}
