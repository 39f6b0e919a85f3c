"""
Module routes/modes.py
Rôle:
- Catalogue des modes pour l'UI (libellé, couleur, durée, règles) + statut activé/désactivé.
"""
from fastapi import APIRouter

from app.services.card_resolver import CONFIG
from app.services.mode_catalog import CATALOG

router = APIRouter(prefix="/modes", tags=["modes"])


@router.get("")
async def list_modes():
    cfg = CONFIG.get()
    return {"modes": [{**info.to_dict(), "enabled": cfg.is_enabled(info.mode)} for info in CATALOG.all()]}
