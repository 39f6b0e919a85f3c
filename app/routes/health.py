"""
Module routes/health.py
Rôle:
- Endpoints de santé (service OK + ping LLM).

Intégrations:
- settings: nom d’app + paramètres LLM.
- CLIENT: ping rapide du provider / modèle (latence, échantillon).
"""
import time
from uuid import uuid4

from anyio import to_thread
from fastapi import APIRouter

from app.config.settings import settings
from app.services.llm_engine import CLIENT, LLMServiceError, llm_enabled

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health():
    """Renvoie un OK minimal avec le nom de service configuré."""
    return {"ok": True, "service": settings.APP_NAME}


@router.get("/llm")
async def health_llm():
    """
    Vérifie la disponibilité du LLM en mesurant une latence simple.
    - Prompt court ("Reply: pong.") pour minimiser le temps de calcul.
    - Retourne provider, modèle, latence en secondes et un aperçu (sample).
    """
    base = {"provider": settings.LLM_PROVIDER, "model": settings.LLM_MODEL}
    if not llm_enabled():
        return {**base, "ok": False, "latency_s": 0.0, "error": "not_configured"}

    payload = {
        "model": settings.LLM_MODEL,
        "prompt": "Reply: pong.",
        "options": {"num_predict": 8},
    }
    t0 = time.perf_counter()
    try:
        r = await to_thread.run_sync(lambda: CLIENT.generate(payload, request_id=uuid4().hex))
        dt = time.perf_counter() - t0
        return {**base, "ok": True, "latency_s": round(dt, 3), "sample": r.text[:120]}  # ← coupe l’aperçu
    except LLMServiceError as e:
        dt = time.perf_counter() - t0
        return {**base, "ok": False, "latency_s": round(dt, 3), "error": str(e)}
