"""
Application FastAPI — Point d'entrée
====================================

Rôle
----
- Instancie l'app FastAPI, configure le CORS pour le front,
- Monte tous les routeurs REST,
- Journalise la configuration LLM et la liste des routes au démarrage.

Notes
-----
- Les importations des routeurs sont explicites pour éviter les surprises d’auto-discovery.
- Garder `settings.CORS_ORIGINS` en phase avec les URLs du front.
- ⚠️ Le middleware CORS doit être ajouté AVANT les include_router.
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Imports directs des routeurs (robuste, évite le lookup de sous-modules)
from app.routes.game import router as game_router
from app.routes.cards import router as cards_router
from app.routes.modes import router as modes_router
from app.routes.mode_words import router as mode_words_router
from app.routes.sessions import router as sessions_router
from app.routes.leaderboard import router as leaderboard_router
from app.routes.health import router as health_router
from app.routes.admin import router as admin_router

from app.config.settings import settings

logger = logging.getLogger(__name__)

# --- App FastAPI principale  ---
app = FastAPI(title=settings.APP_NAME)

# ===========================
# CORS
# ===========================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,   # ← whitelist des frontends autorisés
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],                   # ← dont Authorization (portail admin)
)

# ===========================
# Montage des routers
# ===========================
# ⚠️ La protection admin est posée sur le router /admin uniquement ;
#    les préflights OPTIONS passent par le middleware CORS.
app.include_router(game_router)
app.include_router(cards_router)
app.include_router(modes_router)
app.include_router(mode_words_router)
app.include_router(sessions_router)
app.include_router(leaderboard_router)
app.include_router(health_router)
app.include_router(admin_router)


# --- Racine utile pour "ping" simple (sans /health) ---
@app.get("/")
async def root():
    """Ping basique : permet de vérifier que l'app tourne (sans dépendance LLM)."""
    return {"ok": True, "service": "partydeck-backend"}


# --- Hook de démarrage ---
@app.on_event("startup")
async def list_routes():
    """
    Au démarrage:
    - journalise la config LLM courante (provider, modèle, endpoint),
    - liste les routes (path + méthodes) (diagnostic).
    """
    logger.info(
        "LLM config",
        extra={"llm_provider": settings.LLM_PROVIDER, "llm_model": settings.LLM_MODEL, "llm_url": settings.LLM_ENDPOINT},
    )
    for r in app.routes:
        methods = getattr(r, "methods", None)
        logger.debug("Registered route %s %s", getattr(r, "path", "?"), sorted(methods or []))
