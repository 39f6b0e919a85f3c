"""
Configuration de l'application (Settings)
=========================================

Rôle
----
- Centraliser les paramètres de l'app (nom, host/port, secrets, chemins, LLM, pioche des cartes…).
- Les valeurs par défaut conviennent pour un environnement de dev local.
- Les variables peuvent être surchargées via un fichier `.env` ou l'environnement.

Intégrations
------------
- `pydantic-settings` charge automatiquement les variables d'env et `.env`.
- Les services/routers importent `from app.config.settings import settings`.

Pioche des cartes
-----------------
- `CARD_TOP_UP_RATE` : probabilité (0..1) de tenter une carte générée par le LLM.
- `ENABLED_MODES` : liste des modes autorisés (vide = tous les modes du catalogue).
- `SOFT_LIMIT_CALLS` / `SOFT_LIMIT_TOKENS` : plafonds souples par session ; au-delà,
  la génération est simplement coupée (aucune erreur).

Exemples de `.env`
------------------
APP_NAME="Party Deck Backend (Staging)"
ADMIN_TOKEN="mettre-une-valeur-secrète-en-prod"
LLM_PROVIDER="ollama"
LLM_MODEL="llama3.1"
LLM_ENDPOINT="http://localhost:11434/api/generate"
CARD_TOP_UP_RATE=0.3
ENABLED_MODES='["trivia","taboo","act"]'
DATA_DIR="/var/opt/partydeck/data"
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    # Nom du service (apparaît dans /health)
    APP_NAME: str = "Party Deck Backend"
    # Bind réseau (FastAPI / Uvicorn)
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Jeton admin utilisé par la dépendance `admin_required`
    # ⚠️ Remplacez en production via .env
    ADMIN_TOKEN: str = "changeme-super-secret"

    # Frontends autorisés (CORS)
    CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # Source générative : "ollama" ou "none" (désactivée)
    LLM_PROVIDER: str = "ollama"
    LLM_MODEL: str = "llama3.1"
    LLM_ENDPOINT: str = "http://localhost:11434/api/generate"
    # Clé optionnelle (envoyée en Bearer si le endpoint est derrière un proxy authentifié)
    LLM_API_KEY: str = ""
    LLM_MAX_TOKENS: int = 300

    # Pioche : part de cartes générées et modes actifs
    CARD_TOP_UP_RATE: float = 0.3
    ENABLED_MODES: List[str] = []

    # Plafonds souples d'usage du LLM par session
    SOFT_LIMIT_CALLS: int = 1000
    SOFT_LIMIT_TOKENS: int = 500000

    # Répertoire des fichiers persistés (mots perso, sessions, usage, classement)
    # Par défaut: <repo>/app/data
    DATA_DIR: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

    # Paramétrage pydantic-settings :
    # - lit le fichier .env (UTF-8) si présent
    # - ignore les clés supplémentaires pour éviter les erreurs
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Instance unique importable partout : `settings`
settings = Settings()
