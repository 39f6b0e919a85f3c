"""
Dépendance d'authentification admin
===================================

Objectif
--------
Fournir une *dependency* FastAPI `admin_required` qui autorise l'accès au portail admin
via un **Bearer token** (`settings.ADMIN_TOKEN`).

Pourquoi accepter le préflight CORS ?
-------------------------------------
Le navigateur envoie une requête **OPTIONS** sans header `Authorization`. Il faut donc :
- **laisser passer** les OPTIONS (géré par le middleware CORS),
- et **protéger seulement** les méthodes réelles (GET/POST/...) avec `admin_required`.

Comportement & codes retour
---------------------------
- 401 si aucun Bearer n'est fourni.
- 403 si Bearer fourni mais invalide.
- True sinon.
"""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config.settings import settings

# Schéma Bearer (désactive l'erreur auto pour qu'on rende nos 401/403)
bearer = HTTPBearer(auto_error=False)


def admin_required(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)):
    """Dépendance d'accès admin : `Authorization: Bearer <settings.ADMIN_TOKEN>`."""
    if credentials and (credentials.scheme or "").lower() == "bearer":
        if settings.ADMIN_TOKEN and secrets.compare_digest(credentials.credentials, settings.ADMIN_TOKEN):
            return True
        raise HTTPException(status_code=403, detail="Invalid token")

    raise HTTPException(status_code=401, detail="Admin authentication required")
