"""
Service: card_client.py
Client HTTP de l'API de cartes (côté appareil de jeu / scripts).

- fetch_card(...)  : POST /cards/generate avec reprise exponentielle :
    délai = min(2000 * 2**échecs, 15000) ms, 3 reprises au plus ;
    une réponse 429 (limite de débit) n'est reprise que tant qu'il y a eu moins de 2 échecs ;
    les autres 4xx ne sont pas reprises (requête invalide).
  Épuisement → CardFetchError(retryable=True) : l'UI affiche "Could not load a card, retrying".
- save_session / get_session / leaderboard : appels simples, sans reprise.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import uuid4

import requests

from app.models.game import CardFetchError

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
MAX_RATE_LIMITED_RETRIES = 2
BASE_DELAY_MS = 2000
MAX_DELAY_MS = 15000
DEFAULT_TIMEOUT = (5.0, 30.0)  # connect, read


def retry_delay_ms(failures: int) -> int:
    """Délai avant la reprise suivant `failures` échecs (0 pour le premier)."""
    return min(BASE_DELAY_MS * 2 ** failures, MAX_DELAY_MS)


def should_retry(failures: int, status: Optional[int]) -> bool:
    if failures >= MAX_RETRIES:
        return False
    if status == 429:
        return failures < MAX_RATE_LIMITED_RETRIES
    if status is not None and 400 <= status < 500:
        return False
    return True


class CardApiClient:
    def __init__(
        self,
        base_url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout=DEFAULT_TIMEOUT,
        sleep: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.sleep = sleep

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def fetch_card(
        self,
        mode: str,
        *,
        difficulty: Optional[str] = None,
        country: Optional[str] = None,
        used_prompts: Optional[Iterable[Any]] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Retourne `{"card": ..., "source": ...}` ou lève CardFetchError."""
        payload: Dict[str, Any] = {"mode": mode}
        if difficulty:
            payload["difficulty"] = difficulty
        if country:
            payload["country"] = country
        if used_prompts:
            payload["usedPrompts"] = list(used_prompts)
        if session_id:
            payload["sessionId"] = session_id

        request_id = uuid4().hex
        failures = 0
        while True:
            status: Optional[int] = None
            try:
                response = self.session.post(self._url("/cards/generate"), json=payload, timeout=self.timeout)
                status = response.status_code
                response.raise_for_status()
                return response.json()
            except (requests.RequestException, ValueError) as exc:
                if not should_retry(failures, status):
                    logger.warning(
                        "Card fetch gave up",
                        extra={"card_request_id": request_id, "http_status": status, "failures": failures + 1},
                    )
                    retryable = status is None or status == 429 or status >= 500
                    raise CardFetchError("Could not load a card, retrying", retryable=retryable) from exc
                delay = retry_delay_ms(failures)
                failures += 1
                logger.info(
                    "Card fetch failed, retrying",
                    extra={"card_request_id": request_id, "http_status": status, "retry_in_ms": delay},
                )
                self.sleep(delay / 1000.0)

    def save_session(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        response = self.session.post(self._url("/sessions"), json=summary, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        response = self.session.get(self._url(f"/sessions/{session_id}"), timeout=self.timeout)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def leaderboard(self, limit: int = 10, sort: str = "score") -> List[Dict[str, Any]]:
        response = self.session.get(
            self._url("/leaderboard"), params={"limit": limit, "sort": sort}, timeout=self.timeout
        )
        response.raise_for_status()
        return response.json().get("entries", [])
