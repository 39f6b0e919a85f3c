"""
Service: llm_engine.py
- Centralise les appels vers le LLM (Ollama par défaut) pour générer des cartes de défi.
- Construit les prompts par mode (difficulté, région, liste "à ne pas répéter").
- Parse strictement les modes structurés (trivia / fillinblank / taboo).

Fonctions principales:
- build_card_prompt(mode, ...): texte du prompt envoyé au modèle.
- generate_card(mode, ...): ne lève jamais ; renvoie un `GenerationResult`
  (carte ou None, tokens consommés, succès, raison d'échec).
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Collection, Dict, List, Optional, Tuple
from uuid import uuid4

import orjson
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from app.config.settings import settings
from app.models.card import Card, InvalidCardError, card_from_raw
from app.services.mode_catalog import JSON_MODES, Mode, parse_mode

logger = logging.getLogger(__name__)

DEFAULT_GENERATE_TIMEOUT: Tuple[float, float] = (5.0, 20.0)  # connect, read
MAX_EXCLUDED_IN_PROMPT = 20


class LLMServiceError(RuntimeError):
    """Erreur encapsulant un échec de communication avec le LLM."""


@dataclass(frozen=True)
class GenerationResult:
    card: Optional[Card]
    tokens: int = 0
    success: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class GeneratedText:
    text: str
    tokens: int


class LLMClient:
    """
    Client HTTP centralisé pour communiquer avec le LLM.
    - Configure retries avec backoff exponentiel (peu de tentatives : une carte doit arriver vite).
    - Journalise chaque requête avec un identifiant de corrélation.
    """

    def __init__(
        self,
        generate_endpoint: str,
        *,
        api_key: str = "",
        session: Optional[requests.Session] = None,
        generate_timeout: Tuple[float, float] = DEFAULT_GENERATE_TIMEOUT,
    ) -> None:
        self.generate_endpoint = self._resolve_generate_endpoint(generate_endpoint)
        self.api_key = api_key
        self.session = session or self._build_session()
        self.generate_timeout = generate_timeout

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        retry = Retry(
            total=1,
            backoff_factor=0.5,
            status_forcelist=(500, 502, 503, 504),
            allowed_methods=frozenset({"POST"}),
            respect_retry_after_header=True,
        )
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    @staticmethod
    def _resolve_generate_endpoint(endpoint: str) -> str:
        endpoint = (endpoint or "").strip()
        if endpoint.endswith("/api/chat"):
            return endpoint[:-4] + "generate"
        if endpoint.endswith("/api/chat/"):
            return endpoint[:-5] + "generate"
        return endpoint.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        if self.api_key:
            return {"Authorization": f"Bearer {self.api_key}"}
        return {}

    def _post(self, url: str, payload: Dict[str, Any], *, request_id: str) -> requests.Response:
        try:
            logger.debug("LLM request start", extra={"llm_url": url, "llm_request_id": request_id})
            response = self.session.post(
                url,
                json=payload,
                headers=self._headers(),
                timeout=self.generate_timeout,
                stream=True,
            )
            response.raise_for_status()
            return response
        except requests.Timeout as exc:
            logger.warning("LLM request timeout", extra={"llm_url": url, "llm_request_id": request_id})
            raise LLMServiceError("LLM request timed out") from exc
        except requests.RequestException as exc:
            logger.error(
                "LLM request failed",
                exc_info=True,
                extra={"llm_url": url, "llm_request_id": request_id},
            )
            raise LLMServiceError("LLM request failed") from exc

    def generate(self, payload: Dict[str, Any], *, request_id: str) -> GeneratedText:
        """
        Appel /api/generate (flux JSONL) → concaténation des 'response'.
        Les tokens viennent de la dernière ligne (prompt_eval_count + eval_count).
        """
        response = self._post(self.generate_endpoint, payload, request_id=request_id)

        content_parts: List[str] = []
        tokens = 0
        try:
            for raw_line in response.iter_lines(decode_unicode=True):
                if not raw_line:
                    continue
                try:
                    line = json.loads(raw_line)
                except json.JSONDecodeError:
                    logger.warning(
                        "Skipping invalid JSON line from LLM generate",
                        extra={"llm_request_id": request_id, "llm_line": raw_line},
                    )
                    continue
                content_parts.append(line.get("response", ""))
                if line.get("done"):
                    tokens = int(line.get("prompt_eval_count") or 0) + int(line.get("eval_count") or 0)
        except requests.RequestException as exc:
            logger.error("LLM stream interrupted", exc_info=True, extra={"llm_request_id": request_id})
            raise LLMServiceError("LLM stream interrupted") from exc
        finally:
            response.close()

        text = "".join(content_parts).strip()
        logger.debug("LLM generate success", extra={"llm_request_id": request_id, "llm_tokens": tokens})
        return GeneratedText(text=text, tokens=tokens)


CLIENT = LLMClient(settings.LLM_ENDPOINT, api_key=settings.LLM_API_KEY)

DIFFICULTY_HINT = {
    "easy": "Use very common, well-known references only.",
    "medium": "Use a mix of common and moderately known references.",
    "hard": "Use some lesser-known or deeper references.",
    "mixed": "Vary between easy and hard.",
}

BASE_PROMPTS = {
    Mode.TRIVIA: (
        "Generate one Bible trivia question as JSON only, no markdown. Use this exact shape: "
        '{"q": "question text", "a": "correct answer", "options": ["option1", "option2", "option3", "option4"]}. '
        "Four options, one correct. JSON only."
    ),
    Mode.FILLINBLANK: (
        "Generate one fill-in-the-blank Bible verse as JSON only. Use this shape: "
        '{"verse": "sentence with _____ for the missing word", "answer": "the missing word", '
        '"ref": "Book chapter:verse"}. JSON only, no markdown.'
    ),
    Mode.TABOO: (
        "Generate one Bible taboo card as JSON only. Use this shape: "
        '{"word": "main word", "forbidden": ["word1", "word2", "word3", "word4", "word5"]}. '
        "Five forbidden words. JSON only, no markdown."
    ),
    Mode.SING: (
        "Give one single WORD (e.g. Grace, Love, Peace) that must appear in the lyrics of a worship "
        "or Christian song. The team will sing a line containing this word, not the song title. "
        "Plain text only, one word, no JSON, no quotes."
    ),
    Mode.ACT: "Give one Bible charades prompt: a character, story, or concept in 3-5 words. Plain text only.",
    Mode.EXPLAIN: "Give one Bible word, place, or concept (1-3 words). Plain text only.",
    Mode.HUM: "Give one well-known Christian hymn or worship song title. Plain text only.",
    Mode.WHOAMI: "Give one Bible character name. Plain text only.",
    Mode.ONEWORD: "Give one abstract Christian or faith concept, one word. Plain text only.",
    Mode.DRAW: "Give one Bible scene or object to draw, 3-5 words. Plain text only.",
}

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


def build_card_prompt(
    mode: Mode,
    difficulty: Optional[str] = None,
    region: Optional[str] = None,
    excluded: Optional[Collection[str]] = None,
) -> str:
    """Prompt du mode + indice de difficulté + préférence régionale (hum/sing) + liste d'exclusion."""
    prompt = BASE_PROMPTS.get(mode, BASE_PROMPTS[Mode.EXPLAIN])
    hint = DIFFICULTY_HINT.get((difficulty or "").strip().lower())
    if hint:
        prompt += f" Difficulty: {hint}"
    if region and mode in (Mode.HUM, Mode.SING):
        prompt += f" Prefer songs or hymns commonly known in {region}."
    if excluded:
        items = [k for k in excluded if k][:MAX_EXCLUDED_IN_PROMPT]
        if items:
            prompt += f" Do not use any of these: {', '.join(items)}."
    return prompt


def parse_card_text(mode: Mode, text: str) -> Card:
    """
    Convertit la sortie texte du modèle en carte typée.
    - modes structurés : retire les balises ``` puis JSON strict (InvalidCardError sinon).
    - modes texte : première ligne non vide.
    """
    if mode in JSON_MODES:
        cleaned = _FENCE_RE.sub("", text).strip()
        try:
            raw = orjson.loads(cleaned)
        except orjson.JSONDecodeError as exc:
            raise InvalidCardError(f"malformed JSON for mode '{mode.value}'") from exc
        return card_from_raw(mode, raw)
    first = next((ln for ln in text.splitlines() if ln.strip()), "")
    return card_from_raw(mode, first)


def llm_enabled() -> bool:
    return settings.LLM_PROVIDER == "ollama" and bool(CLIENT.generate_endpoint)


def generate_card(
    mode: Any,
    difficulty: Optional[str] = None,
    region: Optional[str] = None,
    excluded: Optional[Collection[str]] = None,
) -> GenerationResult:
    """
    Génère une carte via le LLM. Ne lève jamais : tout échec (non configuré, réseau,
    texte vide, JSON invalide) devient `GenerationResult(card=None, success=False)`.
    Les tokens restent crédités quand le modèle a répondu.
    """
    m = parse_mode(mode)
    if not llm_enabled():
        logger.info("LLM not configured, skipping generation", extra={"card_mode": m.value})
        return GenerationResult(card=None, tokens=0, success=False, error="not_configured")

    request_id = f"card-{uuid4().hex}"
    try:
        out = CLIENT.generate(
            {
                "model": settings.LLM_MODEL,
                "prompt": build_card_prompt(m, difficulty, region, excluded),
                "options": {"num_predict": settings.LLM_MAX_TOKENS, "temperature": 0.9},
            },
            request_id=request_id,
        )
    except LLMServiceError as exc:
        return GenerationResult(card=None, tokens=0, success=False, error=str(exc))
    except Exception as exc:
        logger.exception("Unexpected error while generating card", extra={"llm_request_id": request_id})
        return GenerationResult(card=None, tokens=0, success=False, error=str(exc))

    if not out.text:
        logger.info("Empty response from LLM", extra={"llm_request_id": request_id, "card_mode": m.value})
        return GenerationResult(card=None, tokens=out.tokens, success=False, error="empty")

    try:
        card = parse_card_text(m, out.text)
    except InvalidCardError as exc:
        logger.info(
            "Unusable card from LLM",
            extra={"llm_request_id": request_id, "card_mode": m.value, "llm_text": out.text[:100]},
        )
        return GenerationResult(card=None, tokens=out.tokens, success=False, error=str(exc))

    logger.info("LLM card generated", extra={"llm_request_id": request_id, "card_mode": m.value})
    return GenerationResult(card=card, tokens=out.tokens, success=True)
