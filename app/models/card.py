"""
Models / card.py
Rôle:
- Définir les cartes de défi (union étiquetée) et leur clé normalisée.

Formes "fil" (JSON échangé avec le front et le LLM) :
- carte simple        → "texte"                                   (sing/act/explain/hum/whoami/oneword/draw)
- trivia              → {"q": ..., "a": ..., "options": [4 choix]}
- texte à trous       → {"verse": ..., "answer": ..., "ref": ...}
- taboo               → {"word": ..., "forbidden": [...]}

Clé normalisée (déduplication par session) :
- carte simple : texte `strip().lower()`
- carte structurée : JSON compact dans l'ordre des champs de la forme fil, puis `strip().lower()`
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from app.services.mode_catalog import JSON_MODES, Mode, parse_mode


class InvalidCardError(ValueError):
    """Payload de carte incompatible avec le mode demandé."""


class CardSource(str, Enum):
    GENERATED = "generated"
    CUSTOM = "custom"
    BUILTIN = "builtin"


class _CardBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class PlainCard(_CardBase):
    kind: Literal["plain"] = "plain"
    text: str = Field(..., min_length=1)

    @field_validator("text")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip().strip('"').strip()
        if not v:
            raise ValueError("empty card text")
        return v


class TriviaCard(_CardBase):
    kind: Literal["trivia"] = "trivia"
    question: str = Field(..., alias="q", min_length=1)
    correct_answer: str = Field(..., alias="a", min_length=1)
    options: List[str] = Field(..., min_length=4, max_length=4)

    @model_validator(mode="after")
    def _answer_in_options(self) -> "TriviaCard":
        if any(not str(o).strip() for o in self.options):
            raise ValueError("empty trivia option")
        wanted = self.correct_answer.strip().lower()
        if wanted not in [o.strip().lower() for o in self.options]:
            raise ValueError("correct answer missing from options")
        return self


class FillInBlankCard(_CardBase):
    kind: Literal["fillinblank"] = "fillinblank"
    verse_text: str = Field(..., alias="verse", min_length=1)
    answer: str = Field(..., min_length=1)
    reference: str = Field("", alias="ref")


class TabooCard(_CardBase):
    kind: Literal["taboo"] = "taboo"
    target_word: str = Field(..., alias="word", min_length=1)
    forbidden_words: List[str] = Field(..., alias="forbidden", min_length=1)


Card = Union[PlainCard, TriviaCard, FillInBlankCard, TabooCard]

# Ordre canonique des champs par forme fil (sert à la clé normalisée)
_WIRE_FIELDS = {
    "trivia": ("q", "a", "options"),
    "fillinblank": ("verse", "answer", "ref"),
    "taboo": ("word", "forbidden"),
}

_STRUCTURED = {
    Mode.TRIVIA: TriviaCard,
    Mode.FILLINBLANK: FillInBlankCard,
    Mode.TABOO: TabooCard,
}


def card_from_raw(mode: Any, raw: Any) -> Card:
    """
    Construit une carte typée à partir de la forme fil pour `mode`.
    Lève InvalidCardError si la forme ne correspond pas (ex: texte pour trivia).
    """
    m = parse_mode(mode)
    try:
        if m in JSON_MODES:
            if not isinstance(raw, dict):
                raise InvalidCardError(f"mode '{m.value}' expects an object card")
            return _STRUCTURED[m].model_validate(raw)
        if not isinstance(raw, str):
            raise InvalidCardError(f"mode '{m.value}' expects a text card")
        return PlainCard(text=raw)
    except ValidationError as exc:
        raise InvalidCardError(f"invalid {m.value} card: {exc.errors()[0].get('msg')}") from exc


def card_to_raw(card: Card) -> Union[str, Dict[str, Any]]:
    """Forme fil d'une carte (str pour les cartes simples, dict sinon)."""
    if isinstance(card, PlainCard):
        return card.text
    data = card.model_dump(by_alias=True, exclude={"kind"})
    return {k: data[k] for k in _WIRE_FIELDS[card.kind]}


def _canonical(raw: Dict[str, Any]) -> Dict[str, Any]:
    for fields in _WIRE_FIELDS.values():
        if set(raw.keys()) == set(fields):
            return {k: raw[k] for k in fields}
    return {k: raw[k] for k in sorted(raw.keys())}


def normalize_raw_key(raw: Any) -> str:
    """Clé normalisée d'une carte sous forme fil (texte ou objet). Chaîne vide si None."""
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw.strip().lower()
    if isinstance(raw, dict):
        return orjson.dumps(_canonical(raw)).decode("utf-8").strip().lower()
    return str(raw).strip().lower()


def normalize_card_key(card: Card) -> str:
    """Clé normalisée d'une carte typée (égalité des cartes pour la déduplication)."""
    return normalize_raw_key(card_to_raw(card))
