"""
Service: mode_catalog.py
Rôle:
- Référentiel figé des dix modes de défi (catalogue statique, pas de fichier).
- Exposer `CATALOG.get(mode)` / `CATALOG.all()` pour les routes et le moteur de partie.

Chaque mode porte:
- une durée de manche en secondes entières (0 = sans chrono : trivia / fillinblank
  ont leur propre signal de fin),
- un barème fixe (bonne réponse = 2, mauvaise = 0),
- libellé, couleur, description courte et règles affichées avant le set.

Le même catalogue sert au résolveur de cartes, à la table des durées du moteur et à la
liste blanche `ENABLED_MODES` : les trois restent cohérents par construction.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List

POINTS_CORRECT = 2
POINTS_INCORRECT = 0
VALID_POINTS = (POINTS_INCORRECT, POINTS_CORRECT)


class Mode(str, Enum):
    SING = "sing"
    ACT = "act"
    EXPLAIN = "explain"
    TRIVIA = "trivia"
    HUM = "hum"
    WHOAMI = "whoami"
    FILLINBLANK = "fillinblank"
    TABOO = "taboo"
    ONEWORD = "oneword"
    DRAW = "draw"


# Modes dont les cartes sont des objets structurés (JSON strict côté LLM)
JSON_MODES = frozenset({Mode.TRIVIA, Mode.FILLINBLANK, Mode.TABOO})
FREE_TEXT_MODES = frozenset(m for m in Mode if m not in JSON_MODES)

# Mode de repli quand une clé de mode n'est pas reconnue par la pioche
FALLBACK_MODE = Mode.EXPLAIN


class UnknownModeError(ValueError):
    """Mode absent du catalogue."""


@dataclass(frozen=True)
class ModeInfo:
    mode: Mode
    label: str
    duration_s: int
    color: str
    description: str
    rules: str
    points_correct: int = POINTS_CORRECT
    points_incorrect: int = POINTS_INCORRECT

    @property
    def timed(self) -> bool:
        return self.duration_s > 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "mode": self.mode.value,
            "label": self.label,
            "duration_s": self.duration_s,
            "color": self.color,
            "description": self.description,
            "rules": self.rules,
            "points": {"correct": self.points_correct, "incorrect": self.points_incorrect},
            "structured": self.mode in JSON_MODES,
        }


_MODES: List[ModeInfo] = [
    ModeInfo(
        Mode.SING, "Sing", 60, "#FFD700",
        "Belt out a worship song, your team guesses the title",
        "You get one word. Sing a line of any worship song that contains it.\n"
        "Your team must name the song before time runs out.",
    ),
    ModeInfo(
        Mode.ACT, "Act", 60, "#DC2626",
        "Act out a Bible story, no talking allowed",
        "Act out the prompt without speaking, mouthing words or pointing at objects.\n"
        "Your team shouts guesses until someone gets it.",
    ),
    ModeInfo(
        Mode.EXPLAIN, "Explain", 60, "#2563EB",
        "Describe the word without saying it",
        "Describe the word on the card without saying it or any part of it.\n"
        "No spelling, no rhymes.",
    ),
    ModeInfo(
        Mode.TRIVIA, "Trivia", 0, "#16A34A",
        "Answer a faith-based multiple choice question",
        "Read the question aloud. Your team agrees on one of the four answers.\n"
        "There is no timer; the round ends when you lock in an answer.",
    ),
    ModeInfo(
        Mode.HUM, "Hum a Hymn", 60, "#9333EA",
        "Hum a hymn, your team names the tune",
        "Hum the hymn on the card, no words allowed.\n"
        "Your team must name the hymn.",
    ),
    ModeInfo(
        Mode.WHOAMI, "Who Am I?", 90, "#FB923C",
        "Guess who you are from your team's yes/no clues",
        "Hold the card to your forehead without looking.\n"
        "Ask yes/no questions until you can name the character.",
    ),
    ModeInfo(
        Mode.FILLINBLANK, "Fill in the Blank", 0, "#14B8A6",
        "Complete the missing word in a Bible verse",
        "Read the verse aloud and name the missing word.\n"
        "There is no timer; reveal the answer when your team is ready.",
    ),
    ModeInfo(
        Mode.TABOO, "Taboo", 60, "#DC2626",
        "Describe the word without saying the forbidden words",
        "Describe the target word without saying it or any of the forbidden words.\n"
        "Saying a forbidden word ends the round with no points.",
    ),
    ModeInfo(
        Mode.ONEWORD, "One Word", 30, "#1E3A8A",
        "One word only: make your team guess",
        "You may say exactly one word as a clue.\n"
        "Your team gets one guess.",
    ),
    ModeInfo(
        Mode.DRAW, "Draw", 90, "#F59E0B",
        "Sketch it, no letters or numbers allowed",
        "Draw the prompt. No letters, numbers or symbols.\n"
        "Your team guesses while you draw.",
    ),
]


def parse_mode(value: object) -> Mode:
    """Convertit une valeur brute ("trivia", Mode.TRIVIA…) en `Mode`, sinon UnknownModeError."""
    if isinstance(value, Mode):
        return value
    try:
        return Mode(str(value).strip().lower())
    except ValueError as exc:
        valid = ", ".join(m.value for m in Mode)
        raise UnknownModeError(f"Invalid or missing mode. Use one of: {valid}") from exc


def filter_modes(values: Iterable[object]) -> List[Mode]:
    """Garde uniquement les modes connus, dans l'ordre fourni, sans doublon."""
    out: List[Mode] = []
    for v in values:
        try:
            m = parse_mode(v)
        except UnknownModeError:
            continue
        if m not in out:
            out.append(m)
    return out


class ModeCatalog:
    """Catalogue des modes (index par `Mode`)."""

    def __init__(self, modes: Iterable[ModeInfo] = _MODES):
        self.modes: Dict[Mode, ModeInfo] = {info.mode: info for info in modes}

    def get(self, mode: object) -> ModeInfo:
        """Retourne la fiche du mode ou lève UnknownModeError."""
        return self.modes[parse_mode(mode)]

    def duration(self, mode: object) -> int:
        return self.get(mode).duration_s

    def all(self) -> List[ModeInfo]:
        return list(self.modes.values())


CATALOG = ModeCatalog()
