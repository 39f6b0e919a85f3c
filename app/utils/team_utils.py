"""
Utils: team_utils.py
Rôle:
- Construire la liste des équipes d'une partie à partir de la saisie du front.

Comportement:
- Accepte des noms seuls ("Red") ou des objets ({"name": "Red", "color": "#D97706"}).
- Les noms sont nettoyés (strip) et doivent être uniques (insensible à la casse).
- Une équipe sans couleur reçoit la suivante de la palette (round-robin).
- Au moins 2 équipes ; sinon `GameSetupError` avec un message affichable tel quel.
"""
from typing import Any, Iterable, List, Mapping

from app.models.game import GameSetupError, Team

MIN_TEAMS = 2

TEAM_COLORS = [
    "#D97706",  # Gold
    "#6B7C1F",  # Olive
    "#B45309",  # Rust
    "#1E3A8A",  # Ink Blue
    "#4A1C0E",  # Mahogany
    "#78350F",  # Warm Brown
]


def build_teams(entries: Iterable[Any]) -> List[Team]:
    """
    Valide et normalise la saisie des équipes.

    Args:
        entries: noms (str), dicts {"name", "color"?} ou `Team`.

    Returns:
        List[Team]: équipes à score 0, couleurs complétées.

    Raises:
        GameSetupError: moins de 2 équipes, nom vide ou doublon.
    """
    teams: List[Team] = []
    seen = set()
    for i, entry in enumerate(entries or []):
        if isinstance(entry, Team):
            name, color = entry.name, entry.color
        elif isinstance(entry, Mapping):
            name, color = entry.get("name"), entry.get("color")
        else:
            name, color = entry, None
        name = str(name or "").strip()
        if not name:
            raise GameSetupError(f"Team #{i + 1} needs a name")
        if name.lower() in seen:
            raise GameSetupError(f"Team names must be unique ('{name}' is used twice)")
        seen.add(name.lower())
        teams.append(Team(name=name, color=color or TEAM_COLORS[i % len(TEAM_COLORS)], score=0))

    if len(teams) < MIN_TEAMS:
        raise GameSetupError("Add at least 2 teams to start a game")
    return teams
