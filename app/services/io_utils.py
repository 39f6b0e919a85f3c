"""
Utilitaires IO JSON (rapides) basés sur orjson.
- read_json(Path, default)  → Any (default si fichier manquant ou vide)
- write_json(Path, data)    → écriture atomique (fichier temporaire + replace)

Attention:
- orjson renvoie/attend des bytes; on lit/écrit en mode binaire.
- Les clés non-str ne sont pas acceptées par orjson (OPT_NON_STR_KEYS non activé).
"""
import os
from pathlib import Path
from typing import Any

import orjson as json


def read_json(path: Path, default: Any = None) -> Any:
    """Lit un fichier JSON (ou `default` s'il n'existe pas / est vide)."""
    if not path.exists():
        return default
    with path.open("rb") as f:
        raw = f.read()
    if not raw.strip():
        return default
    return json.loads(raw)


def write_json(path: Path, data: Any) -> None:
    """Écrit un fichier JSON sans jamais laisser un fichier à moitié écrit."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("wb") as f:
        f.write(json.dumps(data, option=json.OPT_INDENT_2))
    os.replace(tmp, path)
