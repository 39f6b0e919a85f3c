"""
Custom word pool.
Words proposed by players (source "user") or curated by admins (source "admin"),
stored per mode in DATA_DIR/custom_words.json. A (mode, word) pair is unique,
compared case-insensitively.

Only free-text modes draw from this pool; structured modes (trivia, fill in the
blank, taboo) ignore it.
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional
from uuid import uuid4

from app.config.settings import settings
from app.services.mode_catalog import Mode, parse_mode
from .io_utils import read_json, write_json

WORDS_PATH = Path(settings.DATA_DIR) / "custom_words.json"
WORD_SOURCES = ("user", "admin")


class DuplicateWordError(ValueError):
    """The (mode, word) combination already exists."""


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class CustomWordPool:
    """
    Persisted structure:
    {
      "words": [ {id, mode, word, difficulty, region, source, created_at}, ... ]
    }
    """

    def __init__(self, path: Path = WORDS_PATH) -> None:
        self.path = path
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _load(self) -> List[Dict[str, Any]]:
        data = read_json(self.path, default={}) or {}
        words = data.get("words", []) if isinstance(data, dict) else []
        return [w for w in words if isinstance(w, dict)]

    def _save(self, words: List[Dict[str, Any]]) -> None:
        write_json(self.path, {"words": words})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def insert(
        self,
        mode: Any,
        word: str,
        difficulty: Optional[str] = None,
        region: Optional[str] = None,
        source: str = "user",
    ) -> Dict[str, Any]:
        """Add a word; raise DuplicateWordError on an existing (mode, word) pair."""
        m = parse_mode(mode)
        text = _clean(word)
        if not text:
            raise ValueError("word is required and must be non-empty")
        if source not in WORD_SOURCES:
            raise ValueError(f"source must be one of {WORD_SOURCES}")
        with self._lock:
            words = self._load()
            key = text.lower()
            if any(w.get("mode") == m.value and str(w.get("word", "")).strip().lower() == key for w in words):
                raise DuplicateWordError("Duplicate: this mode and word combination already exists")
            entry = {
                "id": uuid4().hex,
                "mode": m.value,
                "word": text,
                "difficulty": _clean(difficulty),
                "region": _clean(region),
                "source": source,
                "created_at": datetime.now(timezone.utc).isoformat(),
            }
            words.append(entry)
            self._save(words)
            return entry

    def query(self, mode: Mode, difficulty: Optional[str] = None, region: Optional[str] = None) -> List[str]:
        """Words for a mode, optionally narrowed to a difficulty and/or a region."""
        diff = _clean(difficulty)
        reg = _clean(region)
        with self._lock:
            words = self._load()
        out = []
        for w in words:
            if w.get("mode") != mode.value:
                continue
            if diff is not None and w.get("difficulty") != diff:
                continue
            if reg is not None and w.get("region") != reg:
                continue
            out.append(w["word"])
        return out

    def list(self, mode: Optional[Mode] = None) -> List[Dict[str, Any]]:
        """Entries, newest first."""
        with self._lock:
            words = self._load()
        if mode is not None:
            words = [w for w in words if w.get("mode") == mode.value]
        return sorted(words, key=lambda w: w.get("created_at", ""), reverse=True)

    def delete(self, word_id: str) -> bool:
        with self._lock:
            words = self._load()
            kept = [w for w in words if w.get("id") != word_id]
            if len(kept) == len(words):
                return False
            self._save(kept)
            return True


POOL = CustomWordPool()
