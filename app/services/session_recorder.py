"""
Session recorder & leaderboard.
Finished games are stored in DATA_DIR/sessions.json keyed by session id:
re-submitting the same id overwrites the previous summary (idempotent upsert).
Per-round `source`, `durationMs` and `skipped` fields are kept as submitted.

Leaderboard entries (optional display name + score) live in
DATA_DIR/leaderboard.json.

Persistence errors raised while recording a finished game are logged and
swallowed: the in-memory game stays the source of truth during play.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional

from app.config.settings import settings
from .io_utils import read_json, write_json

logger = logging.getLogger(__name__)

SESSIONS_PATH = Path(settings.DATA_DIR) / "sessions.json"
LEADERBOARD_PATH = Path(settings.DATA_DIR) / "leaderboard.json"
MAX_LIMIT = 100
ROUND_FIELDS = (
    "teamName",
    "mode",
    "card",
    "pointsEarned",
    "timestamp",
    "source",
    "durationMs",
    "skipped",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clip_limit(limit: Any, default: int) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        value = default
    if value <= 0:
        value = default
    return min(value, MAX_LIMIT)


def _clean_round(entry: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the known round fields; optional ones only when present."""
    return {k: entry[k] for k in ROUND_FIELDS if k in entry}


class SessionRecorder:
    """
    Persisted structure:
    {
      "<session_id>": { sessionId, playedAt, teams, rounds, winner, totalRounds, ... }
    }
    """

    def __init__(self, path: Path = SESSIONS_PATH) -> None:
        self.path = path
        self._lock = RLock()

    def _load(self) -> Dict[str, Dict[str, Any]]:
        data = read_json(self.path, default={})
        return data if isinstance(data, dict) else {}

    def save(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        """Upsert a finished game summary. Raise ValueError without a session id."""
        sid = str(summary.get("sessionId") or "").strip()
        if not sid:
            raise ValueError("sessionId is required")
        record = dict(summary)
        record["sessionId"] = sid
        record.setdefault("playedAt", _now_iso())
        record["teams"] = list(summary.get("teams") or [])
        record["rounds"] = [_clean_round(r) for r in (summary.get("rounds") or []) if isinstance(r, dict)]
        with self._lock:
            data = self._load()
            data[sid] = record
            write_json(self.path, data)
        return record

    def get(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load().get(session_id)

    def recent(self, limit: Any = 50) -> List[Dict[str, Any]]:
        """Latest sessions first (by playedAt)."""
        with self._lock:
            records = list(self._load().values())
        records.sort(key=lambda r: str(r.get("playedAt") or ""), reverse=True)
        return records[: _clip_limit(limit, 50)]


class Leaderboard:
    """Persisted structure: {"entries": [ {displayName, teamName, score, sessionId, achievedAt} ]}"""

    def __init__(self, path: Path = LEADERBOARD_PATH) -> None:
        self.path = path
        self._lock = RLock()

    def _load(self) -> List[Dict[str, Any]]:
        data = read_json(self.path, default={}) or {}
        entries = data.get("entries", []) if isinstance(data, dict) else []
        return [e for e in entries if isinstance(e, dict)]

    def add(
        self,
        display_name: str,
        score: int,
        team_name: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        name = str(display_name or "").strip()
        if not name:
            raise ValueError("displayName is required")
        entry = {
            "displayName": name,
            "teamName": team_name,
            "score": int(score),
            "sessionId": session_id,
            "achievedAt": _now_iso(),
        }
        with self._lock:
            entries = self._load()
            entries.append(entry)
            write_json(self.path, {"entries": entries})
        return entry

    def top(self, limit: Any = 10, sort: str = "recent") -> List[Dict[str, Any]]:
        """`sort="score"` → best scores first, otherwise most recent first."""
        with self._lock:
            entries = self._load()
        if sort == "score":
            entries.sort(key=lambda e: e.get("score", 0), reverse=True)
        else:
            entries.sort(key=lambda e: str(e.get("achievedAt") or ""), reverse=True)
        return entries[: _clip_limit(limit, 10)]


RECORDER = SessionRecorder()
LEADERBOARD = Leaderboard()


def record_finished_game(engine: Any, recorder: Optional[SessionRecorder] = None) -> Optional[Dict[str, Any]]:
    """Hook de fin de partie : persiste le résumé, sans jamais bloquer le jeu."""
    target = recorder or RECORDER
    summary = engine.summary()
    try:
        return target.save(summary)
    except (OSError, ValueError):
        logger.exception("Session save failed", extra={"game_session": summary.get("sessionId")})
        return None
