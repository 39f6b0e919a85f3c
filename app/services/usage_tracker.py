"""
Service: usage_tracker.py
Rôle:
- Compter, par session, l'usage de la source générative : appels, tokens, échecs, replis.
- Couper la génération (sans erreur) quand une session dépasse ses plafonds souples.

Stockage:
- `UsageRepository` : interface (incrément atomique par champ, lecture, liste).
- `InMemoryUsageRepository` : pour les tests / le dev.
- `JsonUsageRepository` : persistant (DATA_DIR/usage.json), écrit sous verrou.

Le dépôt durable est l'unique écrivain et l'unique source de lecture : pas de cache
mémoire fusionné "au max" avec le disque.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from threading import RLock
from typing import Dict, Optional, Protocol

from app.config.settings import settings
from .io_utils import read_json, write_json

logger = logging.getLogger(__name__)

USAGE_PATH = Path(settings.DATA_DIR) / "usage.json"
ANONYMOUS_SESSION = "anonymous"
COUNTERS = ("calls", "tokens", "failures", "fallbacks")


def session_key(session_id: Optional[str]) -> str:
    sid = (session_id or "").strip() if isinstance(session_id, str) else ""
    return sid or ANONYMOUS_SESSION


@dataclass
class UsageRecord:
    calls: int = 0
    tokens: int = 0
    failures: int = 0
    fallbacks: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class UsageRepository(Protocol):
    def increment(self, session_id: str, **deltas: int) -> None: ...

    def get(self, session_id: str) -> UsageRecord: ...

    def all(self) -> Dict[str, UsageRecord]: ...


def _clean_deltas(deltas: Dict[str, int]) -> Dict[str, int]:
    unknown = set(deltas) - set(COUNTERS)
    if unknown:
        raise ValueError(f"Unknown usage counters: {sorted(unknown)}")
    # compteurs monotones : jamais de décrément
    return {k: max(0, int(v or 0)) for k, v in deltas.items()}


class InMemoryUsageRepository:
    """Compteurs en mémoire (perdus au redémarrage)."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, int]] = {}
        self._lock = RLock()

    def increment(self, session_id: str, **deltas: int) -> None:
        clean = _clean_deltas(deltas)
        with self._lock:
            entry = self._data.setdefault(session_id, {k: 0 for k in COUNTERS})
            for k, v in clean.items():
                entry[k] += v

    def get(self, session_id: str) -> UsageRecord:
        with self._lock:
            return UsageRecord(**self._data.get(session_id, {}))

    def all(self) -> Dict[str, UsageRecord]:
        with self._lock:
            return {sid: UsageRecord(**entry) for sid, entry in self._data.items()}


class JsonUsageRepository:
    """
    Compteurs persistés dans un fichier JSON {session_id: {calls, tokens, ...}}.
    Chaque incrément relit puis réécrit le fichier sous verrou : pas de course
    lecture/modification/écriture entre requêtes concurrentes du même process.
    """

    def __init__(self, path: Path = USAGE_PATH) -> None:
        self.path = path
        self._lock = RLock()

    def _load(self) -> Dict[str, Dict[str, int]]:
        data = read_json(self.path, default={})
        return data if isinstance(data, dict) else {}

    def increment(self, session_id: str, **deltas: int) -> None:
        clean = _clean_deltas(deltas)
        with self._lock:
            data = self._load()
            entry = data.setdefault(session_id, {})
            for k in COUNTERS:
                entry[k] = int(entry.get(k, 0)) + clean.get(k, 0)
            write_json(self.path, data)

    def get(self, session_id: str) -> UsageRecord:
        with self._lock:
            entry = self._load().get(session_id) or {}
        return UsageRecord(**{k: int(entry.get(k, 0)) for k in COUNTERS})

    def all(self) -> Dict[str, UsageRecord]:
        with self._lock:
            data = self._load()
        return {
            sid: UsageRecord(**{k: int((entry or {}).get(k, 0)) for k in COUNTERS})
            for sid, entry in data.items()
        }


class UsageTracker:
    """Façade : enregistrement des appels et test des plafonds souples."""

    def __init__(
        self,
        repository: Optional[UsageRepository] = None,
        soft_call_limit: int = settings.SOFT_LIMIT_CALLS,
        soft_token_limit: int = settings.SOFT_LIMIT_TOKENS,
    ) -> None:
        self.repository = repository if repository is not None else InMemoryUsageRepository()
        self.soft_call_limit = soft_call_limit
        self.soft_token_limit = soft_token_limit

    def record(self, session_id: Optional[str], tokens: int = 0, success: bool = True, fallback: bool = False) -> None:
        """
        Comptabilise UN appel au générateur.
        Une erreur d'écriture est journalisée puis ignorée : elle ne doit pas bloquer la partie.
        """
        sid = session_key(session_id)
        try:
            self.repository.increment(
                sid,
                calls=1,
                tokens=tokens,
                failures=0 if success else 1,
                fallbacks=1 if fallback else 0,
            )
        except (OSError, ValueError):
            logger.exception("Usage counter write failed", extra={"usage_session": sid})

    def get(self, session_id: Optional[str]) -> UsageRecord:
        """Usage d'une session (zéro si inconnue ou si le stockage est illisible)."""
        sid = session_key(session_id)
        try:
            return self.repository.get(sid)
        except (OSError, ValueError):
            logger.warning("Usage counter read failed", exc_info=True, extra={"usage_session": sid})
            return UsageRecord()

    def all(self) -> Dict[str, Dict[str, int]]:
        return {sid: rec.to_dict() for sid, rec in self.repository.all().items()}

    def is_over_limit(self, session_id: Optional[str]) -> bool:
        entry = self.get(session_id)
        if entry.calls >= self.soft_call_limit:
            return True
        if self.soft_token_limit > 0 and entry.tokens >= self.soft_token_limit:
            return True
        return False


TRACKER = UsageTracker(JsonUsageRepository())
