"""
Service: game_engine.py
Rôle:
- Machine à états d'une partie (un moteur par session client, un seul appareil partagé).
- Chrono de manche intégré : à expiration la manche est comptée 0 point, une seule fois.

Phases:
    SETUP → MODE_SELECTED → SHOW_RULES → ROUND_ACTIVE → ROUND_RESULT
          → { ROUND_ACTIVE (même set) | MODE_COMPLETE | GAME_COMPLETE }
    MODE_COMPLETE → MODE_SELECTED (nouveau set) ou GAME_COMPLETE
    Le statut passe à `finished` dès que la dernière manche est scorée (hook `on_finish` appelé une fois).

Refus:
- saisie invalide (équipes, mode, taille de set, points) → `GameSetupError`, AVANT toute mutation ;
- transition hors phase (scorer deux fois, passer la règle deux fois…) → no-op journalisé,
  l'état renvoyé est inchangé.

API interne exposée aux routes:
- ENGINE.start_game(teams, rounds_per_team, difficulty, region)
- ENGINE.start_round_set(mode, rounds_in_set) / ENGINE.choose_next_mode()
- ENGINE.dismiss_rules()
- await ENGINE.request_card(excluded_keys)
- ENGINE.score_round(points, card, source, duration_ms) / ENGINE.expire_round()
- ENGINE.next_round(), ENGINE.end_game(), ENGINE.reset()
"""
from __future__ import annotations

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from anyio import to_thread

from app.models.card import (
    Card,
    CardSource,
    InvalidCardError,
    card_from_raw,
    card_to_raw,
    normalize_card_key,
    normalize_raw_key,
)
from app.models.game import (
    CardFetchError,
    GamePhase,
    GameSetupError,
    GameState,
    GameStatus,
    Round,
    RoundNotActiveError,
    SetProgress,
    utcnow,
)
from app.services.card_resolver import (
    CONFIG,
    RESOLVER,
    CardResolver,
    ConfigStore,
    ModeDisabledError,
    ResolvedCard,
)
from app.services.mode_catalog import CATALOG, VALID_POINTS, ModeCatalog, UnknownModeError, parse_mode
from app.utils.team_utils import build_teams

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS_PER_TEAM = 5


class GameEngine:
    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        resolver: CardResolver = RESOLVER,
        config_store: ConfigStore = CONFIG,
        catalog: ModeCatalog = CATALOG,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
        on_finish: Optional[Callable[["GameEngine"], None]] = None,
    ) -> None:
        self.state = GameState(session_id=session_id or uuid4().hex)
        self.resolver = resolver
        self.config_store = config_store
        self.catalog = catalog
        self.clock = clock
        self.sleep = sleep
        self.on_finish = on_finish

        self._timer_task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Future] = None
        self._held: Optional[ResolvedCard] = None
        # numéro de la manche active ; sert de garde d'idempotence (score / expiration)
        self._round_serial = 0
        self._scored_serial = 0
        self._round_started_at: Optional[float] = None

    @property
    def session_id(self) -> str:
        return self.state.session_id

    def _reject(self, action: str) -> GameState:
        logger.info(
            "Ignored transition",
            extra={"game_session": self.session_id, "game_action": action, "game_phase": self.state.phase.value},
        )
        return self.state

    # ------------------------------------------------------------------
    # Mise en place
    # ------------------------------------------------------------------
    def start_game(
        self,
        teams: Iterable[Any],
        rounds_per_team: int = DEFAULT_ROUNDS_PER_TEAM,
        difficulty: Optional[str] = None,
        region: Optional[str] = None,
    ) -> GameState:
        """Démarre une partie (équipes, manches par équipe) et passe en MODE_SELECTED."""
        if self.state.status == GameStatus.PLAYING:
            return self._reject("start_game")
        built = build_teams(teams)
        try:
            per_team = int(rounds_per_team)
        except (TypeError, ValueError):
            raise GameSetupError("Rounds per team must be a whole number") from None
        if per_team < 1:
            raise GameSetupError("Each team needs at least 1 round")

        self._cancel_timer()
        self._drop_card()
        self.state = GameState(
            session_id=self.session_id,
            teams=built,
            rounds_per_team=per_team,
            status=GameStatus.PLAYING,
            phase=GamePhase.MODE_SELECTED,
            difficulty=(difficulty or None),
            region=(region or None),
            started_at=utcnow(),
        )
        logger.info(
            "Game started",
            extra={"game_session": self.session_id, "teams": len(built), "rounds_per_team": per_team},
        )
        return self.state

    def start_round_set(self, mode: Any, rounds_in_set: int) -> GameState:
        """Verrouille `mode` pour `rounds_in_set` manches puis affiche les règles."""
        if self.state.phase not in (GamePhase.MODE_SELECTED, GamePhase.MODE_COMPLETE):
            return self._reject("start_round_set")
        try:
            m = parse_mode(mode)
        except UnknownModeError as exc:
            raise GameSetupError(str(exc)) from None
        if not self.config_store.get().is_enabled(m):
            raise GameSetupError(f"The '{m.value}' mode is currently disabled, pick another one")
        remaining = self.state.remaining_rounds
        try:
            size = int(rounds_in_set)
        except (TypeError, ValueError):
            raise GameSetupError("Rounds in set must be a whole number") from None
        if not 1 <= size <= remaining:
            raise GameSetupError(f"Choose between 1 and {remaining} rounds for this set")

        self.state.round_set = SetProgress(selected_mode=m, total_rounds_in_set=size, rounds_completed_in_set=0)
        self.state.phase = GamePhase.SHOW_RULES
        self._drop_card()
        logger.info(
            "Round set started",
            extra={"game_session": self.session_id, "card_mode": m.value, "rounds_in_set": size},
        )
        return self.state

    def choose_next_mode(self) -> GameState:
        """MODE_COMPLETE → MODE_SELECTED (libère le mode verrouillé)."""
        if self.state.phase != GamePhase.MODE_COMPLETE:
            return self._reject("choose_next_mode")
        self.state.round_set = SetProgress()
        self.state.phase = GamePhase.MODE_SELECTED
        return self.state

    def dismiss_rules(self) -> GameState:
        if self.state.phase != GamePhase.SHOW_RULES:
            return self._reject("dismiss_rules")
        self._activate_round()
        return self.state

    # ------------------------------------------------------------------
    # Manche
    # ------------------------------------------------------------------
    def _activate_round(self) -> None:
        self.state.phase = GamePhase.ROUND_ACTIVE
        self._round_serial += 1
        self._round_started_at = self.clock()
        self._drop_card()
        duration = self.catalog.duration(self.state.round_set.selected_mode)
        if duration > 0:
            self._start_timer(duration)

    def _hold(self, resolved: ResolvedCard) -> None:
        self._held = resolved
        self.state.current_card = card_to_raw(resolved.card)
        self.state.current_card_source = resolved.source

    def _drop_card(self) -> None:
        self._held = None
        self.state.current_card = None
        self.state.current_card_source = None
        # une requête en vol n'est pas annulée : `_fetch` ignore son résultat si la manche a changé
        self._pending = None

    async def request_card(self, excluded_keys: Optional[Iterable[Any]] = None) -> ResolvedCard:
        """
        Carte de la manche active.
        - déjà tirée → renvoyée telle quelle ;
        - requête en cours → on attend la même (pas de second appel) ;
        - échec de la requête elle-même → CardFetchError (réessayable).
        """
        if self.state.phase != GamePhase.ROUND_ACTIVE:
            raise RoundNotActiveError("No active round: dismiss the rules or start the next round first")
        if self._held is not None:
            return self._held
        if self._pending is None or self._pending.done():
            # ordre conservé : clés de la partie puis celles du client
            excluded = list(self.state.used_card_keys)
            excluded.extend(normalize_raw_key(k) for k in (excluded_keys or []) if k is not None)
            self._pending = asyncio.ensure_future(self._fetch(self._round_serial, excluded))
        return await asyncio.shield(self._pending)

    async def _fetch(self, serial: int, excluded: List[str]) -> ResolvedCard:
        mode = self.state.round_set.selected_mode
        call = functools.partial(
            self.resolver.resolve,
            mode,
            difficulty=self.state.difficulty,
            region=self.state.region,
            excluded_keys=excluded,
            session_id=self.session_id,
            config=self.config_store.get(),
        )
        try:
            resolved = await to_thread.run_sync(call)
        except (UnknownModeError, ModeDisabledError) as exc:
            raise CardFetchError(str(exc), retryable=False) from exc
        except Exception as exc:
            logger.exception("Card request failed", extra={"game_session": self.session_id})
            raise CardFetchError("Could not load a card, retrying") from exc

        # la manche a pu se terminer pendant l'attente : on ne rattache pas la carte
        if serial == self._round_serial and self.state.phase == GamePhase.ROUND_ACTIVE:
            self._hold(resolved)
        return resolved

    def _coerce_card(self, card: Any) -> Optional[Card]:
        mode = self.state.round_set.selected_mode
        if card is None:
            return self._held.card if self._held else None
        if isinstance(card, ResolvedCard):
            return card.card
        try:
            if hasattr(card, "kind"):
                return card_from_raw(mode, card_to_raw(card))
            return card_from_raw(mode, card)
        except InvalidCardError as exc:
            raise GameSetupError(str(exc)) from None

    def score_round(
        self,
        points: int,
        card: Any = None,
        source: Any = None,
        duration_ms: Optional[int] = None,
        skipped: bool = False,
    ) -> GameState:
        """
        Clôture la manche active (une seule fois) : points à l'équipe courante, manche
        archivée, pointeur d'équipe avancé, clé de carte marquée comme vue.
        """
        if self.state.phase != GamePhase.ROUND_ACTIVE or self._scored_serial == self._round_serial:
            return self._reject("score_round")
        if isinstance(points, bool) or points not in VALID_POINTS:
            raise GameSetupError(f"Points must be one of {VALID_POINTS}")
        typed = self._coerce_card(card)
        if source is None and self._held is not None:
            source = self._held.source
        if typed is None and not skipped:
            raise GameSetupError("No card has been drawn for this round yet")
        src: Optional[CardSource] = None
        if source is not None:
            try:
                src = CardSource(source)
            except ValueError:
                raise GameSetupError(f"Unknown card source '{source}'") from None
        elif typed is not None:
            raise GameSetupError("Card source is required")
        if duration_ms is None and self._round_started_at is not None:
            duration_ms = int((self.clock() - self._round_started_at) * 1000)

        self._scored_serial = self._round_serial
        self._cancel_timer()

        team = self.state.current_team
        team.score += points
        self.state.rounds.append(
            Round(
                team_name=team.name,
                mode=self.state.round_set.selected_mode,
                card=card_to_raw(typed) if typed is not None else None,
                points_earned=points,
                source=src,
                duration_ms=duration_ms,
                skipped=skipped,
            )
        )
        self.state.current_team_index = (self.state.current_team_index + 1) % len(self.state.teams)
        if typed is not None:
            key = normalize_card_key(typed)
            if key not in self.state.used_card_keys:
                self.state.used_card_keys.append(key)
        self.state.round_set.rounds_completed_in_set += 1
        self.state.phase = GamePhase.ROUND_RESULT
        self._drop_card()
        logger.info(
            "Round scored",
            extra={"game_session": self.session_id, "team": team.name, "points": points, "skipped": skipped},
        )
        if self.state.is_complete:
            # dernière manche : la partie est terminée, la phase reste ROUND_RESULT jusqu'à next_round
            self._finish(early=False)
        return self.state

    def expire_round(self, serial: Optional[int] = None) -> GameState:
        """Fin de chrono : 0 point, manche marquée `skipped`. Sans effet si déjà scorée."""
        if serial is not None and serial != self._round_serial:
            return self.state
        if self.state.phase != GamePhase.ROUND_ACTIVE or self._scored_serial == self._round_serial:
            return self.state
        return self.score_round(0, skipped=True)

    def next_round(self) -> GameState:
        if self.state.phase != GamePhase.ROUND_RESULT:
            return self._reject("next_round")
        if self.state.is_complete:
            self.state.phase = GamePhase.GAME_COMPLETE
        elif self.state.round_set.done:
            self.state.phase = GamePhase.MODE_COMPLETE
        else:
            self._activate_round()
        return self.state

    def end_game(self) -> GameState:
        """Fin anticipée (ou confirmée) : aucune manche partielle n'est archivée."""
        if self.state.phase == GamePhase.GAME_COMPLETE:
            return self._reject("end_game")
        self._cancel_timer()
        self._drop_card()
        if self.state.status != GameStatus.FINISHED:
            self._finish(early=not self.state.is_complete)
        self.state.phase = GamePhase.GAME_COMPLETE
        return self.state

    def reset(self) -> GameState:
        self._cancel_timer()
        self._drop_card()
        self._round_started_at = None
        self.state = GameState(session_id=self.session_id)
        return self.state

    def _finish(self, early: bool) -> None:
        self.state.status = GameStatus.FINISHED
        self.state.ended_early = early
        logger.info(
            "Game finished",
            extra={"game_session": self.session_id, "rounds": len(self.state.rounds), "ended_early": early},
        )
        if self.on_finish is not None and self.state.teams:
            try:
                self.on_finish(self)
            except Exception:
                logger.exception("Finished game hook failed", extra={"game_session": self.session_id})

    # ---------------- chrono ----------------
    def _start_timer(self, seconds: int) -> None:
        """Chrono non bloquant ; sans boucle asyncio active (appel synchrone), pas de chrono."""
        self._cancel_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, round timer not started", extra={"game_session": self.session_id})
            return
        serial = self._round_serial

        async def _runner():
            try:
                await self.sleep(seconds)
            except asyncio.CancelledError:
                return
            self.expire_round(serial)

        self._timer_task = loop.create_task(_runner())

    def _cancel_timer(self) -> None:
        task = self._timer_task
        self._timer_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    @property
    def has_timer(self) -> bool:
        return bool(self._timer_task and not self._timer_task.done())

    # ---------------- vues ----------------
    def snapshot(self) -> Dict[str, Any]:
        """État sérialisable pour l'UI (alias camelCase + champs calculés)."""
        data = self.state.model_dump(mode="json", by_alias=True)
        team = self.state.current_team
        mode = self.state.round_set.selected_mode
        data.update(
            {
                "totalRounds": self.state.total_rounds,
                "remainingRounds": self.state.remaining_rounds,
                "isComplete": self.state.is_complete,
                "currentTeam": team.name if team else None,
                "modeDuration": self.catalog.duration(mode) if mode else None,
                "hasTimer": self.has_timer,
            }
        )
        return data

    def summary(self) -> Dict[str, Any]:
        """Résumé de fin de partie pour l'enregistreur de sessions."""
        teams = [t.model_dump(mode="json", by_alias=True) for t in self.state.teams]
        winner = max(self.state.teams, key=lambda t: t.score).name if self.state.teams else None
        modes = [r.mode.value for r in self.state.rounds]
        return {
            "sessionId": self.session_id,
            "playedAt": (self.state.started_at or utcnow()).isoformat(),
            "teams": teams,
            "rounds": [r.model_dump(mode="json", by_alias=True) for r in self.state.rounds],
            "winner": winner,
            "totalRounds": len(self.state.rounds),
            "plannedRounds": self.state.total_rounds,
            "roundsPerTeam": self.state.rounds_per_team,
            "selectedMode": modes[-1] if modes else None,
            "difficulty": self.state.difficulty,
            "endedEarly": self.state.ended_early,
        }
