from __future__ import annotations

import asyncio
import time
from unittest.mock import Mock

import pytest

from app.models.card import CardSource, card_from_raw
from app.models.game import (
    CardFetchError,
    GamePhase,
    GameSetupError,
    GameStatus,
    RoundNotActiveError,
)
from app.services.card_resolver import ConfigStore, ResolvedCard, ResolverConfig
from app.services.game_engine import GameEngine
from app.services.mode_catalog import Mode

NO_GENERATION = ResolverConfig(top_up_rate=0.0)


class SlowResolver:
    """Résolveur factice : compte les appels, répond après un court délai."""

    def __init__(self, fail_first: bool = False):
        self.calls = 0
        self.fail_first = fail_first
        self.last_kwargs = {}

    def resolve(self, mode, **kwargs):
        self.calls += 1
        self.last_kwargs = kwargs
        time.sleep(0.05)
        if self.fail_first and self.calls == 1:
            raise RuntimeError("network down")
        return ResolvedCard(card=card_from_raw(mode, "Faith"), source=CardSource.BUILTIN, mode=mode)


async def _instant(_seconds):
    await asyncio.sleep(0)


async def _forever(_seconds):
    await asyncio.Event().wait()


def _play_round(engine: GameEngine, points: int):
    asyncio.run(engine.request_card())
    return engine.score_round(points)


def _ready(engine: GameEngine, teams=("Red", "Blue"), per_team=1, mode="trivia", size=1):
    engine.start_game(list(teams), rounds_per_team=per_team)
    engine.start_round_set(mode, size)
    engine.dismiss_rules()
    return engine


# ---------------------------------------------------------------------------
# Mise en place
# ---------------------------------------------------------------------------
def test_start_game_requires_two_teams(engine):
    with pytest.raises(GameSetupError, match="Add at least 2 teams"):
        engine.start_game(["Solo"])

    assert engine.state.phase == GamePhase.SETUP
    assert engine.state.status == GameStatus.IDLE
    assert engine.state.teams == []


@pytest.mark.parametrize("teams", [["Red", "red"], ["Red", "  "]])
def test_start_game_rejects_bad_team_names(engine, teams):
    with pytest.raises(GameSetupError):
        engine.start_game(teams)
    assert engine.state.phase == GamePhase.SETUP


def test_start_game_rejects_zero_rounds(engine):
    with pytest.raises(GameSetupError):
        engine.start_game(["Red", "Blue"], rounds_per_team=0)


def test_start_game_assigns_palette_colors(engine):
    state = engine.start_game(["Red", {"name": "Blue", "color": "#0000FF"}], rounds_per_team=2, difficulty="easy")

    assert state.phase == GamePhase.MODE_SELECTED
    assert state.status == GameStatus.PLAYING
    assert state.teams[0].color.startswith("#")
    assert state.teams[1].color == "#0000FF"
    assert state.total_rounds == 4
    assert state.difficulty == "easy"


def test_oversize_set_is_rejected_without_mutation(engine):
    engine.start_game(["Red", "Blue"], rounds_per_team=2)
    before = engine.state.model_dump()

    with pytest.raises(GameSetupError, match="between 1 and 4"):
        engine.start_round_set("act", 5)
    with pytest.raises(GameSetupError):
        engine.start_round_set("act", 0)

    assert engine.state.model_dump() == before


def test_unknown_or_disabled_mode_is_rejected(resolver):
    engine = GameEngine(
        "g",
        resolver=resolver,
        config_store=ConfigStore(ResolverConfig(top_up_rate=0.0, enabled_modes=frozenset({Mode.TRIVIA}))),
    )
    engine.start_game(["Red", "Blue"])

    with pytest.raises(GameSetupError, match="Invalid or missing mode"):
        engine.start_round_set("karaoke", 1)
    with pytest.raises(GameSetupError, match="disabled"):
        engine.start_round_set("act", 1)
    assert engine.state.phase == GamePhase.MODE_SELECTED


def test_out_of_phase_transitions_are_noops(engine):
    assert engine.dismiss_rules().phase == GamePhase.SETUP
    assert engine.next_round().phase == GamePhase.SETUP
    assert engine.score_round(2).rounds == []
    assert engine.start_round_set("trivia", 1).phase == GamePhase.SETUP


# ---------------------------------------------------------------------------
# Déroulé
# ---------------------------------------------------------------------------
def test_red_blue_trivia_scenario(engine):
    _ready(engine)
    first = asyncio.run(engine.request_card())
    assert first.source == CardSource.BUILTIN
    assert engine.state.current_card is not None

    engine.score_round(2)
    red, blue = engine.state.teams
    assert red.score == 2
    assert engine.state.current_team_index == 1
    assert engine.state.status == GameStatus.PLAYING

    assert engine.next_round().phase == GamePhase.MODE_COMPLETE
    engine.start_round_set("trivia", 1)
    engine.dismiss_rules()
    _play_round(engine, 0)

    assert len(engine.state.rounds) == 2 == len(engine.state.teams) * engine.state.rounds_per_team
    assert engine.state.status == GameStatus.FINISHED
    assert engine.state.ended_early is False
    assert blue.score == 0
    assert engine.state.rounds[0].card != engine.state.rounds[1].card
    assert engine.next_round().phase == GamePhase.GAME_COMPLETE


def test_score_round_is_idempotent(engine):
    _ready(engine)
    asyncio.run(engine.request_card())

    engine.score_round(2)
    engine.score_round(2)
    engine.expire_round()

    assert len(engine.state.rounds) == 1
    assert engine.state.teams[0].score == 2


def test_score_conservation_and_round_robin(engine):
    _ready(engine, teams=("Red", "Blue", "Green"), per_team=2, size=6)
    points = [2, 0, 2, 2, 0, 0]

    for i, p in enumerate(points):
        _play_round(engine, p)
        if i < len(points) - 1:
            engine.next_round()

    state = engine.state
    assert sum(t.score for t in state.teams) == sum(r.points_earned for r in state.rounds) == 6
    assert [r.team_name for r in state.rounds] == [state.teams[i % 3].name for i in range(6)]
    assert state.is_complete and state.status == GameStatus.FINISHED


def test_set_completion_returns_to_mode_choice(engine):
    _ready(engine, per_team=2, size=2)
    _play_round(engine, 2)
    assert engine.next_round().phase == GamePhase.ROUND_ACTIVE
    _play_round(engine, 2)

    assert engine.next_round().phase == GamePhase.MODE_COMPLETE
    state = engine.choose_next_mode()
    assert state.phase == GamePhase.MODE_SELECTED
    assert state.round_set.selected_mode is None


def test_invalid_points_rejected_without_mutation(engine):
    _ready(engine)
    asyncio.run(engine.request_card())

    with pytest.raises(GameSetupError):
        engine.score_round(3)

    assert engine.state.rounds == []
    assert engine.state.phase == GamePhase.ROUND_ACTIVE


def test_boolean_points_are_rejected(engine):
    _ready(engine)
    asyncio.run(engine.request_card())

    with pytest.raises(GameSetupError):
        engine.score_round(False)

    assert engine.state.rounds == []


def test_score_requires_a_card(engine):
    _ready(engine)
    with pytest.raises(GameSetupError, match="No card"):
        engine.score_round(2)


def test_score_with_client_card(engine):
    _ready(engine)
    card = {"q": "Who built the ark?", "a": "Noah", "options": ["Noah", "Moses", "Abraham", "David"]}

    engine.score_round(2, card=card, source="generated", duration_ms=4200)

    rnd = engine.state.rounds[0]
    assert rnd.card == card
    assert rnd.source == CardSource.GENERATED
    assert rnd.duration_ms == 4200
    assert engine.state.used_card_keys == ['{"q":"who built the ark?","a":"noah","options":["noah","moses","abraham","david"]}']


# ---------------------------------------------------------------------------
# Cartes
# ---------------------------------------------------------------------------
def test_request_card_outside_active_round(engine):
    engine.start_game(["Red", "Blue"])
    with pytest.raises(RoundNotActiveError):
        asyncio.run(engine.request_card())


def test_request_card_is_not_issued_twice():
    resolver = SlowResolver()
    engine = _ready(GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION)), mode="explain")

    async def scenario():
        a, b = await asyncio.gather(engine.request_card(), engine.request_card())
        c = await engine.request_card()
        return a, b, c

    a, b, c = asyncio.run(scenario())

    assert resolver.calls == 1
    assert a is b is c
    assert engine.state.current_card == "Faith"


def test_excluded_keys_keep_game_order_then_client_order():
    resolver = SlowResolver()
    engine = _ready(
        GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION)), per_team=1, mode="act", size=2
    )
    _play_round(engine, 2)
    engine.next_round()

    asyncio.run(engine.request_card(["Zion", "Exodus"]))

    assert list(resolver.last_kwargs["excluded_keys"]) == ["faith", "zion", "exodus"]


def test_failed_card_request_is_retryable():
    resolver = SlowResolver(fail_first=True)
    engine = _ready(GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION)), mode="explain")

    with pytest.raises(CardFetchError) as exc_info:
        asyncio.run(engine.request_card())
    assert exc_info.value.retryable is True
    assert engine.state.phase == GamePhase.ROUND_ACTIVE

    resolved = asyncio.run(engine.request_card())
    assert resolved.card.text == "Faith"
    assert resolver.calls == 2


def test_late_card_is_not_attached_after_end_game():
    resolver = SlowResolver()
    engine = _ready(GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION)), mode="explain")

    async def scenario():
        task = asyncio.ensure_future(engine.request_card())
        await asyncio.sleep(0)
        engine.end_game()
        return await task

    asyncio.run(scenario())

    assert engine.state.current_card is None
    assert engine.state.rounds == []
    assert engine.state.ended_early is True
    assert engine.state.phase == GamePhase.GAME_COMPLETE


# ---------------------------------------------------------------------------
# Chrono
# ---------------------------------------------------------------------------
def test_timer_expiry_records_one_skipped_round(resolver):
    engine = GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION), sleep=_instant)

    async def scenario():
        _ready(engine, mode="act")
        assert engine.has_timer
        for _ in range(5):
            await asyncio.sleep(0)

    asyncio.run(scenario())
    engine.expire_round()

    assert len(engine.state.rounds) == 1
    rnd = engine.state.rounds[0]
    assert rnd.skipped is True and rnd.points_earned == 0 and rnd.card is None
    assert engine.state.current_team_index == 1
    assert engine.state.phase == GamePhase.ROUND_RESULT


def test_manual_score_cancels_timer(resolver):
    engine = GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION), sleep=_forever)

    async def scenario():
        _ready(engine, mode="act")
        await engine.request_card()
        engine.score_round(2)
        assert engine.has_timer is False
        engine.expire_round()

    asyncio.run(scenario())

    assert len(engine.state.rounds) == 1
    assert engine.state.rounds[0].skipped is False


def test_untimed_mode_has_no_timer(resolver):
    engine = GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION), sleep=_instant)

    async def scenario():
        _ready(engine, mode="trivia")
        return engine.has_timer

    assert asyncio.run(scenario()) is False


def test_stale_timer_serial_is_ignored(engine):
    _ready(engine)
    engine.expire_round(serial=999)
    assert engine.state.rounds == []


# ---------------------------------------------------------------------------
# Fin de partie
# ---------------------------------------------------------------------------
def test_end_game_mid_round_records_nothing(resolver):
    hook = Mock()
    engine = GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION), on_finish=hook)
    _ready(engine, per_team=2, size=2)
    asyncio.run(engine.request_card())

    state = engine.end_game()

    assert state.rounds == []
    assert state.status == GameStatus.FINISHED
    assert state.ended_early is True
    hook.assert_called_once_with(engine)
    engine.end_game()
    hook.assert_called_once()


def test_finish_hook_called_once_on_normal_completion(resolver):
    hook = Mock()
    engine = GameEngine("g", resolver=resolver, config_store=ConfigStore(NO_GENERATION), on_finish=hook)
    _ready(engine, size=1)
    _play_round(engine, 2)
    engine.next_round()
    engine.start_round_set("taboo", 1)
    engine.dismiss_rules()
    _play_round(engine, 2)

    engine.next_round()
    engine.end_game()

    hook.assert_called_once_with(engine)


def test_finish_hook_errors_do_not_break_the_game(resolver):
    engine = GameEngine(
        "g", resolver=resolver, config_store=ConfigStore(NO_GENERATION), on_finish=Mock(side_effect=OSError("disk"))
    )
    _ready(engine)
    assert engine.end_game().phase == GamePhase.GAME_COMPLETE


def test_reset_keeps_session_id(engine):
    _ready(engine)
    state = engine.reset()

    assert state.session_id == "game-test"
    assert state.phase == GamePhase.SETUP
    assert state.teams == []


def test_summary_and_snapshot(engine):
    _ready(engine)
    _play_round(engine, 0)
    engine.next_round()
    engine.start_round_set("trivia", 1)
    engine.dismiss_rules()
    _play_round(engine, 0)

    summary = engine.summary()
    assert summary["sessionId"] == "game-test"
    assert summary["winner"] == "Red"  # égalité → première équipe
    assert summary["totalRounds"] == 2
    assert summary["selectedMode"] == "trivia"
    assert summary["rounds"][0]["source"] == "builtin"
    assert summary["rounds"][0]["teamName"] == "Red"

    snap = engine.snapshot()
    assert snap["isComplete"] is True
    assert snap["roundSet"]["selectedMode"] == "trivia"
    assert snap["currentTeamIndex"] == 0
    assert snap["remainingRounds"] == 0
