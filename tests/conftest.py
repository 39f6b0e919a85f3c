from __future__ import annotations

import random

import pytest

from app.config.settings import settings
from app.services import game_store
from app.services.card_deck import DECK
from app.services.card_resolver import CONFIG, CardResolver, ConfigStore, ResolverConfig
from app.services.custom_words import POOL, CustomWordPool
from app.services.game_engine import GameEngine
from app.services.session_recorder import LEADERBOARD, RECORDER
from app.services.usage_tracker import TRACKER, InMemoryUsageRepository, UsageTracker


@pytest.fixture(autouse=True)
def isolated_data(tmp_path, monkeypatch):
    """Aucun test n'écrit dans app/data ni n'appelle un vrai LLM."""
    monkeypatch.setattr(settings, "LLM_PROVIDER", "none")
    monkeypatch.setattr(POOL, "path", tmp_path / "custom_words.json")
    monkeypatch.setattr(RECORDER, "path", tmp_path / "sessions.json")
    monkeypatch.setattr(LEADERBOARD, "path", tmp_path / "leaderboard.json")
    monkeypatch.setattr(TRACKER, "repository", InMemoryUsageRepository())
    monkeypatch.setattr(CONFIG, "_config", ResolverConfig())
    monkeypatch.setattr(game_store, "_ENGINES", {})
    return tmp_path


@pytest.fixture
def tracker():
    return UsageTracker(InMemoryUsageRepository(), soft_call_limit=1000, soft_token_limit=500000)


@pytest.fixture
def pool(tmp_path):
    return CustomWordPool(tmp_path / "pool.json")


@pytest.fixture
def resolver(pool, tracker):
    return CardResolver(deck=DECK, pool=pool, tracker=tracker, rng=random.Random(7))


@pytest.fixture
def engine(resolver):
    """Moteur sans génération (taux 0), pioche déterministe."""
    return GameEngine("game-test", resolver=resolver, config_store=ConfigStore(ResolverConfig(top_up_rate=0.0)))
