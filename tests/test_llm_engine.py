from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import requests

from app.config.settings import settings
from app.models.card import InvalidCardError, TriviaCard
from app.services import llm_engine
from app.services.llm_engine import GeneratedText, LLMClient, LLMServiceError
from app.services.mode_catalog import Mode


@pytest.fixture
def client_stub(monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER", "ollama")
    stub = SimpleNamespace(generate=Mock(), generate_endpoint="http://localhost:11434/api/generate")
    monkeypatch.setattr(llm_engine, "CLIENT", stub)
    return stub


def test_generate_card_success(client_stub):
    client_stub.generate.return_value = GeneratedText(
        text='```json\n{"q": "Who built the ark?", "a": "Noah", "options": ["Noah", "Moses", "Abraham", "David"]}\n```',
        tokens=88,
    )

    result = llm_engine.generate_card("trivia", difficulty="easy")

    assert result.success is True
    assert isinstance(result.card, TriviaCard)
    assert result.tokens == 88
    payload = client_stub.generate.call_args.args[0]
    assert payload["model"] == settings.LLM_MODEL
    assert "very common" in payload["prompt"]


def test_generate_card_plain_text_uses_first_line(client_stub):
    client_stub.generate.return_value = GeneratedText(text='\n"Samson"\nExtra commentary', tokens=12)

    result = llm_engine.generate_card(Mode.WHOAMI)

    assert result.card.text == "Samson"


def test_malformed_json_is_a_failure_with_tokens(client_stub):
    client_stub.generate.return_value = GeneratedText(text="Sure! Here is a question: who built the ark?", tokens=40)

    result = llm_engine.generate_card("taboo")

    assert result.success is False
    assert result.card is None
    assert result.tokens == 40


def test_empty_text_is_a_failure(client_stub):
    client_stub.generate.return_value = GeneratedText(text="", tokens=5)

    result = llm_engine.generate_card("act")

    assert (result.success, result.error, result.tokens) == (False, "empty", 5)


def test_service_error_never_raises(client_stub):
    client_stub.generate.side_effect = LLMServiceError("LLM request timed out")

    result = llm_engine.generate_card("draw")

    assert result.success is False
    assert result.error == "LLM request timed out"


def test_not_configured_skips_the_call(client_stub, monkeypatch):
    monkeypatch.setattr(settings, "LLM_PROVIDER", "none")

    result = llm_engine.generate_card("explain")

    assert result.error == "not_configured"
    client_stub.generate.assert_not_called()


def test_prompt_region_only_for_music_modes():
    hum = llm_engine.build_card_prompt(Mode.HUM, region="Nigeria")
    act = llm_engine.build_card_prompt(Mode.ACT, region="Nigeria")

    assert "Nigeria" in hum
    assert "Nigeria" not in act


def test_prompt_exclusion_list_is_capped():
    excluded = [f"word{i}" for i in range(30)]

    prompt = llm_engine.build_card_prompt(Mode.EXPLAIN, difficulty="hard", excluded=excluded)

    assert "Do not use any of these: word0," in prompt
    assert "word19." in prompt
    assert "word20" not in prompt
    assert "lesser-known" in prompt


def test_parse_card_text_rejects_wrong_shape():
    with pytest.raises(InvalidCardError):
        llm_engine.parse_card_text(Mode.FILLINBLANK, '{"word": "Ark", "forbidden": ["boat"]}')


class _StreamResponse:
    def __init__(self, lines):
        self.lines = lines
        self.closed = False

    def raise_for_status(self):
        return None

    def iter_lines(self, decode_unicode=True):
        return iter(self.lines)

    def close(self):
        self.closed = True


def test_client_generate_parses_jsonl_stream():
    response = _StreamResponse(
        [
            '{"response": "Gid", "done": false}',
            "not json",
            '{"response": "eon", "done": true, "prompt_eval_count": 30, "eval_count": 4}',
        ]
    )
    session = Mock(spec=requests.Session)
    session.post.return_value = response
    client = LLMClient("http://llm.local/api/generate", api_key="k", session=session)

    out = client.generate({"prompt": "x"}, request_id="r1")

    assert out == GeneratedText(text="Gideon", tokens=34)
    assert response.closed is True
    assert session.post.call_args.kwargs["headers"] == {"Authorization": "Bearer k"}


def test_client_timeout_becomes_service_error():
    session = Mock(spec=requests.Session)
    session.post.side_effect = requests.Timeout("slow")
    client = LLMClient("http://llm.local/api/generate", session=session)

    with pytest.raises(LLMServiceError):
        client.generate({"prompt": "x"}, request_id="r2")


@pytest.mark.parametrize(
    "endpoint,expected",
    [
        ("http://localhost:11434/api/chat", "http://localhost:11434/api/generate"),
        ("http://localhost:11434/api/chat/", "http://localhost:11434/api/generate"),
        ("http://localhost:11434/api/generate/", "http://localhost:11434/api/generate"),
    ],
)
def test_resolve_generate_endpoint(endpoint, expected):
    assert LLMClient._resolve_generate_endpoint(endpoint) == expected
