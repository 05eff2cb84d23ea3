import httpx
import pytest

from autoapply.core.config import Settings
from autoapply.services import answers
from autoapply.services.answers import (
    BudgetedAnswerGenerator,
    MockAnswerGenerator,
    OpenAICompatibleAnswerGenerator,
    build_answer_generator,
)


def test_build_answer_generator_disabled_by_default():
    assert build_answer_generator(Settings(_env_file=None, llm_provider="none")) is None


def test_build_answer_generator_mock_is_budgeted():
    generator = build_answer_generator(Settings(_env_file=None, llm_provider="mock", llm_max_answers_per_run=2))

    assert isinstance(generator, BudgetedAnswerGenerator)
    assert isinstance(generator.inner, MockAnswerGenerator)
    assert generator.remaining == 2


def test_build_answer_generator_rejects_key_in_provider_field():
    bad_value = "gsk_example_secret_value"
    settings = Settings(_env_file=None, llm_provider=bad_value, llm_api_key="")
    with pytest.raises(ValueError) as exc:
        build_answer_generator(settings)

    message = str(exc.value)
    assert "API key" in message
    assert bad_value not in message


def test_build_answer_generator_groq_uses_default_compatible_base_url():
    settings = Settings(
        _env_file=None,
        llm_provider="groq",
        llm_api_key="dummy-key",
        llm_model="llama-3.3-70b-versatile",
        llm_base_url="https://api.openai.com/v1",
    )
    generator = build_answer_generator(settings)

    assert isinstance(generator.inner, OpenAICompatibleAnswerGenerator)
    assert generator.inner.base_url == "https://api.groq.com/openai/v1"


def test_build_answer_generator_requires_key_for_openai():
    with pytest.raises(ValueError):
        build_answer_generator(Settings(_env_file=None, llm_provider="openai", llm_api_key=""))


def test_build_answer_generator_rejects_unknown_provider():
    with pytest.raises(ValueError):
        build_answer_generator(Settings(_env_file=None, llm_provider="anthropic-ish"))


def test_budget_stops_generating_after_limit(profile):
    generator = BudgetedAnswerGenerator(MockAnswerGenerator(), max_answers=1)

    first = generator.generate("Why Acme?", profile)
    second = generator.generate("Why Acme?", profile)

    assert first.startswith("Generated draft (mock provider): Alex Carter")
    assert second is None
    assert generator.used == 1


def _patch_transport(monkeypatch, handler):
    real_client = httpx.Client

    def client(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(answers.httpx, "Client", client)


def _generator():
    return OpenAICompatibleAnswerGenerator(
        api_key="dummy-key",
        model="gpt-4o-mini",
        base_url="https://llm.example.test/v1/",
        temperature=0.2,
        max_tokens=200,
        timeout_seconds=5,
    )


def test_openai_compatible_generator_posts_chat_completion(monkeypatch, profile):
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.read().decode("utf-8")
        return httpx.Response(200, json={"choices": [{"message": {"content": "  I build reliable tools.  "}}]})

    _patch_transport(monkeypatch, handler)

    answer = _generator().generate("Why do you want to work here?", profile)

    assert answer == "I build reliable tools."
    assert seen["url"] == "https://llm.example.test/v1/chat/completions"
    assert seen["auth"] == "Bearer dummy-key"
    assert "Why do you want to work here?" in seen["body"]
    assert "Alex Carter" in seen["body"]


def test_openai_compatible_generator_returns_none_on_error_status(monkeypatch, profile):
    _patch_transport(monkeypatch, lambda request: httpx.Response(429, text="rate limited"))

    assert _generator().generate("Why Acme?", profile) is None


def test_openai_compatible_generator_returns_none_on_transport_error(monkeypatch, profile):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    _patch_transport(monkeypatch, handler)

    assert _generator().generate("Why Acme?", profile) is None


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>gateway page</html>"),
        httpx.Response(200, json=[]),
        httpx.Response(200, json={"choices": ["plain text"]}),
        httpx.Response(200, json={"choices": [{"message": "hello"}]}),
    ],
)
def test_openai_compatible_generator_returns_none_on_unreadable_body(monkeypatch, profile, response):
    _patch_transport(monkeypatch, lambda request: response)

    assert _generator().generate("Why Acme?", profile) is None
