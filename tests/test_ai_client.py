import asyncio
import json

import httpx
import pytest

from api.app.ai_client import (
    AIClient,
    _extract_json,
    _normalize_base_url,
    _parse_retry_after,
    _shorten_list_name,
    build_suggestion,
)
from api.app.classification.errors import (
    MalformedResponse,
    NotJsonResponse,
    RateLimited,
    TransportError,
)
from conftest import make_repo


@pytest.fixture
def openai_env(monkeypatch):
    monkeypatch.setenv("AI_PROVIDER", "openai")
    monkeypatch.setenv("AI_API_KEY", "sk-test-key-123456")
    monkeypatch.setenv("AI_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("AI_BASE_URL", "https://llm.example.com")
    monkeypatch.setenv("AI_LOCALE", "zh")


def _chat(content, finish_reason="stop"):
    return {"choices": [{"message": {"content": content}, "finish_reason": finish_reason}]}


def _classify(handler, lists=(), repo=None):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = AIClient(http, asyncio.Semaphore(2))
            return await client.classify_repo(repo or make_repo("acme/widget", "A widget"), list(lists))

    return asyncio.run(run())


def test_classify_matches_existing_list(openai_env, existing_lists):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json=_chat('{"listName": "AI工具", "suggestNewList": false, "confidence": 0.9, "reason": "LLM 工具"}'),
        )

    suggestion = _classify(handler, existing_lists)
    assert seen["url"] == "https://llm.example.com/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test-key-123456"
    assert seen["body"]["model"] == "gpt-4o-mini"
    assert "acme/widget" in seen["body"]["messages"][0]["content"]
    assert suggestion.matched_list_id == 1
    assert suggestion.matched_list_name == "AI工具"
    assert suggestion.confidence == 0.9
    assert suggestion.propose_new_list is False


def test_classify_new_list_defaults(openai_env):
    def handler(request):
        return httpx.Response(
            200,
            json=_chat('```json\n{"listName": null, "suggestNewList": true, "newListName": "DevOps"}\n```'),
        )

    suggestion = _classify(handler)
    assert suggestion.matched_list_id is None
    assert suggestion.propose_new_list is True
    assert suggestion.new_list_name == "DevOps"
    assert suggestion.confidence == 0.5
    assert suggestion.reason == "AI 建议"


def test_classify_prose_wrapped_json(openai_env):
    def handler(request):
        content = 'Sure! Here it is: {"suggestNewList": true, "newListName": "CLI工具", "confidence": 0.7} Hope it helps.'
        return httpx.Response(200, json=_chat(content))

    suggestion = _classify(handler)
    assert suggestion.new_list_name == "CLI工具"
    assert suggestion.confidence == 0.7


def test_classify_repairs_truncated_response(openai_env):
    def handler(request):
        content = '{"suggestNewList": true, "newListName": "DevOps", "confidence": 0.8, "reas'
        return httpx.Response(200, json=_chat(content, finish_reason="length"))

    suggestion = _classify(handler)
    assert suggestion.new_list_name == "DevOps"
    assert suggestion.confidence == 0.8


def test_classify_unrepairable_response_is_malformed(openai_env):
    def handler(request):
        return httpx.Response(200, json=_chat('{"suggestNewList": true, "newListName": "Dev'))

    with pytest.raises(MalformedResponse):
        _classify(handler)


def test_classify_empty_content_is_malformed(openai_env):
    with pytest.raises(MalformedResponse):
        _classify(lambda request: httpx.Response(200, json=_chat("")))


def test_classify_rate_limited_carries_retry_after(openai_env):
    def handler(request):
        return httpx.Response(429, headers={"retry-after": "120"}, json={"error": "slow down"})

    with pytest.raises(RateLimited) as excinfo:
        _classify(handler)
    assert excinfo.value.retry_after_seconds == 120
    assert excinfo.value.kind == "rate_limited"


def test_classify_rate_limited_default_wait(openai_env):
    with pytest.raises(RateLimited) as excinfo:
        _classify(lambda request: httpx.Response(429, text="busy"))
    assert excinfo.value.retry_after_seconds == 30


def test_classify_html_page_is_not_json(openai_env):
    def handler(request):
        return httpx.Response(200, headers={"content-type": "text/html"}, text="<html><body>Login</body></html>")

    with pytest.raises(NotJsonResponse) as excinfo:
        _classify(handler)
    assert "endpoint" in str(excinfo.value)


def test_classify_server_error_is_transport(openai_env):
    def handler(request):
        return httpx.Response(500, json={"error": {"message": "boom", "api_key": "sk-should-not-leak"}})

    with pytest.raises(TransportError) as excinfo:
        _classify(handler)
    assert "sk-should-not-leak" not in str(excinfo.value)


def test_classify_connection_failure_is_transport(openai_env):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError):
        _classify(handler)


def test_classify_requires_repo_identity(openai_env):
    with pytest.raises(ValueError):
        _classify(lambda request: httpx.Response(200, json=_chat("{}")), repo=make_repo("acme/x", id=""))


def test_classify_anthropic_messages(monkeypatch):
    monkeypatch.setenv("AI_PROVIDER", "anthropic")
    monkeypatch.setenv("AI_API_KEY", "anthropic-key")
    monkeypatch.setenv("AI_MODEL", "claude-test")
    monkeypatch.setenv("AI_BASE_URL", "")
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["key"] = request.headers.get("x-api-key")
        return httpx.Response(
            200,
            json={
                "content": [{"type": "text", "text": '{"suggestNewList": true, "newListName": "前端"}'}],
                "stop_reason": "end_turn",
            },
        )

    suggestion = _classify(handler)
    assert seen["url"] == "https://api.anthropic.com/v1/messages"
    assert seen["key"] == "anthropic-key"
    assert suggestion.new_list_name == "前端"


def test_connection_check(openai_env):
    async def run(status):
        transport = httpx.MockTransport(lambda request: httpx.Response(status, json=_chat("ok")))
        async with httpx.AsyncClient(transport=transport) as http:
            return await AIClient(http, asyncio.Semaphore(1)).test_connection()

    assert asyncio.run(run(200)) is True
    assert asyncio.run(run(401)) is False


def test_shorten_list_name():
    assert _shorten_list_name("DevOps") == "DevOps"
    assert _shorten_list_name("Kubernetes Operators") == "Kubernetes"
    assert _shorten_list_name("Infrastructure-as-Code-Stuff") == "Infrastructure-"


def test_build_suggestion_clamps_and_matches(existing_lists):
    suggestion = build_suggestion(
        {"listName": "前端", "suggestNewList": "false", "confidence": 7, "reason": ""},
        existing_lists,
        "en",
    )
    assert suggestion.matched_list_id == 2
    assert suggestion.confidence == 0.5
    assert suggestion.reason == "AI suggestion"


def test_extract_json_variants():
    assert _extract_json('{"a": 1}') == {"a": 1}
    assert _extract_json("```\n{\"a\": 1}\n```") == {"a": 1}
    assert _extract_json("no json here") is None
    assert _extract_json('["not", "an", "object"]') is None


def test_parse_retry_after():
    assert _parse_retry_after("15") == 15
    assert _parse_retry_after(None) == 30
    assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 30


def test_normalize_base_url():
    assert _normalize_base_url("openai", "https://x.test/v1/chat/completions") == "https://x.test/v1"
    assert _normalize_base_url("openai", "https://x.test/") == "https://x.test/v1"
    assert _normalize_base_url("openai", "") == "https://api.openai.com/v1"
    assert _normalize_base_url("anthropic", "https://proxy.test/v1") == "https://proxy.test/v1"
