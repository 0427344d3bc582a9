"""
Tests for the Gemini-backed classifier: response parsing, retry/backoff and
graceful degradation. The HTTP layer is faked with httpx.MockTransport.
"""

import json

import httpx
import pytest

from archive_taxonomy.ai_classifier import (
    AIClassifier,
    backoff_seconds,
    build_prompt,
    parse_hint,
)
from archive_taxonomy.errors import ClassificationUpstreamFailure


def gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


HINT_JSON = json.dumps({
    "brand": "Ricoh",
    "models": ["MPC 3054", "MPC 4054"],
    "category": "Tài liệu",
    "topic": "Service Manual",
    "tags": ["color"],
})


class Recorder:
    def __init__(self):
        self.sleeps = []

    async def sleep(self, seconds):
        self.sleeps.append(seconds)


def make_classifier(handler, recorder, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    params = dict(api_key="test-key", request_delay=0, sleep=recorder.sleep, client=client)
    params.update(kwargs)
    return AIClassifier(**params)


class TestParseHint:

    def test_strips_markdown_fence(self):
        hint = parse_hint(f"```json\n{HINT_JSON}\n```")
        assert hint.brand == "Ricoh"
        assert hint.models == ["MPC 3054", "MPC 4054"]
        assert hint.topic == "Service Manual"

    def test_noisy_brand_cleaned(self):
        assert parse_hint('{"brand": "TEST MÁY RICOH"}').brand == "Ricoh"

    def test_unknown_brand_nulled(self):
        assert parse_hint('{"brand": "Acme Copiers"}').brand is None

    def test_wrong_shapes_dropped(self):
        hint = parse_hint('{"brand": 7, "models": "MPC 3054", "tags": ["ok", 3, " "], '
                          '"category": ["x"], "topic": ""}')
        assert hint.brand is None
        assert hint.models == []
        assert hint.tags == ["ok"]
        assert hint.category is None
        assert hint.topic is None

    def test_not_json(self):
        with pytest.raises(ClassificationUpstreamFailure):
            parse_hint("I think it is a Ricoh")

    def test_not_an_object(self):
        with pytest.raises(ClassificationUpstreamFailure):
            parse_hint('["Ricoh"]')


class TestPrompt:

    def test_prompt_mentions_inputs_and_whitelist(self):
        prompt = build_prompt("MPC 3054.pdf", ["IT", "Tài liệu"])
        assert '"MPC 3054.pdf"' in prompt
        assert '"IT/Tài liệu"' in prompt
        assert "Konica Minolta" in prompt
        assert '"brand"' in prompt

    def test_backoff_is_linear(self):
        assert [backoff_seconds(r, 5) for r in (1, 2, 3)] == [5, 10, 15]


class TestAnalyze:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=gemini_reply(HINT_JSON))

        rec = Recorder()
        ai = make_classifier(handler, rec, model="gemini-test")
        hint = await ai.analyze("MPC 3054.pdf", ["IT", "Tài liệu", "Service Manual"])
        await ai._client.aclose()

        assert hint is not None and hint.brand == "Ricoh"
        assert seen[0].url.path.endswith("/models/gemini-test:generateContent")
        assert seen[0].url.params["key"] == "test-key"
        body = json.loads(seen[0].content)
        assert body["generationConfig"]["temperature"] == 0.1
        assert rec.sleeps == []

    @pytest.mark.asyncio
    async def test_courtesy_delay_before_each_call(self):
        rec = Recorder()
        ai = make_classifier(
            lambda r: httpx.Response(200, json=gemini_reply(HINT_JSON)), rec, request_delay=2.0)
        await ai.analyze("a.pdf", ["IT", "Docs", "Manual"])
        await ai._client.aclose()
        assert rec.sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausts_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, text="Resource has been exhausted")

        rec = Recorder()
        ai = make_classifier(handler, rec)
        assert await ai.analyze("a.pdf", ["IT", "Docs", "Manual"]) is None
        await ai._client.aclose()

        assert rec.sleeps == [5, 10, 15]
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self):
        responses = iter([
            httpx.Response(429),
            httpx.Response(503, text="upstream said 429 Too Many Requests"),
            httpx.Response(200, json=gemini_reply(HINT_JSON)),
        ])
        rec = Recorder()
        ai = make_classifier(lambda r: next(responses), rec)
        hint = await ai.analyze("a.pdf", ["IT", "Docs", "Manual"])
        await ai._client.aclose()

        assert hint is not None
        assert rec.sleeps == [5, 10]

    @pytest.mark.asyncio
    async def test_server_error_returns_none_without_retry(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="internal")

        rec = Recorder()
        ai = make_classifier(handler, rec)
        assert await ai.analyze("a.pdf", ["IT", "Docs", "Manual"]) is None
        await ai._client.aclose()
        assert len(calls) == 1
        assert rec.sleeps == []

    @pytest.mark.asyncio
    async def test_garbage_reply_returns_none(self):
        rec = Recorder()
        ai = make_classifier(
            lambda r: httpx.Response(200, json=gemini_reply("not json at all")), rec)
        assert await ai.analyze("a.pdf", ["IT", "Docs", "Manual"]) is None
        await ai._client.aclose()

    @pytest.mark.asyncio
    async def test_missing_candidates_returns_none(self):
        rec = Recorder()
        ai = make_classifier(lambda r: httpx.Response(200, json={"promptFeedback": {}}), rec)
        assert await ai.analyze("a.pdf", ["IT", "Docs", "Manual"]) is None
        await ai._client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_returns_none(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        rec = Recorder()
        ai = make_classifier(handler, rec)
        assert await ai.analyze("a.pdf", ["IT", "Docs", "Manual"]) is None
        await ai._client.aclose()
        assert rec.sleeps == []
