"""
Advisory Service Test Suite

LLM backends are exercised through httpx.MockTransport; no network.
"""

import json

import httpx
import pytest

from smuggler.ai.advisor import (
    AdvisoryBackend,
    AdvisoryConfig,
    LLMAdvisor,
    ResponseSummary,
    clean_json,
)
from smuggler.core.errors import AdvisoryUnavailable
from smuggler.core.response_model import decode_response
from smuggler.core.types import Technique

BASE = ResponseSummary(status=200, body_length=1000, timing_ms=50.0, header_count=4)
TEST = ResponseSummary(status=400, body_length=20, timing_ms=5.0, header_count=2)

ANSWER = {
    "is_vulnerable": True,
    "techniques": ["CL.TE"],
    "confidence": 0.8,
    "reasoning": "400 on ambiguous framing",
    "suspicious_signals": ["status 400"],
    "recommendations": ["reject requests with both CL and TE"],
}


def advisor_for(backend, handler, **kwargs):
    config = AdvisoryConfig(backend=backend, api_key="k", **kwargs)
    return LLMAdvisor(config, transport=httpx.MockTransport(handler))


# =============================================================================
# JSON CLEANUP
# =============================================================================

class TestCleanJSON:

    def test_strips_fences(self):
        assert json.loads(clean_json('```json\n{"a": 1}\n```')) == {"a": 1}

    def test_strips_prose_and_comments(self):
        text = 'Sure! {"a": 1, // one\n "b": /* two */ 2,}\nHope that helps'
        assert json.loads(clean_json(text)) == {"a": 1, "b": 2}

    def test_keeps_comment_markers_inside_strings(self):
        assert json.loads(clean_json('{"url": "http://x/*y*/", "c": "a,}"}')) == {
            "url": "http://x/*y*/", "c": "a,}"}

    def test_no_object(self):
        with pytest.raises(ValueError):
            clean_json("no json here")


# =============================================================================
# CONFIG
# =============================================================================

class TestAdvisoryConfig:

    def test_defaults_per_backend(self):
        assert AdvisoryConfig(backend="ollama").endpoint == "http://localhost:11434"
        assert AdvisoryConfig(backend="ollama").model == "llama2"
        assert AdvisoryConfig(backend="openai").model == "gpt-3.5-turbo"

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        assert AdvisoryConfig(backend=AdvisoryBackend.OPENAI).api_key == "from-env"

    def test_summary_of_decoded_response(self):
        resp = decode_response(b"HTTP/1.1 200 OK\r\nA: 1\r\nB: 2\r\n\r\nbody", timing_ms=12.5)
        summary = ResponseSummary.of(resp)
        assert summary == ResponseSummary(status=200, body_length=4, timing_ms=12.5, header_count=2)


# =============================================================================
# BACKENDS
# =============================================================================

class TestBackends:

    @pytest.mark.asyncio
    async def test_openai(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            content = "```json\n" + json.dumps(ANSWER) + "\n```"
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        assessment = await advisor_for("openai", handler).assess(BASE, TEST, Technique.CL_TE)
        assert seen["auth"] == "Bearer k"
        assert seen["body"]["model"] == "gpt-3.5-turbo"
        assert "CL.TE" in seen["body"]["messages"][1]["content"]
        assert assessment.is_vulnerable
        assert assessment.confidence == 0.8
        assert assessment.source == "openai"
        assert assessment.recommendations == ("reject requests with both CL and TE",)

    @pytest.mark.asyncio
    async def test_ollama(self):
        def handler(request):
            assert request.url.path == "/api/generate"
            body = json.loads(request.content)
            assert body["stream"] is False
            return httpx.Response(200, json={"response": "Here you go: " + json.dumps(ANSWER) + ","})

        assessment = await advisor_for("ollama", handler).assess(BASE, TEST, Technique.TE_CL)
        assert assessment.is_vulnerable
        assert assessment.techniques == ("CL.TE",)

    @pytest.mark.asyncio
    async def test_anthropic(self):
        def handler(request):
            assert request.headers["x-api-key"] == "k"
            return httpx.Response(200, json={"content": [{"text": json.dumps(ANSWER)}]})

        assessment = await advisor_for("anthropic", handler).assess(BASE, TEST, Technique.MIXED_TE)
        assert assessment.confidence == 0.8


# =============================================================================
# FAILURES
# =============================================================================

class TestAdvisoryFailures:

    @pytest.mark.asyncio
    async def test_http_error(self):
        advisor = advisor_for("openai", lambda r: httpx.Response(500, text="boom"))
        with pytest.raises(AdvisoryUnavailable):
            await advisor.assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(AdvisoryUnavailable):
            await advisor_for("ollama", handler).assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_unparseable_output(self):
        advisor = advisor_for("ollama", lambda r: httpx.Response(200, json={"response": "I think so"}))
        with pytest.raises(AdvisoryUnavailable):
            await advisor.assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_ollama_error_field(self):
        advisor = advisor_for("ollama", lambda r: httpx.Response(200, json={"error": "no model"}))
        with pytest.raises(AdvisoryUnavailable):
            await advisor.assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        advisor = LLMAdvisor(AdvisoryConfig(backend="openai"),
                             transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(AdvisoryUnavailable):
            await advisor.assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_empty_choices(self):
        advisor = advisor_for("openai", lambda r: httpx.Response(200, json={"choices": []}))
        with pytest.raises(AdvisoryUnavailable):
            await advisor.assess(BASE, TEST, Technique.CL_TE)


# =============================================================================
# MALFORMED ANSWERS
# =============================================================================

def openai_returning(body):
    return advisor_for("openai", lambda r: httpx.Response(200, json=body))


def openai_content(content):
    return openai_returning({"choices": [{"message": {"content": content}}]})


class TestMalformedAnswers:
    """Anything an LLM can send back ends as an assessment or AdvisoryUnavailable"""

    @pytest.mark.asyncio
    async def test_null_content(self):
        with pytest.raises(AdvisoryUnavailable):
            await openai_content(None).assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_non_object_payload(self):
        with pytest.raises(AdvisoryUnavailable):
            await openai_returning([{"choices": []}]).assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_ollama_non_object_payload(self):
        advisor = advisor_for("ollama", lambda r: httpx.Response(200, json=["nope"]))
        with pytest.raises(AdvisoryUnavailable):
            await advisor.assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_array_answer(self):
        with pytest.raises(AdvisoryUnavailable):
            await openai_content("[1, 2, 3]").assess(BASE, TEST, Technique.CL_TE)

    @pytest.mark.asyncio
    async def test_scalar_list_fields_are_coerced(self):
        answer = dict(ANSWER, suspicious_signals=3, recommendations="patch the proxy",
                      techniques=None)
        assessment = await openai_content(json.dumps(answer)).assess(BASE, TEST, Technique.CL_TE)
        assert assessment.signals == ("3",)
        assert assessment.recommendations == ("patch the proxy",)
        assert assessment.techniques == ()
        assert assessment.confidence == 0.8
