"""
SMUGGLER Advisory Service

Optional second opinion from an LLM, consulted after the local
detector has produced a verdict. The advisory only ever sees a compact
summary of each response, never the raw bytes.

Backends:
- OpenAI   (chat completions)
- Ollama   (local /api/generate)
- Anthropic (messages API)

Every failure mode (network, HTTP status, unparseable output) surfaces
as AdvisoryUnavailable; the orchestrator treats that as "no opinion".
"""

import json
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from smuggler.core.errors import AdvisoryUnavailable
from smuggler.core.types import Assessment, DecodedResponse, Technique


class AdvisoryBackend(Enum):
    """Supported LLM providers"""
    OPENAI = "openai"
    OLLAMA = "ollama"
    ANTHROPIC = "anthropic"


DEFAULT_MODELS = {
    AdvisoryBackend.OPENAI: "gpt-3.5-turbo",
    AdvisoryBackend.OLLAMA: "llama2",
    AdvisoryBackend.ANTHROPIC: "claude-3-5-haiku-20241022",
}

DEFAULT_ENDPOINTS = {
    AdvisoryBackend.OPENAI: "https://api.openai.com/v1/chat/completions",
    AdvisoryBackend.OLLAMA: "http://localhost:11434",
    AdvisoryBackend.ANTHROPIC: "https://api.anthropic.com/v1/messages",
}

SYSTEM_PROMPT = "You are a security analyst. Respond with valid JSON only."


@dataclass
class AdvisoryConfig:
    """Advisory configuration"""
    backend: AdvisoryBackend = AdvisoryBackend.OPENAI
    api_key: Optional[str] = None
    model: Optional[str] = None
    endpoint: Optional[str] = None
    timeout: float = 30.0
    temperature: float = 0.3
    max_tokens: int = 700

    def __post_init__(self):
        if isinstance(self.backend, str):
            self.backend = AdvisoryBackend(self.backend.lower())
        if not self.model:
            self.model = DEFAULT_MODELS[self.backend]
        if not self.endpoint:
            self.endpoint = DEFAULT_ENDPOINTS[self.backend]
        # Try to load from environment
        if not self.api_key:
            if self.backend == AdvisoryBackend.OPENAI:
                self.api_key = os.environ.get("OPENAI_API_KEY")
            elif self.backend == AdvisoryBackend.ANTHROPIC:
                self.api_key = os.environ.get("ANTHROPIC_API_KEY")


@dataclass(frozen=True)
class ResponseSummary:
    """What the advisory is allowed to see of a response"""
    status: int
    body_length: int
    timing_ms: float
    header_count: int

    @classmethod
    def of(cls, response: DecodedResponse) -> "ResponseSummary":
        return cls(
            status=response.status_code,
            body_length=response.body_length,
            timing_ms=round(response.timing_ms, 2),
            header_count=len(response.headers),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "body_length": self.body_length,
            "timing_ms": self.timing_ms,
            "header_count": self.header_count,
        }


# =============================================================================
# JSON CLEANUP
# =============================================================================

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def clean_json(text: str) -> str:
    """
    Reduce an LLM answer to a parseable JSON object.

    Strips code fences, anything before the first brace or after the
    last one, comments outside strings, and trailing commas.
    """
    text = _FENCE.sub("", text.strip())
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise ValueError("no JSON object in response")
    text = text[start:end + 1]

    out = []
    i = 0
    in_string = False
    escape = False
    while i < len(text):
        ch = text[i]
        if in_string:
            out.append(ch)
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
        elif text.startswith("//", i):
            while i < len(text) and text[i] != "\n":
                i += 1
            continue
        elif text.startswith("/*", i):
            close = text.find("*/", i + 2)
            i = len(text) if close == -1 else close + 2
            continue
        elif ch == ",":
            j = i + 1
            while j < len(text) and text[j] in " \t\r\n":
                j += 1
            if j < len(text) and text[j] in "}]":
                i += 1
                continue
        out.append(ch)
        i += 1
    return "".join(out)


# =============================================================================
# BACKENDS
# =============================================================================

class LLMBackend(ABC):
    """Abstract LLM backend: prompt in, raw text out"""

    name = "llm"

    def __init__(self, config: AdvisoryConfig,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self.transport)

    @abstractmethod
    async def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str:
        pass


class OpenAIBackend(LLMBackend):
    """OpenAI-compatible chat completions backend"""

    name = "openai"

    async def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str:
        if not self.config.api_key:
            raise AdvisoryUnavailable("missing OpenAI API key")

        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }

        async with self._client() as client:
            response = await client.post(self.config.endpoint, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict):
            raise AdvisoryUnavailable("OpenAI returned a non-object payload")
        choices = data.get("choices") or []
        if not choices:
            raise AdvisoryUnavailable("OpenAI returned no choices")
        return choices[0]["message"]["content"]


class OllamaBackend(LLMBackend):
    """Local Ollama backend"""

    name = "ollama"

    async def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str:
        payload = {
            "model": self.config.model,
            "prompt": prompt,
            "system": system,
            "stream": False,
        }
        url = f"{self.config.endpoint.rstrip('/')}/api/generate"

        async with self._client() as client:
            response = await client.post(url, json=payload)
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict):
            raise AdvisoryUnavailable("Ollama returned a non-object payload")
        if data.get("error"):
            raise AdvisoryUnavailable(f"Ollama error: {data['error']}")
        return data.get("response", "")


class AnthropicBackend(LLMBackend):
    """Direct Anthropic API backend"""

    name = "anthropic"

    async def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str:
        if not self.config.api_key:
            raise AdvisoryUnavailable("missing Anthropic API key")

        headers = {
            "x-api-key": self.config.api_key,
            "anthropic-version": "2023-06-01",
            "content-type": "application/json",
        }
        payload = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system,
            "messages": [{"role": "user", "content": prompt}],
        }

        async with self._client() as client:
            response = await client.post(self.config.endpoint, headers=headers, json=payload)
            response.raise_for_status()
            data = response.json()

        return data["content"][0]["text"]


BACKENDS = {
    AdvisoryBackend.OPENAI: OpenAIBackend,
    AdvisoryBackend.OLLAMA: OllamaBackend,
    AdvisoryBackend.ANTHROPIC: AnthropicBackend,
}


# =============================================================================
# ADVISORY SERVICE
# =============================================================================

class AdvisoryService(ABC):
    """Anything that can give an opinion on a baseline/probe pair"""

    name = "advisory"

    @abstractmethod
    async def assess(self, baseline: ResponseSummary, test: ResponseSummary,
                     technique: Technique) -> Assessment:
        pass


class LLMAdvisor(AdvisoryService):
    """AdvisoryService backed by one of the LLM backends"""

    def __init__(self, config: Optional[AdvisoryConfig] = None,
                 backend: Optional[LLMBackend] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or AdvisoryConfig()
        self.backend = backend or BACKENDS[self.config.backend](self.config, transport=transport)

    @property
    def name(self) -> str:
        return f"{self.backend.name}:{self.config.model}"

    @staticmethod
    def build_prompt(baseline: ResponseSummary, test: ResponseSummary,
                     technique: Technique) -> str:
        return (
            f"Analyze these HTTP responses for {technique.value} request smuggling.\n\n"
            f"Technique: {technique.explanation}\n\n"
            f"Baseline response: {json.dumps(baseline.to_dict())}\n"
            f"Probe response: {json.dumps(test.to_dict())}\n\n"
            "Answer with a single JSON object:\n"
            "{\n"
            '  "is_vulnerable": true | false,\n'
            '  "techniques": ["CL.TE"],\n'
            '  "confidence": 0.0-1.0,\n'
            '  "reasoning": "short explanation",\n'
            '  "suspicious_signals": ["..."],\n'
            '  "recommendations": ["..."]\n'
            "}"
        )

    async def assess(self, baseline: ResponseSummary, test: ResponseSummary,
                     technique: Technique) -> Assessment:
        prompt = self.build_prompt(baseline, test, technique)
        try:
            text = await self.backend.complete(prompt)
        except AdvisoryUnavailable:
            raise
        except httpx.HTTPStatusError as e:
            raise AdvisoryUnavailable(
                f"{self.backend.name} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise AdvisoryUnavailable(f"{self.backend.name} request failed: {e}") from e
        except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
            raise AdvisoryUnavailable(f"{self.backend.name} sent an unexpected payload: {e}") from e

        if not isinstance(text, str):
            raise AdvisoryUnavailable(
                f"{self.backend.name} returned {type(text).__name__} instead of text"
            )
        try:
            data = json.loads(clean_json(text))
        except ValueError as e:
            raise AdvisoryUnavailable(f"unparseable advisory output: {e}") from e
        if not isinstance(data, dict):
            raise AdvisoryUnavailable("advisory output is not a JSON object")
        try:
            return Assessment.from_dict(data, source=self.backend.name)
        except (AttributeError, TypeError, ValueError) as e:
            raise AdvisoryUnavailable(f"advisory output has the wrong shape: {e}") from e


def create_advisor(backend: str = "openai", **kwargs) -> LLMAdvisor:
    """Build an LLMAdvisor from plain keyword settings"""
    return LLMAdvisor(AdvisoryConfig(backend=AdvisoryBackend(backend.lower()), **kwargs))
