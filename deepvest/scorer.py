"""LLM side of project scoring: client, prompt, response parsing.

Parsing is two-tier.  The response's first balanced JSON object is validated
against :class:`LLMScoring`; if it passes the result is a
:class:`StrictParse`.  If not, each field is coerced on its own (numbers
clamped to 0-100 or dropped, text defaulted to placeholders) and the result
is a :class:`CoercedParse` carrying the validation warnings.  Text with no
parseable object yields ``None``.

Sub-scores are on a 0-100 scale.  ``execution_risk`` is the only one where
lower is better; :func:`aggregate_score` inverts it before averaging.
"""
from __future__ import annotations

import asyncio
import base64
import json
import logging
import math
import os
from dataclasses import dataclass
from typing import Any, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from deepvest.utils import clamp

log = logging.getLogger(__name__)

LLM_TIMEOUT_SECONDS = 60.0
TEMPERATURE = 0.1
MAX_OUTPUT_TOKENS = 4096
MODEL_VERSION_SUFFIX = "v1.0.0"

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
RETRYABLE_STATUS = frozenset({429, 502, 503, 504})


class LLMCallError(Exception):
    """LLM call failed or returned no usable text."""
    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class LLMTimeoutError(LLMCallError):
    """LLM call exceeded its deadline."""


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

SCORING_PROMPT_TEMPLATE = """\
You are a senior venture capital analyst. Evaluate the startup project \
described below as a potential early-stage investment.

Score each dimension from 0 to 100:
- investment_rating: overall attractiveness as an investment
- market_potential: size, growth and accessibility of the target market
- team_competency: experience, completeness and execution track record of the team
- tech_innovation: novelty and defensibility of the technology
- business_model: clarity and viability of how the project makes money
- execution_risk: how likely execution fails (0 = very low risk, 100 = very high risk)
- score: your overall score for the project

Base your judgment only on the data provided. Missing information is a \
signal in itself: lower the relevant scores rather than guessing.

Respond with ONLY valid JSON:
{
  "score": <number 0-100>,
  "investment_rating": <number 0-100>,
  "market_potential": <number 0-100>,
  "team_competency": <number 0-100>,
  "tech_innovation": <number 0-100>,
  "business_model": <number 0-100>,
  "execution_risk": <number 0-100>,
  "summary": "<3-5 sentence investment summary>",
  "research": "<detailed analysis in markdown: market, competition, team, technology, risks>"
}

PROJECT DATA:

{project_data}
"""


def build_scoring_prompt(project_data: str) -> str:
    # The template contains literal JSON braces, so no str.format here
    return SCORING_PROMPT_TEMPLATE.replace("{project_data}", project_data)


# ---------------------------------------------------------------------------
# LLM Client
# ---------------------------------------------------------------------------


class LLMClient:
    """Unified async LLM client supporting Gemini, Anthropic and OpenAI."""

    DEFAULT_MODELS = {
        "gemini": "gemini-2.0-flash",
        "anthropic": "claude-haiku-4-5-20251001",
        "openai": "gpt-4o-mini",
    }
    API_KEY_ENV = {
        "gemini": "GEMINI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "openai": "OPENAI_API_KEY",
    }

    def __init__(
        self,
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = LLM_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.provider = provider or os.environ.get("LLM_PROVIDER", "gemini")
        if self.provider == "openai_compatible":
            self.provider = "openai"
        if self.provider not in self.DEFAULT_MODELS:
            raise ValueError(f"Unknown LLM provider: {self.provider!r}")
        self.model = model or os.environ.get("LLM_MODEL") or self.DEFAULT_MODELS[self.provider]
        self.timeout = timeout
        self._api_key = api_key or os.environ.get(self.api_key_env, "")
        self._base_url = base_url
        self._transport = transport
        self._client: Any = None
        if self.configured:
            self._init_client()

    @property
    def api_key_env(self) -> str:
        return self.API_KEY_ENV[self.provider]

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @property
    def model_version(self) -> str:
        return f"{self.model}-{MODEL_VERSION_SUFFIX}"

    def _init_client(self) -> None:
        if self.provider == "anthropic":
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        elif self.provider == "openai":
            import openai
            kwargs: dict[str, Any] = {"api_key": self._api_key}
            url = self._base_url or os.environ.get("OPENAI_BASE_URL")
            if url:
                kwargs["base_url"] = url
            self._client = openai.AsyncOpenAI(**kwargs)

    async def generate(self, prompt: str) -> str:
        """Send a single-turn prompt, return the response text.

        Raises :class:`LLMTimeoutError` after ``self.timeout`` seconds and
        :class:`LLMCallError` for every other failure.  No retries.
        """
        if not self.configured:
            raise LLMCallError(f"{self.api_key_env} not configured")
        return await self._complete(self._generate(prompt))

    async def transcribe(self, prompt: str, data: bytes, mime_type: str) -> str:
        """Send *prompt* with a file attached as inline data.  Gemini only."""
        if self.provider != "gemini":
            raise LLMCallError(f"File transcription is not supported by {self.provider}")
        if not self.configured:
            raise LLMCallError(f"{self.api_key_env} not configured")
        inline = {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}
        return await self._complete(self._generate_gemini(prompt, inline))

    async def _complete(self, call) -> str:
        try:
            text = await asyncio.wait_for(call, timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise LLMTimeoutError(
                f"{self.provider} request timed out after {self.timeout:.0f}s", retryable=True,
            ) from exc
        except LLMCallError:
            raise
        except Exception as exc:
            raise LLMCallError(f"{self.provider} API call failed: {exc}", retryable=True) from exc
        if not text:
            raise LLMCallError(f"No content generated from {self.provider} API")
        return text.strip()

    async def _generate(self, prompt: str) -> str:
        if self.provider == "gemini":
            return await self._generate_gemini(prompt)
        if self.provider == "anthropic":
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=MAX_OUTPUT_TOKENS,
                temperature=TEMPERATURE,
                messages=[{"role": "user", "content": prompt}],
            )
            return response.content[0].text
        response = await self._client.chat.completions.create(
            model=self.model,
            max_tokens=MAX_OUTPUT_TOKENS,
            temperature=TEMPERATURE,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.choices[0].message.content or ""

    async def _generate_gemini(self, prompt: str, inline_data: dict[str, str] | None = None) -> str:
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if inline_data:
            parts.append({"inline_data": inline_data})
        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {"temperature": TEMPERATURE, "maxOutputTokens": MAX_OUTPUT_TOKENS},
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(
                self._base_url or GEMINI_URL.format(model=self.model),
                params={"key": self._api_key},
                json=body,
            )
        if resp.status_code >= 400:
            raise LLMCallError(
                f"Gemini API error: {resp.status_code} {resp.reason_phrase}",
                retryable=resp.status_code in RETRYABLE_STATUS, status_code=resp.status_code,
            )
        data = resp.json()
        if data.get("error"):
            raise LLMCallError(f"Gemini API error: {data['error'].get('message', 'unknown error')}")
        for candidate in data.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            if parts and parts[0].get("text"):
                return parts[0]["text"]
        raise LLMCallError("No content generated from Gemini API")


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

SUB_SCORE_FIELDS = (
    "investment_rating", "market_potential", "team_competency",
    "tech_innovation", "business_model", "execution_risk",
)
NUMERIC_FIELDS = ("score",) + SUB_SCORE_FIELDS

SUMMARY_PLACEHOLDER = "Analysis completed successfully."
RESEARCH_PLACEHOLDER = "Detailed analysis was performed on the provided project data."


class LLMScoring(BaseModel):
    model_config = ConfigDict(extra="ignore")

    score: float | None = Field(default=None, ge=0, le=100)
    investment_rating: float | None = Field(default=None, ge=0, le=100)
    market_potential: float | None = Field(default=None, ge=0, le=100)
    team_competency: float | None = Field(default=None, ge=0, le=100)
    tech_innovation: float | None = Field(default=None, ge=0, le=100)
    business_model: float | None = Field(default=None, ge=0, le=100)
    execution_risk: float | None = Field(default=None, ge=0, le=100)
    summary: str | None = None
    research: str | None = None


@dataclass(frozen=True)
class StrictParse:
    data: LLMScoring
    mode = "strict"


@dataclass(frozen=True)
class CoercedParse:
    data: LLMScoring
    warnings: list[str]
    mode = "coerced"


ParseResult = Union[StrictParse, CoercedParse]


def extract_json_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` substring of *text*, if any.

    Braces inside JSON strings are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(num):
        return None
    return clamp(num)


def coerce_scoring(raw: dict[str, Any]) -> LLMScoring:
    """Field-by-field salvage of a payload that failed strict validation."""
    values: dict[str, Any] = {name: _coerce_number(raw.get(name)) for name in NUMERIC_FIELDS}
    summary = raw.get("summary")
    research = raw.get("research")
    values["summary"] = summary if isinstance(summary, str) else SUMMARY_PLACEHOLDER
    values["research"] = research if isinstance(research, str) else RESEARCH_PLACEHOLDER
    return LLMScoring(**values)


def parse_llm_response(text: str) -> ParseResult | None:
    candidate = extract_json_object(text or "")
    if candidate is None:
        log.error("No JSON object found in LLM response")
        return None
    try:
        raw = json.loads(candidate)
    except json.JSONDecodeError as exc:
        log.error("LLM returned invalid JSON: %s (%s)", candidate[:200], exc)
        return None

    try:
        return StrictParse(LLMScoring.model_validate(raw))
    except PydanticValidationError as exc:
        warnings = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
        log.warning("LLM response validation warnings: %s", "; ".join(warnings))
        return CoercedParse(coerce_scoring(raw), warnings)


# ---------------------------------------------------------------------------
# Deterministic aggregation and fallback
# ---------------------------------------------------------------------------


def aggregate_score(values: dict[str, Any]) -> float | None:
    """Mean of the available sub-scores, with execution risk inverted."""
    parts = [values[k] for k in SUB_SCORE_FIELDS[:-1] if values.get(k) is not None]
    if values.get("execution_risk") is not None:
        parts.append(100.0 - values["execution_risk"])
    if not parts:
        return None
    return round(sum(parts) / len(parts), 1)


def scoring_fields(data: LLMScoring) -> dict[str, Any]:
    """Column values for a scoring row built from a parsed LLM payload."""
    fields: dict[str, Any] = {name: getattr(data, name) for name in SUB_SCORE_FIELDS}
    fields["score"] = data.score if data.score is not None else aggregate_score(fields)
    fields["summary"] = data.summary or SUMMARY_PLACEHOLDER
    fields["research"] = data.research or RESEARCH_PLACEHOLDER
    return fields


FALLBACK_MODEL_VERSION = "fallback-v1.0.0"

FALLBACK_SCORING: dict[str, Any] = {
    "investment_rating": 75.5,
    "market_potential": 82.0,
    "team_competency": 68.5,
    "tech_innovation": 79.0,
    "business_model": 71.5,
    "execution_risk": 25.0,
    "score": 74.8,
    "summary": "Mock analysis: This project shows strong market potential with innovative technology approach.",
    "research": "Mock research: Detailed market analysis indicates strong demand in the target sector.",
}
