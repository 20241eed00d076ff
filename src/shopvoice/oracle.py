"""
Text classification/extraction oracle.

A thin, best-effort wrapper over an OpenAI-compatible chat API (Groq by
default, OpenAI optionally). Callers only see `complete(prompt) -> str`; every
call is bounded by ORACLE_TIMEOUT_SECONDS and falls back to
ORACLE_FALLBACK_MODEL once when the primary model fails.

`extract_json` is the tolerant decoder for oracle answers: it strips code
fences, finds the first balanced JSON object or array, and returns None when
nothing usable is there.
"""

import asyncio
import json
import time
from typing import Any, List, Optional, Protocol

import httpx
import structlog
from openai import AsyncOpenAI

from src.shopvoice.config import get_config
from src.shopvoice.errors import OracleError

logger = structlog.get_logger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
OPENAI_BASE_URL = "https://api.openai.com/v1"


class Oracle(Protocol):
    async def complete(self, prompt: str) -> str:
        ...


def _base_url(provider: str) -> str:
    return OPENAI_BASE_URL if provider == "openai" else GROQ_BASE_URL


async def validate_oracle_model(api_key: str, model_name: str, *, provider: str = "groq") -> bool:
    """
    Validate that the configured model exists.

    Calls GET {base_url}/models to check.

    Raises:
        SystemExit: If the model doesn't exist (fail fast)
    """
    base_url = _base_url(provider)
    logger.info("Validating oracle model", provider=provider, model=model_name)

    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(
                f"{base_url}/models",
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=10.0,
            )
        except httpx.RequestError as e:
            logger.error("Failed to connect to oracle API", provider=provider, error=str(e))
            raise SystemExit(
                f"Failed to connect to {provider} API: {e}\n"
                "Check your network connection and API key."
            )

    if response.status_code != 200:
        logger.error(
            "Failed to fetch oracle models",
            status_code=response.status_code,
            response=response.text[:200],
        )
        raise SystemExit(
            f"Failed to validate {provider} model. API returned status {response.status_code}. "
            "Check your API key."
        )

    model_ids = [m.get("id") for m in response.json().get("data", [])]
    if model_name not in model_ids:
        available = ", ".join(sorted(filter(None, model_ids))[:10])
        logger.error("Oracle model not found", requested_model=model_name, available_models=available)
        raise SystemExit(
            f"Model '{model_name}' not found in available models.\n"
            f"Available models include: {available}\n"
            "Please update your .env file."
        )

    logger.info("Oracle model validated successfully", model=model_name)
    return True


class CompletionOracle:
    """
    Single-shot completion client.

    Uses the OpenAI client with a provider base URL, like the rest of the
    stack. Failures surface as OracleError; callers decide how to degrade.
    """

    def __init__(self, config: Optional[Any] = None, client: Optional[Any] = None):
        if config is None:
            config = get_config()

        self.config = config
        self.provider = (config.llm_provider or "groq").strip().lower()
        self.timeout_seconds = config.oracle_timeout_seconds

        self._models: List[str] = [config.oracle_model]
        fallback = (config.oracle_fallback_model or "").strip()
        if fallback and fallback != config.oracle_model:
            self._models.append(fallback)

        self._client = client or AsyncOpenAI(
            api_key=config.oracle_api_key,
            base_url=_base_url(self.provider),
        )

    @property
    def models(self) -> List[str]:
        return list(self._models)

    async def validate_model(self) -> bool:
        return await validate_oracle_model(
            self.config.oracle_api_key, self._models[0], provider=self.provider
        )

    async def complete(self, prompt: str) -> str:
        """Return the model's text answer for a single user prompt."""
        last_error: Optional[OracleError] = None

        for model in self._models:
            started = time.time()
            try:
                response = await asyncio.wait_for(
                    self._client.chat.completions.create(
                        model=model,
                        messages=[{"role": "user", "content": prompt}],
                        max_tokens=self.config.oracle_max_tokens,
                        temperature=0.0,
                    ),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = OracleError(f"{model} timed out after {self.timeout_seconds}s")
                logger.warning("Oracle call timed out", model=model, timeout_s=self.timeout_seconds)
                continue
            except Exception as e:
                last_error = OracleError(f"{model} failed: {e}")
                logger.warning("Oracle call failed", model=model, error=str(e))
                continue

            text = ""
            if response.choices:
                text = (response.choices[0].message.content or "").strip()
            if text:
                logger.debug(
                    "Oracle answered",
                    model=model,
                    latency_ms=round((time.time() - started) * 1000, 1),
                )
                return text

            last_error = OracleError(f"{model} returned an empty answer")
            logger.warning("Oracle returned empty answer", model=model)

        raise last_error or OracleError("No oracle model configured")


def _balanced_end(text: str, start: int) -> int:
    """Index one past the bracket closing text[start], or -1."""
    stack = []
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
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not stack or stack.pop() != ch:
                return -1
            if not stack:
                return i + 1
    return -1


def extract_json(text: str) -> Optional[Any]:
    """
    Decode the first JSON object or array found in an oracle answer.

    Returns None ("no structured data") instead of raising.
    """
    if not text:
        return None

    cleaned = text.replace("```json", "").replace("```JSON", "").replace("```", "").strip()

    for start, ch in enumerate(cleaned):
        if ch not in "{[":
            continue
        end = _balanced_end(cleaned, start)
        if end < 0:
            continue
        try:
            return json.loads(cleaned[start:end])
        except ValueError:
            continue

    return None


# Singleton instance
_oracle_instance: Optional[CompletionOracle] = None


def get_oracle() -> CompletionOracle:
    """Get or create the oracle singleton."""
    global _oracle_instance

    if _oracle_instance is None:
        _oracle_instance = CompletionOracle()

    return _oracle_instance


async def initialize_oracle() -> CompletionOracle:
    """Create the oracle and validate its primary model at startup."""
    oracle = get_oracle()
    await oracle.validate_model()
    return oracle
