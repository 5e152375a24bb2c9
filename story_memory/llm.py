"""Classifier backends for the relevance matcher.

Anything matching the `LLM` protocol can classify:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` says who is asking ("relevance" for the consequence matcher) and is
only used for logging here.

    HttpLLM   talks to a KoboldCpp or OpenAI-compatible completion endpoint
    NullLLM   answers "nothing relevant" when no backend is configured

Tests use StubLLM from conftest.py.
"""

from __future__ import annotations

import json
import logging
from typing import Literal, NamedTuple, Protocol

import httpx

logger = logging.getLogger(__name__)


class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


class LLMError(RuntimeError):
    """The classifier backend could not be reached or answered badly."""


# ---------------------------------------------------------------------------
# Wire formats
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class _Wire(NamedTuple):
    label: str
    path: str
    length_key: str
    results_key: str
    sends_model: bool


_WIRES: dict[str, _Wire] = {
    # {"prompt", "max_length", "temperature"} -> {"results": [{"text"}]}
    "koboldcpp": _Wire("KoboldCpp", "/api/v1/generate", "max_length", "results", False),
    # {"prompt", "max_tokens", "temperature", "model"?} -> {"choices": [{"text"}]}
    "openai": _Wire("OpenAI-compatible", "/v1/completions", "max_tokens", "choices", True),
}


# ---------------------------------------------------------------------------
# HttpLLM
# ---------------------------------------------------------------------------

class HttpLLM:
    """Completion client tuned for classification.

    Sampling defaults to temperature 0.0 and 500 tokens so the same prompt
    gets the same verdict. The HTTP timeout is separate from the matcher's
    own deadline; whichever is shorter wins.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 10.0,
        max_tokens: int = 500,
        temperature: float = 0.0,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._wire = _WIRES[provider_format]
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def url(self) -> str:
        return self._base_url + self._wire.path

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _body(self, prompt: str) -> dict:
        body: dict = {
            "prompt": prompt,
            self._wire.length_key: self._max_tokens,
            "temperature": self._temperature,
        }
        if self._model and self._wire.sends_model:
            body["model"] = self._model
        return body

    def _completion_text(self, data: object) -> str:
        if not isinstance(data, dict):
            raise LLMError("Classifier backend returned a non-object body")
        items = data.get(self._wire.results_key)
        if not isinstance(items, list) or not items:
            items = [None]
        first = items[0]
        if not isinstance(first, dict) or not isinstance(first.get("text"), str):
            raise LLMError(f"Unexpected response format from {self._wire.label} backend")
        return first["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("classifier call stage=%s url=%s prompt_len=%d", stage, self.url, len(prompt))
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, json=self._body(prompt), headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to classifier backend at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"Classifier backend timed out after {self._timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"Classifier backend returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Classifier request failed: {e!r}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise LLMError("Classifier backend returned a non-JSON body") from e
        text = self._completion_text(data)
        logger.debug("classifier response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# NullLLM
# ---------------------------------------------------------------------------

class NullLLM:
    """Offline stand-in: pending consequences never trigger through relevance."""

    _reply = json.dumps({
        "triggered_consequences": [],
        "relevant_entities": [],
        "explanation": "No classifier configured",
    })

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("NullLLM stage=%s prompt_len=%d", stage, len(prompt))
        return self._reply
