"""Client for the Gemini generateContent API with function calling."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from cart_assistant.analytics.logger import logger
from cart_assistant.memory.conversation_store import (
    SENDER_FUNCTION_CALL,
    SENDER_FUNCTION_RESPONSE,
    SENDER_USER,
)
from cart_assistant.utils.exceptions import LLMRequestError, RateLimitedResponse
from cart_assistant.utils.retry import RetryConfig, llm_retrying

FINISH_STOP = "STOP"
FINISH_MAX_TOKENS = "MAX_TOKENS"


@dataclass
class LLMResponse:
    """First candidate of a generateContent response."""

    parts: List[Dict[str, Any]] = field(default_factory=list)
    finish_reason: str = FINISH_STOP
    usage: Dict[str, int] = field(default_factory=dict)

    @property
    def function_calls(self) -> List[Dict[str, Any]]:
        return [part["functionCall"] for part in self.parts if part.get("functionCall")]

    @property
    def text(self) -> str:
        return "".join(part["text"] for part in self.parts if isinstance(part.get("text"), str))

    @property
    def prompt_tokens(self) -> int:
        return int(self.usage.get("promptTokenCount") or 0)

    @property
    def output_tokens(self) -> int:
        return int(self.usage.get("candidatesTokenCount") or 0)

    @property
    def total_tokens(self) -> int:
        return int(self.usage.get("totalTokenCount") or self.prompt_tokens + self.output_tokens)


def turn_to_content(turn: Dict[str, Any]) -> Dict[str, Any]:
    """Map one stored conversation turn to an API ``contents`` entry.

    User and function-response turns are sent with role ``user``; AI and
    function-call turns with role ``model``.
    """
    sender = turn["sender"]
    content = turn["content"]

    if sender == SENDER_FUNCTION_CALL and isinstance(content, dict):
        # the API rejects [] for empty args
        args = content.get("args") or {}
        return {
            "role": "model",
            "parts": [{"functionCall": {"name": content.get("name", ""), "args": args}}],
        }

    if sender == SENDER_FUNCTION_RESPONSE and isinstance(content, dict):
        return {
            "role": "user",
            "parts": [{
                "functionResponse": {
                    "name": content.get("name", ""),
                    "response": {"content": content.get("content", "")},
                }
            }],
        }

    role = "user" if sender in (SENDER_USER, SENDER_FUNCTION_RESPONSE) else "model"
    text = content if isinstance(content, str) else str(content)
    return {"role": role, "parts": [{"text": text}]}


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class GeminiClient:
    """Builds payloads and sends them with retry and backoff."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 20.0,
        retry_config: Optional[RetryConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig()
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def build_payload(
        self,
        history: List[Dict[str, Any]],
        tool_defs: List[Dict[str, Any]],
        system_instruction: str,
        generation_config: Dict[str, Any],
    ) -> Dict[str, Any]:
        payload = {
            "contents": [turn_to_content(turn) for turn in history],
            "generationConfig": generation_config,
        }
        if tool_defs:
            payload["tools"] = tool_defs
        if system_instruction:
            payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        return payload

    async def send(self, payload: Dict[str, Any]) -> LLMResponse:
        """POST the payload, retrying per the configured policy.

        Raises the last LLMRequestError once every attempt has failed.
        """
        retrying = llm_retrying(self.retry_config, sleep=self._sleep)
        return await retrying(self._post_once, payload)

    async def _post_once(self, payload: Dict[str, Any]) -> LLMResponse:
        try:
            response = await self._http().post(
                self.endpoint,
                json=payload,
                headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise LLMRequestError(f"LLM request failed: {type(e).__name__}: {e}") from e

        if response.status_code == 429:
            raise RateLimitedResponse(
                "API Error (Code 429)",
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        if response.status_code != 200:
            logger.warning(f"LLM API returned {response.status_code}: {response.text[:200]}")
            raise LLMRequestError(f"API Error (Code {response.status_code})", status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise LLMRequestError("Malformed LLM response body", status_code=200) from e

        candidates = body.get("candidates") if isinstance(body, dict) else None
        if not candidates:
            raise LLMRequestError("LLM response contained no candidates", status_code=200)

        candidate = candidates[0] or {}
        parts = (candidate.get("content") or {}).get("parts") or []
        finish_reason = (candidate.get("finishReason") or FINISH_STOP).upper()
        return LLMResponse(parts=parts, finish_reason=finish_reason, usage=body.get("usageMetadata") or {})

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
