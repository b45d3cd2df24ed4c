"""
Chat-completion client for the AI grading endpoint.

One POST per request against ``{AI_BASE_URL}/chat/completions`` with a bearer
token. Plain requests are retried with capped exponential backoff on
timeouts, network errors and 5xx responses; 4xx responses fail at once.
The streaming variant decodes server-sent events and forwards every content
fragment to a caller supplied sink.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import httpx

from gradebook import config
from gradebook.errors import (
    PermanentGradingError,
    TransientGradingError,
    UnparsableAIResponseError,
)
from gradebook.helpers.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Reduce httpx request logging noise
logging.getLogger("httpx").setLevel(logging.WARNING)

ChatMessage = Dict[str, str]
ChunkSink = Callable[[str], Union[None, Awaitable[None]]]

SSE_DONE = "[DONE]"


def parse_sse_line(line: str) -> Tuple[bool, Optional[str]]:
    """
    Decode one server-sent event line.

    Returns (done, fragment). `done` is True for the [DONE] sentinel;
    `fragment` is the delta content, or None when the line carries none.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return False, None

    data = line[len("data:"):].strip()
    if data == SSE_DONE:
        return True, None

    try:
        event = json.loads(data)
        content = event["choices"][0].get("delta", {}).get("content")
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        logger.warning("Skipping malformed stream event: %r", data[:200])
        return False, None

    return False, content or None


def _describe_error(response: httpx.Response) -> str:
    if response.status_code == 401:
        return "AI API key is invalid or expired"
    if response.status_code == 429:
        return "AI service rate limit reached, try again later"

    try:
        message = response.json().get("error", {}).get("message")
    except (ValueError, AttributeError):
        message = None

    if message:
        return f"AI API error: {message}"
    return f"AI API request failed with status {response.status_code}"


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, TransientGradingError)


class ChatCompletionClient:
    def __init__(
        self,
        base_url: str = config.AI_BASE_URL,
        api_key: str = config.AI_API_KEY,
        model: str = config.AI_MODEL,
        timeout: float = config.AI_TIMEOUT_SECONDS,
        max_retries: int = config.AI_MAX_RETRIES,
        retry_base_delay: float = config.AI_RETRY_BASE_DELAY,
        retry_backoff: float = config.AI_RETRY_BACKOFF,
        retry_max_delay: float = config.AI_RETRY_MAX_DELAY,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.model = model
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_backoff = retry_backoff
        self.retry_max_delay = retry_max_delay
        self._sleep = sleep
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            timeout=timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "ChatCompletionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _build_payload(
        self,
        messages: List[ChatMessage],
        temperature: Optional[float],
        max_tokens: Optional[int],
        stream: bool,
    ) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": messages,
            "temperature": config.AI_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or config.AI_MAX_TOKENS,
            "stream": stream,
        }

    async def _post_once(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._http.post("/chat/completions", json=payload)
        except httpx.TimeoutException as e:
            raise TransientGradingError("AI request timed out") from e
        except httpx.TransportError as e:
            raise TransientGradingError(f"Could not reach the AI service: {e}") from e

        if response.status_code >= 500:
            raise TransientGradingError(
                f"AI service error {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PermanentGradingError(
                _describe_error(response),
                status_code=response.status_code,
                raw_response=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UnparsableAIResponseError(
                "AI endpoint returned a non-JSON body", raw_response=response.text
            ) from e

    async def complete(
        self,
        messages: List[ChatMessage],
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Send one chat completion and return the assistant's text."""
        payload = self._build_payload(messages, temperature, max_tokens, stream=False)

        data = await retry_with_backoff(
            lambda: self._post_once(payload),
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            multiplier=self.retry_backoff,
            max_delay=self.retry_max_delay,
            retryable=_is_transient,
            sleep=self._sleep,
        )

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise UnparsableAIResponseError(
                "AI response has no message content", raw_response=json.dumps(data)
            ) from e

        if not isinstance(content, str) or not content.strip():
            raise UnparsableAIResponseError(
                "AI response content is empty", raw_response=json.dumps(data)
            )
        return content

    async def stream(
        self,
        messages: List[ChatMessage],
        on_chunk: ChunkSink,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Stream a chat completion, calling `on_chunk` with every fragment.

        Returns the concatenated text. Not retried: fragments may already
        have reached the sink.
        """
        payload = self._build_payload(messages, temperature, max_tokens, stream=True)
        fragments: List[str] = []

        async def emit(fragment: str) -> None:
            fragments.append(fragment)
            result = on_chunk(fragment)
            if inspect.isawaitable(result):
                await result

        try:
            async with self._http.stream("POST", "/chat/completions", json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    if response.status_code >= 500:
                        raise TransientGradingError(
                            f"AI service error {response.status_code}",
                            status_code=response.status_code,
                        )
                    raise PermanentGradingError(
                        f"AI API request failed with status {response.status_code}",
                        status_code=response.status_code,
                        raw_response=body,
                    )

                buffer = ""
                async for text in response.aiter_text():
                    buffer += text
                    *lines, buffer = buffer.split("\n")
                    for line in lines:
                        done, fragment = parse_sse_line(line)
                        if done:
                            return "".join(fragments)
                        if fragment:
                            await emit(fragment)

                # Last event may arrive without a trailing newline
                if buffer.strip():
                    done, fragment = parse_sse_line(buffer)
                    if fragment and not done:
                        await emit(fragment)

        except httpx.TimeoutException as e:
            raise TransientGradingError("AI stream timed out") from e
        except httpx.TransportError as e:
            raise TransientGradingError(f"AI stream failed: {e}") from e

        return "".join(fragments)
