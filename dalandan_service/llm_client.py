"""
Groq Client - HTTP client for the OpenAI-compatible chat-completion API.

This is the only module that talks to the external language model. It screens
the outgoing user message, performs exactly one HTTP call per request, and
guarantees the safety disclaimer on every reply it returns.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import httpx

from .config import GatewayConfig
from .errors import GatewayUnavailable
from .models import ModelReply
from .prompts import HEALTH_CHECK_PROMPT
from .safety import (
    REFUSAL_MESSAGE,
    disclaimer_suffix,
    ensure_disclaimer,
    last_user_message,
    matched_pattern,
)
from .structured_logging import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass
class CompletionOptions:
    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 600
    top_p: float = 0.9


def _created_at(data: dict) -> datetime:
    created = data.get("created")
    if isinstance(created, (int, float)):
        return datetime.fromtimestamp(created, timezone.utc)
    return datetime.now(timezone.utc)


def _message_content(data: dict) -> str:
    """choices[0].message.content of a non-streaming response."""
    choices = data.get("choices")
    if not isinstance(choices, list):
        raise GatewayUnavailable("Chat completion response has no choices")
    if not choices:
        return ""
    first = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message") or {}
    return message.get("content") or ""


def parse_stream_line(line: str) -> Optional[dict]:
    """Decode one line of a streamed response into a chunk dict.

    Accepts server-sent-event framing (``data: {...}``) as well as bare
    newline-delimited JSON. Returns None for blank lines, comments, the
    ``[DONE]`` sentinel and anything that is not a JSON object.
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()
    if line == "[DONE]":
        return None
    try:
        chunk = json.loads(line)
    except json.JSONDecodeError:
        return None
    return chunk if isinstance(chunk, dict) else None


def chunk_delta(chunk: dict) -> str:
    """Text carried by a streamed chunk (OpenAI delta or Ollama message form)."""
    choices = chunk.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        delta = first.get("delta") or {}
        return delta.get("content") or ""
    message = chunk.get("message")
    if isinstance(message, dict):
        return message.get("content") or ""
    return ""


class ReplyStream:
    """Async iterator over content deltas of one streamed completion.

    Deltas are forwarded unchanged as they arrive. Once the upstream stream
    ends, a final delta carrying the disclaimer is emitted if the reassembled
    text lacks it, and ``reply`` holds the full ModelReply. If iteration stops
    early, ``reply`` stays None.
    """

    def __init__(self, chunks: Optional[AsyncIterator[dict]], model_id: str):
        self._chunks = chunks
        self._canned: Optional[ModelReply] = None
        self.model_id = model_id
        self.reply: Optional[ModelReply] = None

    @classmethod
    def from_reply(cls, reply: ModelReply) -> "ReplyStream":
        stream = cls(None, reply.model_id)
        stream._canned = reply
        return stream

    @property
    def refused(self) -> bool:
        return self._canned is not None and self._canned.refused

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        if self._canned is not None:
            yield self._canned.content
            self.reply = self._canned
            return

        parts: list[str] = []
        usage = None
        try:
            async for chunk in self._chunks:
                if chunk.get("model"):
                    self.model_id = chunk["model"]
                if isinstance(chunk.get("usage"), dict):
                    usage = chunk["usage"]
                delta = chunk_delta(chunk)
                if delta:
                    parts.append(delta)
                    yield delta
        finally:
            # Closes the HTTP stream when the consumer stops early
            await self._chunks.aclose()

        text = "".join(parts)
        suffix = disclaimer_suffix(text)
        if suffix:
            yield suffix
        self.reply = ModelReply(content=text + suffix, model_id=self.model_id, usage=usage)


class GroqClient:
    """HTTP client for the chat-completion API (Groq by default)."""

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.client = httpx.AsyncClient(timeout=config.timeout, transport=transport)
        if not config.api_key:
            logger.error("GROQ_API_KEY is not set; model calls will fail")
        else:
            logger.info(
                "Groq API configured",
                key_prefix=config.key_prefix,
                base_url=self.base_url,
                model=config.model,
            )

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def _payload(self, messages: list[dict], options: CompletionOptions, stream: bool) -> dict:
        return {
            "model": options.model or self.config.model,
            "messages": [{"role": m["role"], "content": m["content"]} for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
            "top_p": options.top_p,
            "stream": stream,
        }

    def _screen(self, messages: list[dict], model: str) -> Optional[ModelReply]:
        """Canned refusal if the latest user message trips the safety filter."""
        pattern = matched_pattern(last_user_message(messages) or "")
        if pattern is None:
            return None
        logger.warning("Unsafe request blocked before model call", pattern=pattern)
        return ModelReply(content=REFUSAL_MESSAGE, model_id=model, refused=True)

    def _require_key(self) -> None:
        if not self.config.api_key:
            raise GatewayUnavailable(
                "Groq API key is not configured. Check GROQ_API_KEY environment variable."
            )

    async def complete(
        self,
        messages: list[dict],
        options: Optional[CompletionOptions] = None,
    ) -> ModelReply:
        """Single non-streaming completion.

        Raises:
            GatewayUnavailable: network error, timeout, non-2xx status or an
                unreadable response body. Never retried here.
        """
        options = options or CompletionOptions()
        model = options.model or self.config.model

        refusal = self._screen(messages, model)
        if refusal is not None:
            return refusal

        self._require_key()
        payload = self._payload(messages, options, stream=False)
        logger.info("Sending request to Groq API", model=model, message_count=len(messages))

        try:
            response = await self.client.post(
                self.completions_url, json=payload, headers=self._headers()
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Groq API error response",
                status_code=e.response.status_code,
                body=e.response.text[:500],
            )
            raise GatewayUnavailable(
                f"Groq API error: {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("Groq API connection error", error=str(e), error_type=type(e).__name__)
            raise GatewayUnavailable(f"Groq API connection failed: {e}") from e
        except ValueError as e:
            logger.error("Groq API returned a non-JSON body", error=str(e))
            raise GatewayUnavailable("Groq API returned an unreadable response") from e

        if not isinstance(data, dict):
            raise GatewayUnavailable("Groq API returned an unexpected response shape")

        content = _message_content(data)
        return ModelReply(
            content=ensure_disclaimer(content),
            model_id=data.get("model") or model,
            created_at=_created_at(data),
            usage=data.get("usage"),
        )

    def complete_streaming(
        self,
        messages: list[dict],
        options: Optional[CompletionOptions] = None,
    ) -> ReplyStream:
        """Streaming completion; the HTTP call starts when iteration begins."""
        options = options or CompletionOptions()
        model = options.model or self.config.model

        refusal = self._screen(messages, model)
        if refusal is not None:
            return ReplyStream.from_reply(refusal)

        return ReplyStream(self._stream_chunks(messages, options), model)

    async def _stream_chunks(
        self,
        messages: list[dict],
        options: CompletionOptions,
    ) -> AsyncIterator[dict]:
        self._require_key()
        payload = self._payload(messages, options, stream=True)
        logger.info(
            "Sending streaming request to Groq API",
            model=payload["model"],
            message_count=len(messages),
        )

        try:
            async with self.client.stream(
                "POST", self.completions_url, json=payload, headers=self._headers()
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "Groq API error response",
                        status_code=response.status_code,
                        body=body[:500],
                    )
                    raise GatewayUnavailable(
                        f"Groq API error: {response.status_code}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    chunk = parse_stream_line(line)
                    if chunk is not None:
                        yield chunk
        except httpx.RequestError as e:
            logger.error("Groq API streaming connection error", error=str(e), error_type=type(e).__name__)
            raise GatewayUnavailable(f"Groq API connection failed: {e}") from e

    async def health_check(self) -> bool:
        """True if the API accepts a tiny completion request."""
        if not self.config.api_key:
            return False
        try:
            response = await self.client.post(
                self.completions_url,
                json={
                    "model": self.config.model,
                    "messages": [{"role": "user", "content": HEALTH_CHECK_PROMPT}],
                    "max_tokens": 5,
                },
                headers=self._headers(),
                timeout=self.config.health_timeout,
            )
            return response.is_success
        except httpx.HTTPError as e:
            logger.error("LLM health check failed", error=str(e))
            return False

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
