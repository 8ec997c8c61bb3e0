"""
Guidance Orchestrator - the two user-facing operations of the service.

generate_recommendation: baseline lookup, model call, parse, merge, with a
fallback chain ai-enhanced -> database-fallback -> NoFallbackAvailable.

continue_chat / stream_chat: windowed conversation turn with the safety
persona. Chat has no fallback tier; gateway failures propagate.
"""
import time
from typing import AsyncIterator, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from .conversation import ConversationContext
from .errors import GatewayUnavailable, NoFallbackAvailable
from .formatters import build_chat_messages, build_recommendation_messages
from .llm_client import CompletionOptions, GroqClient
from .models import (
    BaselineRecommendation,
    ChatResult,
    GuidanceRequest,
    GuidanceResult,
    ModelReply,
    StructuredRecommendation,
    normalize_disease_key,
)
from .recommendation_parser import fallback_recommendation, parse
from .recommendation_store import RecommendationStore
from .structured_logging import StructuredLogger, mask_session_id

logger = StructuredLogger(__name__)

CHAT_OPTIONS = CompletionOptions(temperature=0.7, max_tokens=600)
RECOMMENDATION_OPTIONS = CompletionOptions(temperature=0.3, max_tokens=800)

FALLBACK_WARNING = "AI enhancement unavailable, returning base recommendation"
SAFETY_WARNING = "Request declined by safety policy, returning base recommendation"


def merge_enhancements(
    baseline: BaselineRecommendation,
    ai: StructuredRecommendation,
) -> dict:
    """Baseline safe view plus the AI additions it does not already contain.

    Steps are compared by exact string; the baseline's own fields are never
    overwritten.
    """
    merged = baseline.safe_view()
    merged["aiEnhancements"] = {
        "additionalNotes": ai.additional_notes,
        "contextualAdvice": ai.summary,
        "enhancedTreatment": [
            step for step in ai.treatment_steps if step not in baseline.treatment_steps
        ],
        "enhancedPrevention": [
            step for step in ai.prevention_steps if step not in baseline.prevention_steps
        ],
    }
    return merged


class GuidanceOrchestrator:
    def __init__(
        self,
        gateway: GroqClient,
        conversation: ConversationContext,
        recommendations: RecommendationStore,
        max_retries: int = 0,
    ):
        self.gateway = gateway
        self.conversation = conversation
        self.recommendations = recommendations
        self.max_retries = max(0, max_retries)

    async def _complete(self, messages: list[dict], options: CompletionOptions) -> ModelReply:
        """Gateway call, retried on GatewayUnavailable only when configured."""
        if self.max_retries == 0:
            return await self.gateway.complete(messages, options)

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_random_exponential(multiplier=0.5, max=8),
            retry=retry_if_exception_type(GatewayUnavailable),
            before_sleep=lambda state: logger.warning(
                "Retrying model call",
                attempt=state.attempt_number,
                error=str(state.outcome.exception()),
            ),
            reraise=True,
        ):
            with attempt:
                return await self.gateway.complete(messages, options)

    # --- Recommendations ---

    async def generate_recommendation(
        self,
        disease_key: str,
        request: Optional[GuidanceRequest] = None,
        enhance_existing: bool = True,
    ) -> GuidanceResult:
        """Produce a recommendation for a disease key.

        Raises:
            NoFallbackAvailable: the model could not be reached and there is
                no stored baseline to fall back on.
        """
        key = normalize_disease_key(disease_key)
        request = request.model_copy() if request else GuidanceRequest()

        baseline = None
        if enhance_existing:
            baseline = await self.recommendations.find_by_key(key)
            if baseline is not None:
                request = request.model_copy(update={
                    "existing_summary": baseline.summary,
                    "existing_severity": baseline.severity,
                })

        context = request.model_dump(mode="json", by_alias=True, exclude_none=True)
        logger.info(
            "Generating recommendation",
            disease_key=key,
            enhance_existing=enhance_existing,
            has_baseline=baseline is not None,
        )

        messages = build_recommendation_messages(key, request)
        try:
            reply = await self._complete(messages, RECOMMENDATION_OPTIONS)
        except GatewayUnavailable as e:
            logger.error("Recommendation generation failed", disease_key=key, error=str(e))
            if baseline is None:
                raise NoFallbackAvailable(key) from e
            return GuidanceResult(
                data=baseline.safe_view(),
                source="database-fallback",
                context=context,
                warning=FALLBACK_WARNING,
            )

        if reply.refused:
            if baseline is not None:
                return GuidanceResult(
                    data=baseline.safe_view(),
                    source="database-fallback",
                    context=context,
                    warning=SAFETY_WARNING,
                )
            return GuidanceResult(
                data=fallback_recommendation().model_dump(by_alias=True),
                source="safety-fallback",
                context=context,
            )

        recommendation = parse(reply.content)
        if baseline is not None:
            return GuidanceResult(
                data=merge_enhancements(baseline, recommendation),
                source="ai-enhanced",
                context=context,
            )
        return GuidanceResult(
            data=recommendation.model_dump(by_alias=True),
            source="ai-generated",
            context=context,
        )

    # --- Chat ---

    async def _prepare_chat(self, session_id: str, message: str) -> list[dict]:
        window = await self.conversation.recent_window(session_id)
        # The user turn is stored before the model call goes out
        await self.conversation.record(session_id, "user", message)
        return build_chat_messages(window, message)

    async def continue_chat(self, session_id: str, message: str) -> ChatResult:
        """One non-streaming chat turn.

        Raises:
            GatewayUnavailable: the model could not be reached.
        """
        logger.info(
            "Chat request received",
            session_id=mask_session_id(session_id),
            message_length=len(message),
            stream=False,
        )
        messages = await self._prepare_chat(session_id, message)

        start_time = time.time()
        reply = await self._complete(messages, CHAT_OPTIONS)
        processing_ms = int((time.time() - start_time) * 1000)

        await self.conversation.record(
            session_id,
            "assistant",
            reply.content,
            metadata={
                "model": reply.model_id,
                "processing_time_ms": processing_ms,
                "stream": False,
            },
        )
        return ChatResult(
            session_id=session_id,
            content=reply.content,
            model_id=reply.model_id,
            processing_duration_ms=processing_ms,
            refused=reply.refused,
        )

    async def stream_chat(self, session_id: str, message: str) -> AsyncIterator[str]:
        """Stream one chat turn as text deltas.

        The assistant turn is stored only if the stream runs to completion; a
        consumer that stops early leaves just the user turn behind.
        """
        logger.info(
            "Chat request received",
            session_id=mask_session_id(session_id),
            message_length=len(message),
            stream=True,
        )
        messages = await self._prepare_chat(session_id, message)

        start_time = time.time()
        stream = self.gateway.complete_streaming(messages, CHAT_OPTIONS)
        deltas = stream.__aiter__()
        try:
            async for delta in deltas:
                yield delta
        finally:
            # Releases the upstream HTTP stream as soon as the consumer stops
            await deltas.aclose()

        reply = stream.reply
        if reply is None:
            return
        await self.conversation.record(
            session_id,
            "assistant",
            reply.content,
            metadata={
                "model": reply.model_id,
                "processing_time_ms": int((time.time() - start_time) * 1000),
                "stream": True,
            },
        )
