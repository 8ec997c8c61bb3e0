"""
DalandanCare Guidance Service - FastAPI Application

Curated citrus-leaf disease recommendations, AI-enhanced recommendations and
a safety-constrained chat assistant backed by an OpenAI-compatible API.
"""
import platform
import secrets
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, load_settings
from .conversation import ConversationContext, InMemoryTurnStore, TurnStore
from .errors import GatewayUnavailable, NoFallbackAvailable
from .input_sanitization import sanitize_context, sanitize_message
from .llm_client import GroqClient
from .models import (
    DISEASE_KEY_RE,
    SESSION_ID_RE,
    ChatRequest,
    GenerateRecommendationRequest,
    GuidanceRequest,
    SeedRecommendationsRequest,
    normalize_disease_key,
)
from .orchestrator import GuidanceOrchestrator
from .rate_limiter import RateLimitManager
from .recommendation_store import InMemoryRecommendationStore, RecommendationStore, seed_store
from .structured_logging import (
    StructuredLogger,
    log_request,
    mask_session_id,
    set_request_id,
    setup_logging,
)

API_VERSION = "1.0.0"
STREAM_ERROR_LINE = "\n\nSorry, I encountered an error processing your request. Please try again."

logger = StructuredLogger("api")


def _validation_failed(details: list[dict]) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": jsonable_encoder(details)},
    )


def _field_error(field: str, message: str, value=None) -> JSONResponse:
    return _validation_failed([{"field": field, "message": message, "value": value}])


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[GroqClient] = None,
    turn_store: Optional[TurnStore] = None,
    recommendation_store: Optional[RecommendationStore] = None,
    rate_limits: Optional[RateLimitManager] = None,
) -> FastAPI:
    """Build the application; every collaborator can be injected for tests."""
    settings = settings or load_settings()
    setup_logging(level=settings.log_level, use_json=settings.log_json)

    gateway = gateway or GroqClient(settings.gateway)
    turn_store = turn_store if turn_store is not None else InMemoryTurnStore()
    recommendations = (
        recommendation_store if recommendation_store is not None else InMemoryRecommendationStore()
    )
    conversation = ConversationContext(turn_store, default_window=settings.context_window)
    orchestrator = GuidanceOrchestrator(
        gateway, conversation, recommendations, max_retries=settings.max_retries
    )
    rate_limits = rate_limits or RateLimitManager(trust_forwarded=settings.trust_proxy)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Seed baselines and apply chat retention on startup."""
        app.state.started_at = time.time()
        if await recommendations.count() == 0:
            await seed_store(recommendations)
        await conversation.purge_older_than(settings.retention_days)
        logger.info(
            "Service started",
            environment=settings.environment,
            model=settings.gateway.model,
            cors_origins=list(settings.cors_origins),
        )
        yield
        await gateway.aclose()
        logger.info("Service stopped")

    app = FastAPI(
        title="DalandanCare Guidance API",
        description="Citrus leaf disease recommendations and safety-constrained chat",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.rate_limits = rate_limits
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-ID"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Middleware for request ID tracking and logging."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        set_request_id(request_id)

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        if request.url.path not in ["/health", "/docs", "/openapi.json"]:
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                client_ip=request.client.host if request.client else None,
            )

        response.headers["X-Request-ID"] = request_id
        return response

    # --- Error handlers ---

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in err["loc"][1:]) or str(err["loc"][0]),
                "message": err["msg"],
                "value": err.get("input"),
            }
            for err in exc.errors()
        ]
        logger.warning("Request validation failed", path=request.url.path, errors=len(details))
        return _validation_failed(details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict):
            content = exc.detail
        elif exc.status_code == 404 and exc.detail == "Not Found":
            content = {"error": f"Route {request.url.path} not found"}
        else:
            content = {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error", path=request.url.path, method=request.method)
        return JSONResponse(status_code=500, content={"error": "Server Error"})

    # --- Health ---

    async def health(request: Request):
        llm_healthy = await gateway.health_check()
        body = {
            "status": "ok" if llm_healthy else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.time() - app.state.started_at, 2),
            "environment": settings.environment,
            "version": API_VERSION,
            "store": {
                "status": "in-memory",
                "recommendations": await recommendations.count(),
                "chatMessages": await turn_store.count(),
            },
            "llm": {
                "status": "available" if llm_healthy else "unavailable",
                "service": "groq",
                "model": settings.gateway.model,
            },
        }
        return JSONResponse(status_code=200 if llm_healthy else 503, content=body)

    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_route("/api/health", health, methods=["GET"])

    @app.get("/")
    async def root():
        return {
            "message": "DalandanCare Guidance API",
            "version": API_VERSION,
            "status": "running",
            "endpoints": {
                "health": "/health",
                "recommendations": "/api/recommendations",
                "chat": "/api/chat",
            },
        }

    async def api_rate_limit(request: Request):
        rate_limits.check("api", request)

    api = APIRouter(prefix="/api", dependencies=[Depends(api_rate_limit)])

    @api.get("/health/system")
    async def system_info():
        if settings.is_production:
            return JSONResponse(
                status_code=404,
                content={"error": "Endpoint not available in production"},
            )
        return {
            "python": {
                "version": platform.python_version(),
                "platform": platform.system().lower(),
                "arch": platform.machine(),
            },
            "environment": {
                "environment": settings.environment,
                "groqApiKey": "***configured***" if settings.gateway.api_key else "not set",
                "groqBaseUrl": settings.gateway.base_url,
                "model": settings.gateway.model,
            },
        }

    # --- Chat ---

    @api.post("/chat")
    async def chat(body: ChatRequest, request: Request):
        headers = rate_limits.check("chat", request)
        message = sanitize_message(body.message)
        if not message:
            return _field_error("message", "Message must be 1-1000 characters", body.message)
        session_id = body.session_id or secrets.token_hex(16)

        if body.stream:
            async def chat_stream():
                try:
                    async for delta in orchestrator.stream_chat(session_id, message):
                        yield delta
                except GatewayUnavailable as e:
                    logger.error(
                        "Chat completion failed",
                        session_id=mask_session_id(session_id),
                        error=str(e),
                    )
                    yield STREAM_ERROR_LINE

            return StreamingResponse(
                chat_stream(),
                media_type="text/plain; charset=utf-8",
                headers={**headers, "Cache-Control": "no-cache", "X-Session-ID": session_id},
            )

        try:
            result = await orchestrator.continue_chat(session_id, message)
        except GatewayUnavailable as e:
            logger.error(
                "Chat completion failed",
                session_id=mask_session_id(session_id),
                error=str(e),
            )
            return JSONResponse(
                status_code=503,
                content={
                    "error": "Chat service temporarily unavailable",
                    "message": "Please try again in a few moments",
                    "sessionId": session_id,
                },
                headers=headers,
            )

        return JSONResponse(
            {
                "success": True,
                "data": {
                    "message": result.content,
                    "sessionId": result.session_id,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "metadata": {
                        "processingTime": result.processing_duration_ms,
                        "model": result.model_id,
                    },
                },
            },
            headers=headers,
        )

    @api.get("/chat/history/{session_id}")
    async def chat_history(
        session_id: str,
        limit: int = Query(50, ge=1, le=200),
        offset: int = Query(0, ge=0),
    ):
        if not SESSION_ID_RE.match(session_id):
            return _field_error(
                "sessionId",
                "Session ID must be alphanumeric with hyphens and underscores only",
                session_id,
            )
        turns = await conversation.history(session_id, limit=limit, offset=offset)
        return {
            "success": True,
            "sessionId": session_id,
            "count": len(turns),
            "data": [
                {
                    "role": turn.role,
                    "content": turn.content,
                    "createdAt": turn.created_at.isoformat(),
                }
                for turn in turns
            ],
        }

    @api.delete("/chat/session/{session_id}")
    async def delete_chat_session(session_id: str):
        if not SESSION_ID_RE.match(session_id):
            return _field_error(
                "sessionId",
                "Session ID must be alphanumeric with hyphens and underscores only",
                session_id,
            )
        deleted = await conversation.purge_session(session_id)
        return {
            "success": True,
            "message": f"Deleted {deleted} messages from session",
            "sessionId": session_id,
        }

    # --- Recommendations ---

    @api.get("/recommendations")
    async def list_recommendations():
        records = await recommendations.list_all()
        return {
            "success": True,
            "count": len(records),
            "data": [
                {
                    "diseaseKey": rec.disease_key,
                    "displayName": rec.display_name,
                    "severity": rec.severity,
                    "updatedAt": rec.updated_at.isoformat(),
                }
                for rec in records
            ],
        }

    @api.post("/recommendations/generate")
    async def generate_recommendation(body: GenerateRecommendationRequest, request: Request):
        headers = rate_limits.check("recommendations-generate", request)
        guidance = GuidanceRequest(
            severity=body.context.severity,
            confidence=body.context.confidence,
            user_context=sanitize_context(body.context.user_context),
        )
        try:
            result = await orchestrator.generate_recommendation(
                body.disease_key, guidance, enhance_existing=body.enhance_existing
            )
        except NoFallbackAvailable as e:
            return JSONResponse(
                status_code=503,
                content={
                    "error": "Unable to generate recommendation at this time",
                    "message": "Please try again later or contact support",
                    "diseaseKey": e.disease_key,
                },
                headers=headers,
            )

        content = {
            "success": True,
            "data": result.data,
            "source": result.source,
            "context": result.context,
        }
        if result.warning:
            content["warning"] = result.warning
        return JSONResponse(jsonable_encoder(content), headers=headers)

    @api.post("/recommendations/seed")
    async def seed_recommendations():
        if not settings.enable_seed_endpoint:
            return JSONResponse(status_code=404, content={"error": "Seeding endpoint is disabled"})
        if settings.is_production:
            return JSONResponse(
                status_code=403,
                content={"error": "Seeding not allowed in production environment"},
            )

        logger.info("Manual recommendation seeding initiated")
        inserted = await seed_store(recommendations)
        return {
            "success": True,
            "message": f"Successfully seeded {len(inserted)} recommendations",
            "data": [
                {"diseaseKey": r.disease_key, "displayName": r.display_name, "severity": r.severity}
                for r in inserted
            ],
        }

    @api.post("/recommendations/seed/custom")
    async def seed_custom_recommendations(body: SeedRecommendationsRequest):
        if not settings.enable_seed_endpoint or settings.is_production:
            return JSONResponse(status_code=403, content={"error": "Custom seeding not allowed"})

        inserted = await recommendations.replace_all(
            body.recommendations, clear_existing=body.clear_existing
        )
        logger.info(
            "Custom recommendations seeded",
            count=len(inserted),
            clear_existing=body.clear_existing,
        )
        return {
            "success": True,
            "message": f"Successfully seeded {len(inserted)} custom recommendations",
            "data": [
                {"diseaseKey": r.disease_key, "displayName": r.display_name, "severity": r.severity}
                for r in inserted
            ],
        }

    @api.get("/recommendations/{disease_key}")
    async def get_recommendation(disease_key: str):
        key = normalize_disease_key(disease_key)
        if not DISEASE_KEY_RE.match(key):
            return _field_error(
                "diseaseKey",
                "Disease key must be lowercase alphanumeric with hyphens only",
                disease_key,
            )

        logger.info("Fetching recommendation", disease_key=key)
        baseline = await recommendations.find_by_key(key)
        if baseline is None:
            return JSONResponse(
                status_code=404,
                content={
                    "error": "Recommendation not found",
                    "diseaseKey": key,
                    "availableKeys": await recommendations.keys(),
                },
            )
        return {"success": True, "data": baseline.safe_view(), "source": "database"}

    app.include_router(api)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("dalandan_service.main:app", host="0.0.0.0", port=8000)
