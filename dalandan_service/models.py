"""
Pydantic models for the DalandanCare guidance service.

Domain values (chat turns, recommendations, model replies) first, then the
request/response bodies of the HTTP API.
"""
import re
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .safety import DISCLAIMER

MAX_TURN_LENGTH = 4000
MAX_CHAT_MESSAGE_LENGTH = 1000
MAX_USER_CONTEXT_LENGTH = 500

DISEASE_KEY_RE = re.compile(r"^[a-z0-9-]{2,50}$")
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,100}$")

Role = Literal["user", "assistant", "system"]
Severity = Literal["low", "medium", "high"]
GuidanceSource = Literal["ai-generated", "ai-enhanced", "database-fallback", "safety-fallback"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_disease_key(key: str) -> str:
    """'  Black Spot ' -> 'black-spot'"""
    return re.sub(r"\s+", "-", key.strip().lower())


class CamelModel(BaseModel):
    """Serializes to camelCase on the wire, accepts either form on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Conversation ---

class ChatTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    role: Role
    content: str = Field(min_length=1, max_length=MAX_TURN_LENGTH)
    created_at: datetime = Field(default_factory=utcnow)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def as_message(self) -> dict:
        return {"role": self.role, "content": self.content}


# --- Recommendations ---

class GuidanceRequest(CamelModel):
    severity: Optional[Severity] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    user_context: Optional[str] = Field(default=None, max_length=MAX_USER_CONTEXT_LENGTH)
    # Filled in by the orchestrator when a stored baseline is being enhanced
    existing_summary: Optional[str] = None
    existing_severity: Optional[Severity] = None


class StructuredRecommendation(CamelModel):
    summary: str
    symptoms: list[str]
    causes: list[str]
    treatment_steps: list[str]
    prevention_steps: list[str]
    when_to_escalate: list[str] = Field(default_factory=list)
    additional_notes: Optional[str] = None
    disclaimer: str = DISCLAIMER

    @field_validator(
        "symptoms", "causes", "treatment_steps", "prevention_steps", "when_to_escalate",
        mode="before",
    )
    @classmethod
    def clean_steps(cls, v):
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, list):
            return v
        return [str(item).strip() for item in v if item is not None and str(item).strip()]

    @field_validator("summary")
    @classmethod
    def summary_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("summary cannot be empty")
        return v.strip()

    @field_validator("symptoms", "causes", "treatment_steps", "prevention_steps")
    @classmethod
    def required_list_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("required list cannot be empty")
        return v


class BaselineRecommendation(CamelModel):
    """Curated recommendation stored for a disease key."""
    disease_key: str
    display_name: str
    summary: str = Field(max_length=500)
    symptoms: list[str]
    causes: list[str]
    treatment_steps: list[str]
    prevention_steps: list[str]
    severity: Severity
    when_to_escalate: list[str]
    references: list[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("disease_key")
    @classmethod
    def key_normalized(cls, v: str) -> str:
        return normalize_disease_key(v)

    def safe_view(self) -> dict:
        """Wire representation with the safety disclaimer attached."""
        data = self.model_dump(mode="json", by_alias=True)
        data["disclaimer"] = DISCLAIMER
        return data


class ModelReply(BaseModel):
    content: str
    model_id: str
    created_at: datetime = Field(default_factory=utcnow)
    usage: Optional[dict[str, Any]] = None
    refused: bool = False


class GuidanceResult(BaseModel):
    data: dict[str, Any]
    source: GuidanceSource
    context: dict[str, Any] = Field(default_factory=dict)
    warning: Optional[str] = None


class ChatResult(BaseModel):
    session_id: str
    content: str
    model_id: str
    processing_duration_ms: int
    refused: bool = False


# --- HTTP: Chat ---

class ChatRequest(CamelModel):
    message: str
    session_id: Optional[str] = None
    stream: bool = False

    @field_validator("message")
    @classmethod
    def message_length(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message must be 1-1000 characters")
        if len(v) > MAX_CHAT_MESSAGE_LENGTH:
            raise ValueError("Message must be 1-1000 characters")
        return v.strip()

    @field_validator("session_id")
    @classmethod
    def session_id_format(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not SESSION_ID_RE.match(v):
            raise ValueError("Session ID must be alphanumeric with hyphens and underscores only")
        return v


# --- HTTP: Recommendations ---

class GenerateRecommendationRequest(CamelModel):
    disease_key: str
    context: GuidanceRequest = Field(default_factory=GuidanceRequest)
    enhance_existing: bool = True

    @field_validator("disease_key")
    @classmethod
    def disease_key_format(cls, v: str) -> str:
        normalized = normalize_disease_key(v)
        if not DISEASE_KEY_RE.match(normalized):
            raise ValueError("Disease key must be lowercase alphanumeric with hyphens only")
        return normalized


class SeedRecommendationsRequest(CamelModel):
    recommendations: list[BaselineRecommendation] = Field(min_length=1)
    clear_existing: bool = False
