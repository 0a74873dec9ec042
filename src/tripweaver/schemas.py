"""
Pydantic schemas for the orchestration boundary.

Inbound requests and outbound responses use camelCase field names on the
wire; snake_case names are accepted too.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain.entities import ConversationTurn, RequestContext


# =============================================================================
# Constants
# =============================================================================

MAX_UTTERANCE_LENGTH = 10000


# =============================================================================
# Inbound
# =============================================================================


class ConversationTurnSchema(BaseModel):
    """One prior conversation turn."""

    model_config = ConfigDict(populate_by_name=True)

    role: str = "user"
    content: str
    timestamp: Optional[datetime] = None


class InboundRequest(BaseModel):
    """A traveller request as received by the orchestration core."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "userId": "traveller-42",
                "utterance": "Plan a 5-day trip to Lisbon under $1000",
                "conversationHistory": [],
                "sessionAttributes": {"home_city": "London"},
            }
        },
    )

    user_id: str = Field(..., alias="userId", min_length=1)
    utterance: str = Field(..., max_length=MAX_UTTERANCE_LENGTH)
    request_id: Optional[str] = Field(default=None, alias="requestId")
    conversation_history: list[ConversationTurnSchema] = Field(
        default_factory=list, alias="conversationHistory"
    )
    session_attributes: dict[str, Any] = Field(default_factory=dict, alias="sessionAttributes")

    @field_validator("user_id")
    @classmethod
    def strip_user_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("userId must not be blank")
        return value

    def to_context(self) -> RequestContext:
        """Build the immutable request context."""
        kwargs: dict[str, Any] = {}
        if self.request_id:
            kwargs["request_id"] = self.request_id
        return RequestContext(
            user_id=self.user_id,
            utterance=self.utterance,
            conversation_history=tuple(
                ConversationTurn(role=t.role, content=t.content, timestamp=t.timestamp)
                for t in self.conversation_history
            ),
            session_attributes=self.session_attributes,
            **kwargs,
        )


# =============================================================================
# Outbound
# =============================================================================


class BackupPlanSchema(BaseModel):
    trigger: str
    alternative: str
    confidence: float


class OrchestrationResponse(BaseModel):
    """Response returned for every request, including failed ones."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., alias="requestId")
    message: str
    intent: Optional[str] = None
    related_intents: list[str] = Field(default_factory=list, alias="relatedIntents")
    language: Optional[str] = None
    state: str
    agents_used: list[str] = Field(default_factory=list, alias="agentsUsed")
    cost: float = 0.0
    latency_ms: float = Field(default=0.0, alias="latencyMs")
    emotional_impact: Optional[float] = Field(default=None, alias="emotionalImpact")
    carbon_saved: Optional[float] = Field(default=None, alias="carbonSaved")
    cache_hit: bool = Field(default=False, alias="cacheHit")
    degraded: bool = False
    revision: int = 0
    backup_plans: list[BackupPlanSchema] = Field(default_factory=list, alias="backupPlans")

    def to_wire(self) -> dict[str, Any]:
        """camelCase JSON-compatible dict."""
        return self.model_dump(by_alias=True, mode="json")


class ComponentHealthSchema(BaseModel):
    name: str
    status: str
    details: dict[str, Any] = Field(default_factory=dict)


class HealthSummary(BaseModel):
    """Aggregated health; ``status`` is the worst component status."""

    status: str
    components: list[ComponentHealthSchema] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.utcnow, alias="checkedAt")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "MAX_UTTERANCE_LENGTH",
    "BackupPlanSchema",
    "ComponentHealthSchema",
    "ConversationTurnSchema",
    "HealthSummary",
    "InboundRequest",
    "OrchestrationResponse",
]
