"""Request bodies for the versioned API."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field

from bonsai.models.routing import ChatTurn, Complexity, RoutingRequest, Urgency


class ChatTurnBody(BaseModel):
    role: str
    content: str


class ChatRequestBody(BaseModel):
    message: str = Field(
        ...,
        min_length=1,
        max_length=32_000,
        description="User prompt to route",
    )
    complexity: Complexity = Complexity.MEDIUM
    studio: str | None = None
    variant: str | None = Field(
        default=None,
        description="Variant id. Omit to classify the prompt by keyword.",
    )
    user_preference: str | None = None
    context: str | None = None
    urgency: Urgency = Urgency.MEDIUM
    collaboration_mode: bool = False
    streaming: bool = False
    previous_messages: list[ChatTurnBody] = Field(default_factory=list)
    max_tokens: int | None = Field(default=None, ge=1)

    def to_routing_request(self) -> RoutingRequest:
        return RoutingRequest(
            prompt=self.message,
            complexity=self.complexity,
            studio=self.studio,
            variant=self.variant,
            user_preference=self.user_preference,
            context=self.context,
            previous_messages=[ChatTurn(role=t.role, content=t.content) for t in self.previous_messages],
            urgency=self.urgency,
            collaboration=self.collaboration_mode,
            streaming=self.streaming,
            max_tokens=self.max_tokens,
        )


class UsageAction(StrEnum):
    RESET_DAILY = "reset_daily"
    EMERGENCY_BRAKE = "emergency_brake"
    RELEASE_BRAKE = "release_brake"
    HEALTH_CHECK = "health_check"


class UsageActionBody(BaseModel):
    # Plain string so an unknown action is answered with 400 rather than 422
    action: str
