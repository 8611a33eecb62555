from datetime import datetime
from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field


class RefundJobState(str, Enum):
    CREATED = "CREATED"
    SENT = "SENT"
    PENDING = "PENDING"
    APPLY = "APPLY"
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


TERMINAL_STATES = frozenset({RefundJobState.SUCCESS, RefundJobState.FAILURE})


class RefundJob(BaseModel):
    """A refund on its way from the shop to the gateway and back. Never deleted."""

    id: Optional[int] = None
    external_id: str
    refund_id: Optional[int] = None
    order_id: int
    space_id: int
    transaction_id: int
    refund_parameters: dict[str, Any]
    state: RefundJobState = RefundJobState.CREATED
    apply_tries: int = 0
    failure_reason: Optional[dict[str, str]] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_running(self) -> bool:
        return self.state not in TERMINAL_STATES

    def increase_apply_tries(self) -> None:
        self.apply_tries += 1


class RefundRequest(BaseModel):
    model_config = {"extra": "forbid"}

    order_id: int = Field(..., ge=1)
    parameters: dict[str, Any] = Field(..., min_length=1)


class SweepRequest(BaseModel):
    model_config = {"extra": "forbid"}

    max_runtime_seconds: Optional[float] = Field(None, gt=0, le=3600)


class SweepReport(BaseModel):
    sent: list[int] = Field(default_factory=list)
    applied: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    deadline_reached: bool = False


class RefundWebhook(BaseModel):
    """Notification posted by the gateway when one of its refunds changes state."""

    space_id: int = Field(..., ge=1)
    entity_id: int = Field(..., ge=1)
    listener_entity_technical_name: str = "Refund"
