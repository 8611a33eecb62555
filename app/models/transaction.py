from enum import Enum
from pydantic import BaseModel, Field


class TransactionState(str, Enum):
    CREATE = "CREATE"
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    FAILED = "FAILED"
    AUTHORIZED = "AUTHORIZED"
    VOIDED = "VOIDED"
    COMPLETED = "COMPLETED"
    FULFILL = "FULFILL"
    DECLINE = "DECLINE"


class TransactionInfo(BaseModel):
    """Link between a shop order and the gateway transaction that paid for it."""

    order_id: int = Field(..., ge=1)
    space_id: int = Field(..., ge=1)
    transaction_id: int = Field(..., ge=1)
    state: TransactionState
