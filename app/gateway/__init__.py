from .client import GatewayClient
from .errors import (
    GatewayError,
    ClientRejectionError,
    TransientError,
    RefundNotFoundError,
    clean_exception_message,
)
from .memory import InMemoryGateway

__all__ = [
    "GatewayClient",
    "GatewayError",
    "ClientRejectionError",
    "TransientError",
    "RefundNotFoundError",
    "clean_exception_message",
    "InMemoryGateway",
]
