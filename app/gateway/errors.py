import re
from typing import Optional

# Gateway error messages start with the id of the failed request, e.g. "[3f2a...-...] Amount too high"
_REQUEST_ID_PREFIX = re.compile(r"^\[[A-Fa-f\d\-]+\] ")


class GatewayError(Exception):
    """Base class for errors returned by the payment gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ClientRejectionError(GatewayError):
    """The gateway refused the request itself. Retrying the same request cannot succeed."""
    pass


class TransientError(GatewayError):
    """Network or server-side failure. The same request may succeed later."""
    pass


class RefundNotFoundError(Exception):
    """A refund or invoice expected on the gateway side does not exist."""
    pass


def clean_exception_message(message: str) -> str:
    """Strip the gateway's request id prefix so the message is fit to show in the shop."""
    return _REQUEST_ID_PREFIX.sub("", message, count=1)
