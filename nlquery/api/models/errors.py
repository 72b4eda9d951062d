"""Response envelope and error models.

Every API response is `{success, data | error, timestamp}` with the
timestamp in epoch milliseconds.
"""

import time
from typing import Any

from pydantic import BaseModel


class Envelope(BaseModel):
    """Wrapper around every API response."""

    success: bool
    data: Any | None = None
    error: str | None = None
    timestamp: int

    def to_content(self) -> dict[str, Any]:
        """JSON body with only the populated branch of data/error."""
        return self.model_dump(exclude={"error"} if self.success else {"data"})


# ============================================================================
# Envelope Factory Functions
# ============================================================================


def now_ms() -> int:
    return int(time.time() * 1000)


def success_envelope(data: Any) -> Envelope:
    """Wrap a successful result.

    Args:
        data: JSON-serializable payload

    Returns:
        Envelope with success=True
    """
    return Envelope(success=True, data=data, timestamp=now_ms())


def error_envelope(message: str) -> Envelope:
    """Wrap an error message.

    Args:
        message: Human-readable error message

    Returns:
        Envelope with success=False
    """
    return Envelope(success=False, error=message, timestamp=now_ms())


def invalid_request_error(message: str) -> dict[str, Any]:
    """Create invalid request error body."""
    return error_envelope(message).to_content()


def not_found_error(message: str) -> dict[str, Any]:
    """Create not found error body."""
    return error_envelope(message).to_content()


def server_error(message: str = "Internal server error") -> dict[str, Any]:
    """Create server error body."""
    return error_envelope(message).to_content()
