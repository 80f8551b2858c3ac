"""
Domain exceptions for the collection explorer.

Each exception carries the HTTP status it maps to; the handlers in
app.main turn them into `{"detail": {"error": <name>, "message": ...}}`.
"""

from typing import Any, Dict, Optional


class ExplorerError(Exception):
    """Base exception for domain errors."""

    status_code: int = 500
    error_code: str = "ServerError"

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.error_code)
        self.message = message or self.error_code
        self.context: Dict[str, Any] = context

    def to_detail(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message}


class UnknownCurrency(ExplorerError):
    """Raised when a non-native currency id does not match an active currency."""

    status_code = 400
    error_code = "UnknownCurrency"

    def __init__(self, currency_id: Optional[str]):
        super().__init__(f"Unknown currency: {currency_id}", currency_id=currency_id)
        self.currency_id = currency_id


class NotFound(ExplorerError):
    """Raised when a collection/contract cannot be resolved."""

    status_code = 404
    error_code = "NotFound"


class MalformedCursor(ExplorerError):
    """A pagination cursor could not be decoded. Recovered silently, never surfaced."""

    status_code = 400
    error_code = "MalformedCursor"


class QueryExecutionFailure(ExplorerError):
    """The persistence layer rejected or failed a query."""

    status_code = 500
    error_code = "QueryExecutionFailure"


class UpstreamTimeout(ExplorerError):
    """The persistence layer did not respond within the statement budget."""

    status_code = 504
    error_code = "UpstreamTimeout"
