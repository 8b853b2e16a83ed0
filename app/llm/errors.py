"""
LLM Errors
==========
Exceptions raised by the model client.

ProviderError carries the HTTP status (None for transport faults such as
timeouts or refused connections) and the provider's own error message, so
the router can classify it and the API layer can report it upstream.
"""
from typing import Optional


class ProviderError(Exception):
    """A single model call failed."""

    def __init__(self, message: str, status: Optional[int] = None, model: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.model = model

    def __repr__(self) -> str:
        return f"ProviderError(status={self.status!r}, model={self.model!r}, message={self.message!r})"


class MissingAPIKeyError(RuntimeError):
    """GEMINI_API_KEY is not configured."""
