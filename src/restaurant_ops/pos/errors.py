"""Errors raised by the Square POS integration."""

from __future__ import annotations

from typing import Any


class SquareApiError(Exception):
    """Non-2xx response from the Square REST API.

    Attributes:
        status_code: HTTP status code of the response.
        body: Decoded JSON body. Square reports failures as
            ``{"errors": [{"category": ..., "code": ..., "detail": ...}]}``.
    """

    def __init__(self, status_code: int, body: dict[str, Any] | None = None, message: str | None = None) -> None:
        self.status_code = status_code
        self.body = body or {}
        super().__init__(message or self._default_message())

    @property
    def errors(self) -> list[dict[str, Any]]:
        return list(self.body.get("errors") or [])

    @property
    def first_error(self) -> dict[str, Any]:
        errors = self.errors
        return errors[0] if errors else {}

    def _default_message(self) -> str:
        detail = self.first_error.get("detail")
        if detail:
            return f"Square API error {self.status_code}: {detail}"
        return f"Square API error {self.status_code}"
