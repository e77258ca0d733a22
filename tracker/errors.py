"""Request validation errors raised by the issue search before any query runs."""
from __future__ import annotations

from typing import Any


class SearchError(Exception):
    """Base class for rejected search requests.

    ``code`` is the stable numeric identifier clients switch on, ``status_code`` the
    HTTP status the API answers with.
    """

    code: int = 5000
    status_code: int = 400
    message: str = "invalid search request"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "error": self.message}


class LimitTooHigh(SearchError):
    code = 5002
    message = "limit must be less than 100"


class UnsupportedSortParam(SearchError):
    code = 5003

    def __init__(self, param: str) -> None:
        super().__init__(f"unsupported sort parameter {param}")
        self.param = param


class UnsupportedGroup(SearchError):
    code = 4023
    message = "unsupported grouping param"
