"""Response envelope shared by every router."""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """``{success, message, data}`` wrapper for successful responses."""

    success: bool = True
    message: str = "OK"
    data: T | None = None


class ErrorEnvelope(BaseModel):
    success: bool = False
    message: str
    errors: list[Any] = []


def ok(data: object = None, message: str = "OK") -> dict[str, Any]:
    """Build a success envelope as a plain dict."""
    return {"success": True, "message": message, "data": data}


def fail(message: str, errors: list[Any] | None = None, data: object = None) -> dict[str, Any]:
    """Build a failure envelope. ``data`` is included only when given."""
    body: dict[str, Any] = {"success": False, "message": message, "errors": errors or []}
    if data is not None:
        body["data"] = data
    return body
