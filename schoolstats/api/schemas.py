"""
Response envelope shared by every endpoint: {"success": bool, "data": ..., "error": ...}.
"""
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    error: Optional[str] = None


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data, "error": None}


def fail(error: str) -> dict:
    return {"success": False, "data": None, "error": error}
