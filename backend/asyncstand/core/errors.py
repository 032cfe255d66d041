from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status

VALIDATION_ERROR = "VALIDATION_ERROR"
NOT_FOUND = "NOT_FOUND"
CONFLICT = "CONFLICT"
FORBIDDEN = "FORBIDDEN"
PLAN_LIMIT_EXCEEDED = "PLAN_LIMIT_EXCEEDED"
STANDUP_CLOSED = "STANDUP_CLOSED"
NOT_PARTICIPATING = "NOT_PARTICIPATING"
INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
INVALID_SIGNATURE = "INVALID_SIGNATURE"
INVALID_TOKEN = "INVALID_TOKEN"


def api_error(status_code: int, code: str, message: str, **extra: Any) -> HTTPException:
    """
    Build an HTTPException with the structured detail used across the API:
    {"error": CODE, "message": "...", ...extra}
    """
    detail: dict[str, Any] = {"error": code, "message": message}
    detail.update(extra)
    return HTTPException(status_code=status_code, detail=detail)


def not_found(what: str) -> HTTPException:
    return api_error(status.HTTP_404_NOT_FOUND, NOT_FOUND, f"{what} not found")


def validation_error(message: str, **extra: Any) -> HTTPException:
    return api_error(status.HTTP_400_BAD_REQUEST, VALIDATION_ERROR, message, **extra)


def conflict(message: str, **extra: Any) -> HTTPException:
    return api_error(status.HTTP_409_CONFLICT, CONFLICT, message, **extra)


def forbidden(message: str, **extra: Any) -> HTTPException:
    return api_error(status.HTTP_403_FORBIDDEN, FORBIDDEN, message, **extra)
