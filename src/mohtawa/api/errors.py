"""Helpers for consistent API errors."""

from __future__ import annotations

from fastapi import HTTPException

from mohtawa.errors import DomainError


def to_http_exception(err: DomainError) -> HTTPException:
    """Convert DomainError to HTTPException with consistent payload."""
    detail: dict[str, object] = {"error": err.error, "detail": str(err)}
    step_ids = getattr(err, "step_ids", None)
    if step_ids:
        detail["stepIds"] = list(step_ids)
    issues = getattr(err, "issues", None)
    if issues:
        detail["issues"] = list(issues)
    return HTTPException(status_code=err.status_code, detail=detail)
