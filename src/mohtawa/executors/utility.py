"""Utility steps: set-variable, http-request, notification, logger."""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping

import httpx

from mohtawa.executors.base import StepContext, StepResult
from mohtawa.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HTTP_TIMEOUT_MS = 30_000
MAX_TEXT_BODY = 5000


async def execute_http_request(
    config: Mapping[str, Any],
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StepResult:
    url = str(config.get("url") or "")
    if not url:
        return StepResult.failed("No URL provided for HTTP Request node.")

    method = str(config.get("method") or "GET").upper()
    try:
        timeout_ms = int(config.get("timeout") or DEFAULT_HTTP_TIMEOUT_MS)
    except (TypeError, ValueError):
        timeout_ms = DEFAULT_HTTP_TIMEOUT_MS
    headers = {"Content-Type": "application/json", **dict(config.get("headers") or {})}

    body = config.get("body")
    content: bytes | None = None
    if body and method not in {"GET", "HEAD"}:
        content = (body if isinstance(body, str) else json.dumps(body)).encode("utf-8")

    try:
        async with httpx.AsyncClient(timeout=timeout_ms / 1000, transport=transport) as client:
            response = await client.request(method, url, headers=headers, content=content)
    except httpx.TimeoutException:
        return StepResult.failed(f"HTTP Request timed out after {timeout_ms}ms")
    except httpx.HTTPError as exc:
        return StepResult.failed(f"HTTP Request failed: {exc}")

    if "json" in response.headers.get("content-type", ""):
        try:
            response_body: Any = response.json()
        except ValueError:
            response_body = response.text[:MAX_TEXT_BODY]
    else:
        response_body = response.text[:MAX_TEXT_BODY]

    return StepResult.ok(
        {
            "statusCode": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "body": response_body,
            "url": url,
            "method": method,
        }
    )


async def run_utility(ctx: StepContext) -> StepResult:
    config = ctx.config
    step_type = ctx.step_type

    if step_type == "set-variable":
        name = str(config.get("variableName") or "var")
        value = config.get("value") or ctx.input_data
        return StepResult.ok({name: value})

    if step_type == "http-request":
        return await execute_http_request(config, transport=ctx.app.http_transport)

    if step_type == "notification":
        return StepResult.ok(
            {
                "sent": True,
                "channel": config.get("channel") or "email",
                "message": config.get("message") or "",
                "note": "Notification delivery requires a channel integration",
            }
        )

    if step_type == "logger":
        entry: Dict[str, Any] = {
            "label": config.get("label"),
            "level": config.get("logLevel") or "info",
            "data": ctx.input_data,
        }
        logger.info("workflow_logger", step_id=ctx.step_id, **entry)
        return StepResult.ok({"logged": True, **entry})

    return StepResult.ok({"result": ctx.input_data})
