"""Unit tests for trigger, social, logic and utility steps."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from mohtawa.executors import logic
from mohtawa.executors.base import StepContext
from mohtawa.executors.basic import run_social, run_trigger
from mohtawa.executors.logic import evaluate_condition, execute_delay, run_logic
from mohtawa.executors.utility import execute_http_request, run_utility


def _ctx(category: str, step_type: str, config=None, input_data=None, transport=None) -> StepContext:
    return StepContext(
        app=SimpleNamespace(http_transport=transport),  # type: ignore[arg-type]
        step_id="s1",
        step_type=step_type,
        category=category,
        config=config or {},
        input_data=input_data or {},
        user_id="user-1",
    )


# ---------------------------------------------------------------- if-else


@pytest.mark.parametrize(
    ("operator", "value", "compare", "expected"),
    [
        ("equals", "draft", "draft", True),
        ("equals", True, "true", True),
        ("not_equals", "a", "b", True),
        ("contains", "hello world", "world", True),
        ("greater_than", "12", 10, True),
        ("less_than", 3, "2", False),
        ("greater_than", "abc", 1, False),
        ("exists", 0, None, True),
        ("is_empty", "   ", None, True),
        ("is_truthy", 0, None, False),
    ],
)
def test_field_check_operators(operator, value, compare, expected):
    result = evaluate_condition(
        {"conditionType": "field_check", "field": "status", "operator": operator, "compareValue": compare},
        {"output": {"status": value}},
    )

    assert result["result"] is expected
    assert result["branch"] == ("true" if expected else "false")


def test_field_check_falls_back_to_top_level_input():
    result = evaluate_condition(
        {"conditionType": "field_check", "field": "count", "operator": "greater_than", "compareValue": 1},
        {"count": 5},
    )

    assert result["result"] is True


def test_missing_field_does_not_exist():
    result = evaluate_condition(
        {"conditionType": "field_check", "field": "nope", "operator": "exists"},
        {"output": {"status": "x"}},
    )

    assert result["result"] is False
    assert result["condition"] == "nope exists None"


def test_missing_field_equals_none_text():
    result = evaluate_condition(
        {"conditionType": "field_check", "field": "nope", "operator": "equals", "compareValue": None},
        {},
    )

    assert result["result"] is True


def test_expression_condition_depends_on_input_presence():
    assert evaluate_condition({"condition": "x > 1"}, {"output": {}})["result"] is True
    assert evaluate_condition({"condition": "false"}, {"output": {}})["result"] is False
    assert evaluate_condition({"condition": "x > 1"}, {})["result"] is False
    assert evaluate_condition({}, {})["branch"] == "false"


def test_evaluated_input_is_echoed():
    data = {"output": {"a": 1}}

    assert evaluate_condition({}, data)["evaluatedInput"] == data


# ------------------------------------------------------------------ delay


@pytest.mark.parametrize(
    ("duration", "expected"),
    [(None, 5.0), (2, 2.0), ("1.5", 1.5), (10_000, 300.0), (-3, 5.0), ("soon", 5.0)],
)
async def test_delay_duration_is_clamped(monkeypatch, duration, expected):
    sleep = AsyncMock()
    monkeypatch.setattr(logic, "asyncio", SimpleNamespace(sleep=sleep))

    out = await execute_delay({"duration": duration})

    sleep.assert_awaited_once_with(expected)
    assert out["delayed"] is True
    assert out["durationSeconds"] == expected
    assert out["startedAt"] <= out["completedAt"]


async def test_run_logic_variants():
    loop = await run_logic(_ctx("logic", "loop", input_data={"output": [1]}))
    merge = await run_logic(_ctx("logic", "merge", input_data={"a": {"x": 1}, "b": {"y": 2}}))
    other = await run_logic(_ctx("logic", "switch"))

    assert loop.output == {"iterations": 1, "completed": True, "items": {"output": [1]}}
    assert merge.output == {"merged": True, "a": {"x": 1}, "b": {"y": 2}}
    assert other.output == {"result": "logic processed"}


async def test_run_logic_if_else():
    result = await run_logic(
        _ctx(
            "logic",
            "if-else",
            config={"conditionType": "field_check", "field": "ok", "operator": "is_truthy"},
            input_data={"output": {"ok": True}},
        )
    )

    assert not result.is_error
    assert result.output["branch"] == "true"


# ------------------------------------------------------------ trigger/social


async def test_trigger_output():
    result = await run_trigger(_ctx("trigger", "manual-trigger"))

    assert result.output["triggered"] is True
    assert result.output["type"] == "manual-trigger"
    assert result.output["timestamp"]


async def test_social_publish_is_simulated():
    result = await run_social(_ctx("social", "tiktok-publisher"))

    assert result.output["published"] is False
    assert result.output["platform"] == "tiktok"
    assert result.output["simulatedPostId"].startswith("post_")


# ----------------------------------------------------------------- utility


async def test_set_variable_uses_value_or_input():
    with_value = await run_utility(_ctx("utility", "set-variable", config={"variableName": "n", "value": 3}))
    with_input = await run_utility(_ctx("utility", "set-variable", input_data={"output": {"a": 1}}))

    assert with_value.output == {"n": 3}
    assert with_input.output == {"var": {"output": {"a": 1}}}


async def test_notification_defaults_to_email():
    result = await run_utility(_ctx("utility", "notification", config={"message": "done"}))

    assert result.output["sent"] is True
    assert result.output["channel"] == "email"
    assert result.output["message"] == "done"


async def test_logger_echoes_input():
    result = await run_utility(
        _ctx("utility", "logger", config={"label": "dbg"}, input_data={"output": {"a": 1}})
    )

    assert result.output == {
        "logged": True,
        "label": "dbg",
        "level": "info",
        "data": {"output": {"a": 1}},
    }


async def test_unknown_utility_passes_input_through():
    result = await run_utility(_ctx("utility", "mystery", input_data={"x": 1}))

    assert result.output == {"result": {"x": 1}}


async def test_http_request_requires_url():
    result = await execute_http_request({})

    assert result.error == "No URL provided for HTTP Request node."


async def test_http_request_json_response():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": 9})

    result = await run_utility(
        _ctx(
            "utility",
            "http-request",
            config={"url": "https://api.example.com/items", "method": "post", "body": {"a": 1}},
            transport=httpx.MockTransport(handler),
        )
    )

    assert not result.is_error
    assert result.output["statusCode"] == 201
    assert result.output["statusText"] == "Created"
    assert result.output["body"] == {"id": 9}
    assert result.output["method"] == "POST"
    assert seen[0].content == b'{"a": 1}'
    assert seen[0].headers["content-type"] == "application/json"


async def test_http_request_get_sends_no_body_and_truncates_text():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="x" * 6000, headers={"content-type": "text/plain"})

    result = await execute_http_request(
        {"url": "https://example.com/page", "body": {"ignored": True}},
        transport=httpx.MockTransport(handler),
    )

    assert seen[0].content == b""
    assert len(result.output["body"]) == 5000


async def test_http_request_timeout_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    result = await execute_http_request(
        {"url": "https://example.com/slow", "timeout": 250},
        transport=httpx.MockTransport(handler),
    )

    assert result.error == "HTTP Request timed out after 250ms"


async def test_http_request_connection_error_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    result = await execute_http_request(
        {"url": "https://example.com/down"}, transport=httpx.MockTransport(handler)
    )

    assert result.error is not None
    assert result.error.startswith("HTTP Request failed:")
