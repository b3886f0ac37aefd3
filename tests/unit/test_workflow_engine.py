"""Tests for the step scheduler: ordering, failure, review pauses and reruns."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

import httpx
import pytest
from sqlalchemy import func, select

from mohtawa.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkflowError,
)
from mohtawa.storage.models import Job, JobStatus, ProjectStatus, ReviewStatus, Run
from mohtawa.storage.repositories import (
    JobRepository,
    ReviewSessionRepository,
    RunRepository,
    VideoProjectRepository,
)
from mohtawa.workers.job_types import JOB_RUN_EXECUTE
from mohtawa.workers.worker import run_worker
from mohtawa.workflows.engine import ExecutionEngine, RunHandle, collect_inputs
from mohtawa.workflows.graph import CyclicGraphError, WorkflowGraph

USER = "user-1"
CLIPS = ["https://cdn.example.com/a.mp4", "https://cdn.example.com/b.mp4"]
VOICEOVER = "https://cdn.example.com/vo.mp3"


def step(step_id: str, category: str, step_type: str, **config: Any) -> dict:
    return {"id": step_id, "category": category, "type": step_type, "config": config}


def chain(*steps: dict) -> dict:
    edges = [
        {"source": a["id"], "target": b["id"]} for a, b in zip(steps, steps[1:])
    ]
    return {"steps": list(steps), "edges": edges}


def statuses(snapshot) -> dict[str, str]:
    return {s["stepId"]: s["status"] for s in snapshot.steps}


def video_graph(gate_mode: str = "auto_approve", **gate_config: Any) -> dict:
    return chain(
        step("clips", "utility", "set-variable", variableName="clips", value=CLIPS),
        step("edit", "video", "video.auto_edit", voiceoverUrl=VOICEOVER, seed=42),
        step("gate", "review", "review.approval_gate", mode=gate_mode, **gate_config),
        step("final", "video", "video.render_final"),
    )


@pytest.fixture
def engine(app_context):
    return ExecutionEngine(app_context)


async def run_to_end(engine: ExecutionEngine, graph: dict, user_id: str = USER):
    handle = await engine.execute(graph, user_id=user_id, workflow_id="wf-1")
    await handle.wait()
    return handle, await engine.poll(handle.run_id)


# ---------------------------------------------------------------- ordering


async def test_linear_run_completes_in_order(engine):
    graph = chain(
        step("t", "trigger", "manual-trigger"),
        step("v", "utility", "set-variable", variableName="greeting", value="hi"),
        step("m", "logic", "merge"),
    )

    _, snap = await run_to_end(engine, graph)

    assert snap.status == "completed"
    assert [s["stepId"] for s in snap.steps] == ["t", "v", "m"]
    assert set(statuses(snap).values()) == {"success"}
    merge = snap.steps[2]
    assert merge["input"] == {"output": {"greeting": "hi"}}
    assert merge["output"] == {"merged": True, "output": {"greeting": "hi"}}
    assert all(s["durationMs"] is not None and s["completedAt"] for s in snap.steps)


async def test_steps_follow_edges_not_declaration(engine):
    graph = {
        "steps": [
            step("last", "logic", "merge"),
            step("first", "trigger", "manual-trigger"),
        ],
        "edges": [{"source": "first", "target": "last"}],
    }

    _, snap = await run_to_end(engine, graph)

    assert [s["stepId"] for s in snap.steps] == ["first", "last"]


async def test_inputs_keyed_by_source_handle(engine):
    graph = {
        "steps": [
            step("cond", "logic", "if-else", condition="x"),
            step("t", "trigger", "manual-trigger"),
            step("m", "logic", "merge"),
        ],
        "edges": [
            {"source": "t", "target": "cond"},
            {"source": "cond", "target": "m", "sourceHandle": "true"},
        ],
    }

    _, snap = await run_to_end(engine, graph)

    merge = snap.steps[2]
    assert set(merge["input"]) == {"true"}
    assert merge["input"]["true"]["branch"] == "true"


async def test_disabled_steps_are_not_logged(engine):
    graph = chain(
        step("t", "trigger", "manual-trigger"),
        {**step("skip", "utility", "http-request"), "disabled": True},
        step("m", "logic", "merge"),
    )

    _, snap = await run_to_end(engine, graph)

    assert snap.status == "completed"
    assert [s["stepId"] for s in snap.steps] == ["t", "m"]


def test_collect_inputs_skips_missing_upstreams():
    graph = WorkflowGraph.from_dict(
        chain(step("a", "trigger", "manual-trigger"), step("b", "logic", "merge"))
    )

    assert collect_inputs(graph, "b", {}) == {}
    assert collect_inputs(graph, "b", {"a": {"x": 1}}) == {"output": {"x": 1}}


# ----------------------------------------------------------------- failure


async def test_failed_step_halts_run(engine):
    graph = chain(
        step("t", "trigger", "manual-trigger"),
        step("h", "utility", "http-request"),
        step("after", "logic", "merge"),
    )

    _, snap = await run_to_end(engine, graph)

    assert snap.status == "failed"
    assert snap.error == "No URL provided for HTTP Request node."
    assert statuses(snap) == {"t": "success", "h": "error", "after": "idle"}
    assert snap.steps[1]["error"] == "No URL provided for HTTP Request node."
    assert snap.is_terminal


async def test_unknown_category_fails_run(engine):
    _, snap = await run_to_end(engine, chain(step("x", "quantum", "entangle")))

    assert snap.status == "failed"
    assert "Unknown step category" in (snap.error or "")


async def test_cyclic_graph_is_rejected_before_run_exists(engine, app_context):
    graph = {
        "steps": [step("a", "logic", "merge"), step("b", "logic", "merge")],
        "edges": [{"source": "a", "target": "b"}, {"source": "b", "target": "a"}],
    }

    with pytest.raises(CyclicGraphError) as exc_info:
        await engine.execute(graph, user_id=USER, workflow_id="wf")

    assert exc_info.value.step_ids == ["a", "b"]
    async with app_context.session_factory() as session:
        count = (await session.execute(select(func.count()).select_from(Run))).scalar_one()
    assert count == 0


async def test_graph_without_enabled_steps_is_rejected(engine):
    graph = {"steps": [{**step("a", "logic", "merge"), "disabled": True}], "edges": []}

    with pytest.raises(WorkflowError, match="no steps"):
        await engine.execute(graph, user_id=USER, workflow_id="wf")


async def test_poll_checks_ownership(engine):
    handle, _ = await run_to_end(engine, chain(step("t", "trigger", "manual-trigger")))

    assert (await engine.poll(handle.run_id, user_id=USER)).status == "completed"
    with pytest.raises(PermissionDeniedError):
        await engine.poll(handle.run_id, user_id="someone-else")
    with pytest.raises(NotFoundError):
        await engine.poll(uuid4())


async def test_run_from_skips_runs_that_are_not_running(engine, app_context):
    handle, snap = await run_to_end(engine, chain(step("t", "trigger", "manual-trigger")))

    await engine.run_from(handle.run_id, 0)

    assert (await engine.poll(handle.run_id)).steps == snap.steps


# ------------------------------------------------------------ video + review


async def test_auto_edit_gate_and_final_render(engine, app_context, fake_encoder):
    _, snap = await run_to_end(engine, video_graph())

    assert snap.status == "completed", snap.error
    edit, gate, final = snap.steps[1]["output"], snap.steps[2]["output"], snap.steps[3]["output"]
    assert edit["voiceoverDurationSec"] == fake_encoder.duration
    assert edit["edlUrl"].startswith("local://video-assets/user-1/")
    assert gate["approvedEdlUrl"] == edit["edlUrl"]
    assert final["projectId"] == edit["projectId"]
    assert final["finalVideoUrl"].endswith("_final.mp4")

    async with app_context.session_factory() as session:
        project = await VideoProjectRepository(session).get_async(UUID(edit["projectId"]))
    assert project is not None
    assert project.status == ProjectStatus.FINAL.value
    assert project.final_video_url == final["finalVideoUrl"]
    assert project.draft_video_url == edit["draftVideoUrl"]


async def test_manual_gate_pauses_then_approve_resumes(engine, app_context):
    handle, snap = await run_to_end(engine, video_graph("manual_review"))

    assert snap.status == "waiting_review"
    assert statuses(snap) == {
        "clips": "success",
        "edit": "success",
        "gate": "waiting_review",
        "final": "idle",
    }
    gate_log = snap.steps[2]
    assert gate_log["reviewSessionId"] == gate_log["output"]["reviewSessionId"]

    resumed = await engine.resolve_review(handle.run_id, "gate", "approve", user_id=USER)
    await resumed.wait()
    snap = await engine.poll(handle.run_id)

    assert snap.status == "completed", snap.error
    assert snap.steps[2]["status"] == "success"
    assert snap.steps[2]["output"]["approvedEdlUrl"] == snap.steps[1]["output"]["edlUrl"]
    assert snap.steps[3]["output"]["finalVideoUrl"]
    async with app_context.session_factory() as session:
        review = await ReviewSessionRepository(session).get_by_step_async(handle.run_id, "gate")
    assert review is not None
    assert review.status == ReviewStatus.RESOLVED.value
    assert review.action == "approve"


async def test_edit_action_stores_new_edl_and_repoints_project(engine, app_context):
    handle, snap = await run_to_end(engine, video_graph("manual_review"))
    project_id = snap.steps[1]["output"]["projectId"]
    edited = {
        "timeline": [{"clipUrl": CLIPS[1], "inSec": 0, "outSec": 3, "startSec": 0}],
        "audio": {"voiceoverUrl": VOICEOVER},
        "output": {"width": 1080, "height": 1920, "fps": 30},
    }

    resumed = await engine.resolve_review(handle.run_id, "gate", "edit", edited, user_id=USER)
    await resumed.wait()
    snap = await engine.poll(handle.run_id)

    approved = snap.steps[2]["output"]["approvedEdlUrl"]
    assert snap.status == "completed", snap.error
    assert approved != snap.steps[1]["output"]["edlUrl"]
    assert "_edl_approved.json" in approved
    async with app_context.session_factory() as session:
        project = await VideoProjectRepository(session).get_async(UUID(project_id))
    assert project is not None and project.edl_url == approved


async def test_edit_action_rejects_invalid_edl(engine):
    handle, _ = await run_to_end(engine, video_graph("manual_review"))

    with pytest.raises(ValidationError):
        await engine.resolve_review(handle.run_id, "gate", "edit", {"timeline": []}, user_id=USER)

    assert (await engine.poll(handle.run_id)).status == "waiting_review"


async def test_resolve_review_preconditions(engine):
    handle, _ = await run_to_end(engine, chain(step("t", "trigger", "manual-trigger")))

    with pytest.raises(ValidationError, match="Unknown review action"):
        await engine.resolve_review(handle.run_id, "t", "reject")
    with pytest.raises(ConflictError, match="not waiting for review"):
        await engine.resolve_review(handle.run_id, "t", "approve")
    with pytest.raises(NotFoundError):
        await engine.resolve_review(uuid4(), "t", "approve")


async def test_resolve_review_twice_is_rejected(engine):
    handle, _ = await run_to_end(engine, video_graph("manual_review"))
    resumed = await engine.resolve_review(handle.run_id, "gate", "approve")
    await resumed.wait()

    with pytest.raises(ConflictError):
        await engine.resolve_review(handle.run_id, "gate", "approve")


async def test_concurrent_approvals_resume_the_run_once(engine, fake_encoder):
    single, _ = await run_to_end(engine, video_graph("manual_review"))
    before = len(fake_encoder.calls)
    resumed = await engine.resolve_review(single.run_id, "gate", "approve")
    await resumed.wait()
    renders_per_resume = len(fake_encoder.calls) - before

    handle, _ = await run_to_end(engine, video_graph("manual_review"))
    before = len(fake_encoder.calls)
    results = await asyncio.gather(
        engine.resolve_review(handle.run_id, "gate", "approve"),
        engine.resolve_review(handle.run_id, "gate", "approve"),
        return_exceptions=True,
    )

    handles = [r for r in results if isinstance(r, RunHandle)]
    errors = [r for r in results if isinstance(r, BaseException)]
    assert len(handles) == 1
    assert len(errors) == 1 and isinstance(errors[0], ConflictError)
    await handles[0].wait()
    snap = await engine.poll(handle.run_id)
    assert snap.status == "completed", snap.error
    assert len(fake_encoder.calls) - before == renders_per_resume


async def test_resolve_review_unknown_step(engine):
    handle, _ = await run_to_end(engine, video_graph("manual_review"))

    with pytest.raises(NotFoundError, match="Review session not found"):
        await engine.resolve_review(handle.run_id, "edit", "approve")


async def test_resolve_review_checks_owner(engine):
    handle, _ = await run_to_end(engine, video_graph("manual_review"))

    with pytest.raises(PermissionDeniedError):
        await engine.resolve_review(handle.run_id, "gate", "approve", user_id="intruder")


async def test_expired_reviews_are_auto_approved(engine):
    handle, snap = await run_to_end(
        engine, video_graph("manual_with_timeout", autoApproveAfterSec=0)
    )
    assert snap.status == "waiting_review"

    assert await engine.expire_reviews(datetime.now(timezone.utc) - timedelta(minutes=5)) == []
    handles = await engine.expire_reviews(datetime.now(timezone.utc) + timedelta(seconds=5))

    assert [h.run_id for h in handles] == [handle.run_id]
    await handles[0].wait()
    assert (await engine.poll(handle.run_id)).status == "completed"


async def test_manual_review_without_timeout_never_expires(engine):
    await run_to_end(engine, video_graph("manual_review"))

    assert await engine.expire_reviews(datetime.now(timezone.utc) + timedelta(days=365)) == []


# ------------------------------------------------------------------- rerun


def _flaky_transport() -> httpx.MockTransport:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"ok": True})

    return httpx.MockTransport(handler)


async def test_rerun_from_failed_keeps_earlier_outputs(engine, app_context):
    app_context.http_transport = _flaky_transport()
    graph = chain(
        step("t", "trigger", "manual-trigger"),
        step("v", "utility", "set-variable", variableName="n", value=1),
        step("h", "utility", "http-request", url="https://hooks.example.com/ping"),
        step("l", "utility", "logger", label="done"),
    )
    first, snap = await run_to_end(engine, graph)
    assert snap.status == "failed"
    assert snap.error is not None and snap.error.startswith("HTTP Request failed")

    rerun = await engine.rerun_from_failed(first.run_id, user_id=USER)
    await rerun.wait()
    new = await engine.poll(rerun.run_id)

    assert rerun.run_id != first.run_id
    assert new.status == "completed", new.error
    assert new.steps[:2] == snap.steps[:2]
    assert new.steps[2]["output"]["body"] == {"ok": True}
    assert new.steps[3]["input"]["output"]["statusCode"] == 200
    assert (await engine.poll(first.run_id)).status == "failed"
    async with app_context.session_factory() as session:
        row = await RunRepository(session).get_async(rerun.run_id)
    assert row is not None and row.source_run_id == first.run_id


async def test_rerun_requires_failed_run(engine):
    handle, _ = await run_to_end(engine, chain(step("t", "trigger", "manual-trigger")))

    with pytest.raises(ConflictError):
        await engine.rerun_from_failed(handle.run_id)


async def test_rerun_checks_owner(engine):
    handle, _ = await run_to_end(engine, chain(step("h", "utility", "http-request")))

    with pytest.raises(PermissionDeniedError):
        await engine.rerun_from_failed(handle.run_id, user_id="intruder")


async def test_rerun_without_error_step_is_rejected(engine, app_context):
    async with app_context.session_factory() as session:
        run = await RunRepository(session).create_async(
            workflow_id="wf", graph={"steps": [], "edges": []}, steps=[], user_id=USER
        )
        await RunRepository(session).update_async(run.id, status="failed")
        await session.commit()
        run_id = run.id

    with pytest.raises(ValidationError, match="No failed step"):
        await engine.rerun_from_failed(run_id)


# ------------------------------------------------------------- single step


async def test_execute_single_step_uses_prior_outputs(engine, app_context):
    graph = chain(
        step("t", "trigger", "manual-trigger"),
        step("v", "utility", "set-variable", variableName="topic", value="cats"),
        step("l", "utility", "logger"),
    )
    prior, _ = await run_to_end(engine, graph)
    async with app_context.session_factory() as session:
        before = (await session.execute(select(func.count()).select_from(Run))).scalar_one()

    log = await engine.execute_single_step(graph, "l", USER, prior_run_id=prior.run_id)

    assert log.status == "success"
    assert log.input == {"output": {"topic": "cats"}}
    assert log.output is not None and log.output["data"] == {"output": {"topic": "cats"}}
    async with app_context.session_factory() as session:
        after = (await session.execute(select(func.count()).select_from(Run))).scalar_one()
    assert after == before


async def test_execute_single_step_ignores_other_users_runs(engine):
    graph = chain(
        step("v", "utility", "set-variable", variableName="k", value="secret"),
        step("l", "utility", "logger"),
    )
    prior, _ = await run_to_end(engine, graph, user_id="owner")

    log = await engine.execute_single_step(graph, "l", "intruder", prior_run_id=prior.run_id)

    assert log.input == {}


async def test_execute_single_step_reports_errors(engine):
    graph = chain(step("h", "utility", "http-request"))

    log = await engine.execute_single_step(graph, "h", USER)

    assert log.status == "error"
    assert log.error == "No URL provided for HTTP Request node."


async def test_execute_single_step_validation(engine):
    graph = {"steps": [{**step("d", "logic", "merge"), "disabled": True}], "edges": []}

    with pytest.raises(NotFoundError):
        await engine.execute_single_step(graph, "missing", USER)
    with pytest.raises(ValidationError, match="disabled"):
        await engine.execute_single_step(graph, "d", USER)


# ---------------------------------------------------------- durable dispatch


async def test_db_dispatch_enqueues_and_worker_completes(db_context):
    engine = ExecutionEngine(db_context)
    graph = chain(step("t", "trigger", "manual-trigger"), step("m", "logic", "merge"))

    handle = await engine.execute(graph, user_id=USER, workflow_id="wf")

    assert handle.task is None and handle.job_id is not None
    snap = await engine.poll(handle.run_id)
    assert snap.status == "running"
    assert set(statuses(snap).values()) == {"idle"}

    await run_worker(db_context, queue="execution", once=True)

    assert (await engine.poll(handle.run_id)).status == "completed"
    async with db_context.session_factory() as session:
        job = await JobRepository(session).get_async(handle.job_id)
    assert job is not None
    assert job.job_type == JOB_RUN_EXECUTE
    assert job.status == JobStatus.SUCCEEDED.value
    assert job.result == {"run_id": str(handle.run_id), "start_index": 0}


async def test_db_dispatch_review_resume_enqueues_next_index(db_context):
    engine = ExecutionEngine(db_context)
    handle = await engine.execute(video_graph("manual_review"), user_id=USER, workflow_id="wf")
    await run_worker(db_context, queue="execution", once=True)
    assert (await engine.poll(handle.run_id)).status == "waiting_review"

    resumed = await engine.resolve_review(handle.run_id, "gate", "approve")

    assert resumed.job_id is not None
    async with db_context.session_factory() as session:
        job = await session.get(Job, resumed.job_id)
    assert job is not None and job.payload == {"run_id": str(handle.run_id), "start_index": 3}

    await run_worker(db_context, queue="execution", once=True)
    assert (await engine.poll(handle.run_id)).status == "completed"
