"""Request and response models for OpenAPI."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Machine-readable error code")
    detail: Optional[str | Dict[str, Any]] = Field(
        None, description="Human-readable or structured error detail"
    )


class HealthResponse(BaseModel):
    status: str
    version: str
    database_ready: Optional[bool] = None
    encoder_available: Optional[bool] = None
    job_dispatcher: Optional[str] = None
    storage_backend: Optional[str] = None


class StartRunRequest(_CamelModel):
    """Start a run of a workflow graph (``steps``/``nodes`` plus ``edges``)."""

    workflow_id: str = Field(..., alias="workflowId", max_length=128)
    graph: Dict[str, Any]


class RunStartedResponse(_CamelModel):
    run_id: str = Field(..., alias="runId")
    status: str
    job_id: Optional[str] = Field(None, alias="jobId")


class RunSnapshotResponse(_CamelModel):
    run_id: str = Field(..., alias="runId")
    status: str
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None


class ReviewRequest(_CamelModel):
    action: Literal["approve", "edit"]
    approved_edl: Optional[Dict[str, Any]] = Field(None, alias="approvedEdl")


class ExecuteStepRequest(_CamelModel):
    graph: Dict[str, Any]
    prior_run_id: Optional[str] = Field(None, alias="priorRunId")


class EdlResponse(_CamelModel):
    project_id: str = Field(..., alias="projectId")
    edl: Dict[str, Any]


class UpdateEdlRequest(BaseModel):
    edl: Dict[str, Any]


class UpdateEdlResponse(_CamelModel):
    project_id: str = Field(..., alias="projectId")
    edl_url: str = Field(..., alias="edlUrl")


class RenderSubmissionResponse(_CamelModel):
    status: Literal["queued", "completed"]
    job_id: Optional[str] = Field(None, alias="jobId")
    draft_video_url: Optional[str] = Field(None, alias="draftVideoUrl")


class RenderStatusResponse(_CamelModel):
    status: Literal["rendering", "done", "failed"]
    progress: float = 0.0
    preview_image_url: Optional[str] = Field(None, alias="previewImageUrl")
    output_video_url: Optional[str] = Field(None, alias="outputVideoUrl")
    error: Optional[str] = None


class ExportPreviewResponse(_CamelModel):
    progress: float = 0.0
    preview_image_url: Optional[str] = Field(None, alias="previewImageUrl")
    status: Optional[str] = None


class ProjectResponse(_CamelModel):
    id: str
    edl_url: str = Field(..., alias="edlUrl")
    draft_video_url: Optional[str] = Field(None, alias="draftVideoUrl")
    status: str
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class PlayUrlResponse(BaseModel):
    url: str
