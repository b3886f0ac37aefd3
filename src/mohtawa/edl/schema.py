"""Edit Decision List (EDL) model and validation.

The EDL is the only document exchanged between planning (``video.auto_edit``),
review and rendering. It is stored as camelCase JSON and re-validated every
time it is read back, before it is written and before each render.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from mohtawa.errors import ValidationError

__all__ = [
    "EDL",
    "EDLAudio",
    "EDLColor",
    "EDLOutput",
    "EDLParseResult",
    "EDLValidationError",
    "OverlayPosition",
    "TextOverlay",
    "TimelineClip",
    "dump_edl",
    "edl_to_json",
    "parse_edl_safe",
    "validate_edl",
]

OverlayPosition = Literal["top", "center", "bottom"]

# Float sums of clip durations drift; contiguity is checked to the millisecond.
_CONTIGUITY_TOLERANCE = 1e-3


class EDLValidationError(ValidationError):
    """Raised when a document does not satisfy the EDL schema."""

    error = "invalid_edl"

    def __init__(self, issues: list[str]):
        self.issues = issues
        super().__init__("; ".join(issues) or "invalid EDL")


class _EDLModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TimelineClip(_EDLModel):
    id: Optional[str] = None
    clip_url: str = Field(
        min_length=1,
        validation_alias=AliasChoices("clipUrl", "sourceUrl", "clip_url"),
        serialization_alias="clipUrl",
    )
    in_sec: float = Field(ge=0)
    out_sec: float = Field(ge=0)
    start_sec: float = Field(ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "TimelineClip":
        if self.out_sec <= self.in_sec:
            raise ValueError("outSec must be greater than inSec")
        return self

    @property
    def duration(self) -> float:
        return self.out_sec - self.in_sec


class TextOverlay(_EDLModel):
    id: Optional[str] = None
    type: Literal["text"] = "text"
    text: str
    start_sec: float = Field(ge=0)
    end_sec: float = Field(ge=0)
    position: OverlayPosition = "bottom"
    style: Optional[str] = None
    style_preset: Optional[str] = None

    @model_validator(mode="after")
    def _check_window(self) -> "TextOverlay":
        if self.end_sec <= self.start_sec:
            raise ValueError("endSec must be greater than startSec")
        return self


class EDLAudio(_EDLModel):
    voiceover_url: str = Field(min_length=1)
    music_url: Optional[str] = None
    voice_gain_db: Optional[float] = None
    music_gain_db: Optional[float] = None
    music_enabled: Optional[bool] = None
    music_volume: Optional[float] = Field(default=None, ge=0, le=1)
    voice_volume: Optional[float] = Field(default=None, ge=0, le=1)


class EDLColor(_EDLModel):
    saturation: float = Field(default=1.0, ge=0)
    contrast: float = Field(default=1.0, ge=0)
    vibrance: float = Field(default=1.0, ge=0)

    @property
    def is_neutral(self) -> bool:
        return self.saturation == 1 and self.contrast == 1 and self.vibrance == 1


class EDLOutput(_EDLModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    fps: float = Field(default=30, gt=0)


class EDL(_EDLModel):
    version: Literal[1] = 1
    timeline: list[TimelineClip]
    overlays: list[TextOverlay] = Field(default_factory=list)
    audio: EDLAudio
    color: Optional[EDLColor] = None
    output: EDLOutput

    @model_validator(mode="after")
    def _check_contiguous(self) -> "EDL":
        expected = 0.0
        for index, clip in enumerate(self.timeline):
            if not math.isclose(clip.start_sec, expected, abs_tol=_CONTIGUITY_TOLERANCE):
                raise ValueError(
                    f"timeline[{index}].startSec must equal the cumulative duration "
                    f"of earlier clips ({expected:g}), got {clip.start_sec:g}"
                )
            expected += clip.duration
        return self

    @property
    def duration(self) -> float:
        return sum(clip.duration for clip in self.timeline)


def _format_issues(exc: PydanticValidationError) -> list[str]:
    issues: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        msg = str(err.get("msg", "invalid"))
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]
        issues.append(f"{loc}: {msg}" if loc else msg)
    return issues


def validate_edl(raw: Any) -> EDL:
    """Validate ``raw`` (mapping, JSON text/bytes or EDL) and return a fresh EDL.

    Raises:
        EDLValidationError: with one ``path: message`` entry per problem.
    """
    if isinstance(raw, EDL):
        raw = dump_edl(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise EDLValidationError([f"EDL is not valid JSON: {exc.msg}"]) from exc
    if not isinstance(raw, dict):
        raise EDLValidationError(["EDL must be a JSON object"])
    try:
        return EDL.model_validate(raw)
    except PydanticValidationError as exc:
        raise EDLValidationError(_format_issues(exc)) from exc


@dataclass(frozen=True)
class EDLParseResult:
    success: bool
    edl: EDL | None = None
    error: str | None = None


def parse_edl_safe(raw: Any) -> EDLParseResult:
    """Non-raising variant of :func:`validate_edl`."""
    try:
        return EDLParseResult(success=True, edl=validate_edl(raw))
    except EDLValidationError as exc:
        return EDLParseResult(success=False, error=str(exc))


def dump_edl(edl: EDL) -> dict[str, Any]:
    """Wire form: camelCase keys, unset optionals omitted."""
    return edl.model_dump(mode="json", by_alias=True, exclude_none=True)


def edl_to_json(edl: EDL) -> bytes:
    return json.dumps(dump_edl(edl), indent=2).encode("utf-8")
