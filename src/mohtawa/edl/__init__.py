"""Edit Decision List model."""

from mohtawa.edl.schema import (
    EDL,
    EDLAudio,
    EDLColor,
    EDLOutput,
    EDLParseResult,
    EDLValidationError,
    TextOverlay,
    TimelineClip,
    dump_edl,
    edl_to_json,
    parse_edl_safe,
    validate_edl,
)

__all__ = [
    "EDL",
    "EDLAudio",
    "EDLColor",
    "EDLOutput",
    "EDLParseResult",
    "EDLValidationError",
    "TextOverlay",
    "TimelineClip",
    "dump_edl",
    "edl_to_json",
    "parse_edl_safe",
    "validate_edl",
]
