"""Burned-in caption track (ASS) built from EDL text overlays."""

from __future__ import annotations

import math

from mohtawa.edl.schema import EDL, OverlayPosition

STYLE_FORMAT = (
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
    "BackColour, Bold, Italic, BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, "
    "MarginV, Encoding"
)
STYLES = (
    "Style: BoldWhiteShadow,Arial,28,&H00FFFFFF,&H000000FF,&H80000000,&H80000000,1,0,1,2,2,2,20,20,30,1",
    "Style: YellowCaption,Arial,32,&H0000FFFF,&H000000FF,&H80000000,&H80000000,0,0,1,1,1,2,20,20,30,1",
    "Style: MinimalLower,Arial,20,&H00E0E0E0,&H000000FF,&H80000000,&H80000000,0,0,1,1,0,2,20,20,20,1",
)
EVENT_FORMAT = "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text"

STYLE_PRESETS = {
    "bold_white_shadow": "BoldWhiteShadow",
    "yellow_caption": "YellowCaption",
    "minimal_lower": "MinimalLower",
}
DEFAULT_STYLE = "BoldWhiteShadow"

# ASS numpad alignment codes.
ALIGNMENT: dict[str, int] = {"top": 8, "center": 5, "bottom": 2}


def sec_to_ass_time(sec: float) -> str:
    """Format seconds as ``H:MM:SS.cc``."""
    total_cs = max(0, int(math.floor(sec * 100 + 1e-6)))
    hours, rem = divmod(total_cs, 360000)
    minutes, rem = divmod(rem, 6000)
    seconds, centis = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{seconds:02d}.{centis:02d}"


def escape_ass_text(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace("{", "\\{")
        .replace("}", "\\}")
        .replace("\r\n", "\\N")
        .replace("\n", "\\N")
    )


def position_to_alignment(position: OverlayPosition | str | None) -> int:
    return ALIGNMENT.get(position or "bottom", 2)


def build_ass_subtitles(edl: EDL) -> str:
    """Return the ASS document for ``edl.overlays``; empty string when there are none."""
    overlays = [o for o in edl.overlays if o.type == "text"]
    if not overlays:
        return ""

    lines = [
        "[Script Info]",
        "ScriptType: v4.00+",
        f"PlayResX: {edl.output.width}",
        f"PlayResY: {edl.output.height}",
        "",
        "[V4+ Styles]",
        STYLE_FORMAT,
        *STYLES,
        "",
        "[Events]",
        EVENT_FORMAT,
    ]
    for overlay in overlays:
        style = STYLE_PRESETS.get(overlay.style_preset or "bold_white_shadow", DEFAULT_STYLE)
        align = position_to_alignment(overlay.position)
        lines.append(
            f"Dialogue: 0,{sec_to_ass_time(overlay.start_sec)},{sec_to_ass_time(overlay.end_sec)},"
            f"{style},,0,0,0,,{{\\an{align}}}{escape_ass_text(overlay.text)}"
        )
    return "\n".join(lines)
