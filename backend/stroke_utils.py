"""
Stroke utilities.

Conversion between captured strokes and the recognition service wire format,
request builders for both endpoint variants, export parsing and a few stroke
grouping helpers.
"""

import logging
from typing import Any, Optional, Sequence

from schemas import InputDevice, PointerType, RecognitionResult, RecognitionStatus, Stroke

logger = logging.getLogger(__name__)


MIME_LATEX = "application/x-latex"
MIME_MATHML = "application/mathml+xml"
MIME_JIIX = "application/vnd.myscript.jiix"
MIME_TEXT = "text/plain"

MATH_CONFIGURATION = {
    "lang": "en_US",
    "math": {
        "mimeTypes": [MIME_LATEX, MIME_MATHML, MIME_JIIX],
        "solver": {
            "enable": True,
            "fractional-part-digits": 3,
            "decimal-separator": ".",
            "rounding-mode": "half up",
            "angle-unit": "deg",
        },
        "grammar": "standard",
    },
    "export": {
        "jiix": {"strokes": True, "bounding-box": True},
        "mathml": {"flavor": "standard"},
    },
}


def pointer_type_for_device(device: InputDevice) -> PointerType:
    if device == InputDevice.FINGER:
        return "TOUCH"
    if device == InputDevice.MOUSE:
        return "MOUSE"
    return "PEN"


def convert_stroke(stroke: Stroke, pointer_type: Optional[PointerType] = None) -> dict:
    """Points array -> synchronized x/y/t/p arrays."""
    return {
        "id": stroke.id,
        "x": [round(p.x) for p in stroke.points],
        "y": [round(p.y) for p in stroke.points],
        "t": [p.timestamp_ms for p in stroke.points],
        "p": [p.pressure for p in stroke.points],
        "pointerId": 0,
        "pointerType": pointer_type or pointer_type_for_device(stroke.device),
    }


def _configuration() -> dict:
    # Fresh copy per request so callers can never mutate the shared template
    return {
        "lang": MATH_CONFIGURATION["lang"],
        "math": {
            **MATH_CONFIGURATION["math"],
            "mimeTypes": list(MATH_CONFIGURATION["math"]["mimeTypes"]),
            "solver": dict(MATH_CONFIGURATION["math"]["solver"]),
        },
        "export": {k: dict(v) for k, v in MATH_CONFIGURATION["export"].items()},
    }


def build_batch_request(
    strokes: Sequence[Stroke],
    pointer_type: Optional[PointerType] = None,
    line_threshold: Optional[float] = None
) -> dict:
    """
    Body for /batch: strokes grouped by line.

    Without a line_threshold every stroke goes into a single group. With one,
    strokes are split into lines of handwriting, each line keeping the
    original drawing order.
    """
    if line_threshold is None:
        groups = [list(strokes)]
    else:
        order = {s.id: i for i, s in enumerate(strokes)}
        groups = [
            sorted(line, key=lambda s: order[s.id])
            for line in split_strokes_into_lines(strokes, line_threshold)
        ]

    return {
        "contentType": "Math",
        "configuration": _configuration(),
        "strokeGroups": [
            {"strokes": [convert_stroke(s, pointer_type) for s in group]}
            for group in groups
        ],
    }


def build_recognize_request(
    strokes: Sequence[Stroke],
    pointer_type: Optional[PointerType] = None,
    line_threshold: Optional[float] = None
) -> dict:
    """Body for /recognize: flat strokes array."""
    return {
        "contentType": "Math",
        "configuration": _configuration(),
        "strokes": [convert_stroke(s, pointer_type) for s in strokes],
        "scaleX": 1.0,
        "scaleY": 1.0,
    }


REQUEST_BUILDERS = {
    "batch": build_batch_request,
    "recognize": build_recognize_request,
}


# ============================================================================
# RESPONSE PARSING
# ============================================================================

def _find_export(response: Any, mime_type: str) -> Any:
    if not isinstance(response, dict):
        return None
    exports = response.get("exports")
    if not isinstance(exports, list):
        return None
    for export in exports:
        if isinstance(export, dict) and export.get("mime-type") == mime_type:
            return export.get("data")
    return None


def extract_jiix(response: Any) -> Optional[dict]:
    jiix = _find_export(response, MIME_JIIX)
    if isinstance(jiix, dict):
        return jiix
    if isinstance(response, dict) and (response.get("type") == "Math" or "expressions" in response):
        return response
    return None


def extract_latex_from_jiix(jiix: Optional[dict]) -> Optional[str]:
    if not jiix:
        return None

    if jiix.get("latex-label"):
        return jiix["latex-label"]
    if isinstance(jiix.get("label"), str) and jiix["label"]:
        return jiix["label"]

    labels: list[str] = []

    def collect(node: Any) -> None:
        if not isinstance(node, dict):
            return
        if node.get("label"):
            labels.append(str(node["label"]))
        for operand in node.get("operands") or []:
            collect(operand)

    for expression in jiix.get("expressions") or []:
        collect(expression)

    return "".join(labels) or None


def extract_latex(response: Any) -> Optional[str]:
    # /recognize may answer with a bare value ("8 x" or 8)
    if isinstance(response, (str, int, float)) and not isinstance(response, bool):
        text = str(response).strip()
        return text or None

    latex = _find_export(response, MIME_LATEX)
    if latex:
        return latex

    return extract_latex_from_jiix(extract_jiix(response))


def extract_mathml(response: Any) -> Optional[str]:
    return _find_export(response, MIME_MATHML) or None


def extract_text(response: Any) -> Optional[str]:
    return _find_export(response, MIME_TEXT) or None


def extract_confidence(response: Any) -> Optional[float]:
    if not isinstance(response, dict):
        return None
    confidence = response.get("confidence")
    if isinstance(confidence, dict):
        overall = confidence.get("overall")
        if isinstance(overall, (int, float)) and not isinstance(overall, bool):
            return min(1.0, max(0.0, float(overall)))
    return None


# ============================================================================
# STROKE GROUPING
# ============================================================================

def filter_valid_strokes(strokes: Sequence[Stroke]) -> list[Stroke]:
    return [s for s in strokes if s.is_valid_for_recognition]


def count_total_points(strokes: Sequence[Stroke]) -> int:
    return sum(len(s.points) for s in strokes)


def split_strokes_into_groups(strokes: Sequence[Stroke], max_points_per_group: int = 5000) -> list[list[Stroke]]:
    """Chunk strokes so no request group exceeds max_points_per_group (one stroke may)."""
    groups: list[list[Stroke]] = []
    current: list[Stroke] = []
    current_points = 0

    for stroke in strokes:
        points = len(stroke.points)
        if current and current_points + points > max_points_per_group:
            groups.append(current)
            current, current_points = [stroke], points
        else:
            current.append(stroke)
            current_points += points

    if current:
        groups.append(current)
    return groups


def _average_y(stroke: Stroke) -> float:
    return sum(p.y for p in stroke.points) / len(stroke.points)


def split_strokes_into_lines(strokes: Sequence[Stroke], line_threshold: float = 50) -> list[list[Stroke]]:
    """Group strokes into lines of handwriting by vertical distance."""
    if not strokes:
        return []

    ordered = sorted(strokes, key=_average_y)
    lines: list[list[Stroke]] = []
    current = [ordered[0]]
    line_y = _average_y(ordered[0])

    for stroke in ordered[1:]:
        stroke_y = _average_y(stroke)
        if abs(stroke_y - line_y) > line_threshold:
            lines.append(current)
            current = [stroke]
            line_y = stroke_y
        else:
            current.append(stroke)
            line_y = (line_y * (len(current) - 1) + stroke_y) / len(current)

    lines.append(current)
    return lines


# ============================================================================
# DISPLAY HELPERS
# ============================================================================

def confidence_level(confidence: float) -> str:
    if confidence >= 0.95:
        return "Very High"
    if confidence >= 0.85:
        return "High"
    if confidence >= 0.70:
        return "Medium"
    if confidence >= 0.50:
        return "Low"
    return "Very Low"


def format_recognition_result(result: RecognitionResult) -> str:
    if result.status == RecognitionStatus.ERROR:
        return f"Error: {result.error or 'Unknown error'}"
    if result.status == RecognitionStatus.PROCESSING:
        return "Processing..."
    if result.latex:
        return f"LaTeX: {result.latex}"
    if result.plain_text:
        return f"Text: {result.plain_text}"
    return "No result"
