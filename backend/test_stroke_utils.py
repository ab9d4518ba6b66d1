"""
Tests for stroke conversion, request building and response parsing.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(__file__))

from conftest import make_stroke
from schemas import InputDevice, RecognitionResult, RecognitionStatus, Stroke, StrokePoint
from stroke_utils import (
    MIME_JIIX,
    MIME_LATEX,
    MIME_MATHML,
    build_batch_request,
    build_recognize_request,
    confidence_level,
    convert_stroke,
    count_total_points,
    extract_confidence,
    extract_latex,
    extract_mathml,
    filter_valid_strokes,
    format_recognition_result,
    pointer_type_for_device,
    split_strokes_into_groups,
    split_strokes_into_lines,
)


def test_convert_stroke_produces_parallel_arrays():
    stroke = Stroke(
        id="s1",
        points=(
            StrokePoint(x=10.4, y=20.6, pressure=0.3, timestamp_ms=1000),
            StrokePoint(x=11.5, y=21.2, pressure=0.7, timestamp_ms=1016),
        ),
        device=InputDevice.FINGER,
    )

    converted = convert_stroke(stroke)

    assert converted["x"] == [10, 12]
    assert converted["y"] == [21, 21]
    assert converted["t"] == [1000, 1016]
    assert converted["p"] == [0.3, 0.7]
    assert converted["pointerType"] == "TOUCH"
    assert converted["pointerId"] == 0
    assert convert_stroke(stroke, "PEN")["pointerType"] == "PEN"


def test_pointer_type_mapping():
    assert pointer_type_for_device(InputDevice.STYLUS) == "PEN"
    assert pointer_type_for_device(InputDevice.FINGER) == "TOUCH"
    assert pointer_type_for_device(InputDevice.MOUSE) == "MOUSE"
    assert pointer_type_for_device(InputDevice.UNKNOWN) == "PEN"


def test_batch_request_single_group_by_default():
    strokes = [make_stroke("a"), make_stroke("b", y=300)]
    body = build_batch_request(strokes)

    assert body["contentType"] == "Math"
    assert MIME_LATEX in body["configuration"]["math"]["mimeTypes"]
    assert len(body["strokeGroups"]) == 1
    assert [s["id"] for s in body["strokeGroups"][0]["strokes"]] == ["a", "b"]


def test_batch_request_splits_lines_keeping_drawing_order():
    strokes = [
        make_stroke("top-2", y=100, x0=60),
        make_stroke("bottom", y=300),
        make_stroke("top-1", y=102),
    ]
    body = build_batch_request(strokes, line_threshold=50)

    groups = [[s["id"] for s in g["strokes"]] for g in body["strokeGroups"]]
    assert groups == [["top-2", "top-1"], ["bottom"]]


def test_recognize_request_is_flat():
    body = build_recognize_request([make_stroke("a"), make_stroke("b")])
    assert [s["id"] for s in body["strokes"]] == ["a", "b"]
    assert body["scaleX"] == 1.0
    assert "strokeGroups" not in body


def test_configuration_is_fresh_per_request():
    first = build_batch_request([make_stroke("a")])
    first["configuration"]["math"]["mimeTypes"].append("bogus")
    second = build_batch_request([make_stroke("a")])
    assert "bogus" not in second["configuration"]["math"]["mimeTypes"]


def test_extract_latex_prefers_latex_export():
    response = {
        "exports": [
            {"mime-type": MIME_MATHML, "data": "<math/>"},
            {"mime-type": MIME_LATEX, "data": "x=7"},
        ]
    }
    assert extract_latex(response) == "x=7"
    assert extract_mathml(response) == "<math/>"


def test_extract_latex_falls_back_to_jiix():
    jiix = {
        "type": "Math",
        "expressions": [
            {"type": "=", "operands": [{"label": "x"}, {"label": "="}, {"label": "7"}]}
        ],
    }
    assert extract_latex({"exports": [{"mime-type": MIME_JIIX, "data": jiix}]}) == "x=7"
    assert extract_latex({"type": "Math", "latex-label": "2x"}) == "2x"


def test_extract_latex_accepts_bare_values():
    assert extract_latex("8 x") == "8 x"
    assert extract_latex(8) == "8"
    assert extract_latex("  ") is None
    assert extract_latex({"exports": []}) is None


def test_extract_confidence_is_clamped():
    assert extract_confidence({"confidence": {"overall": 0.92}}) == 0.92
    assert extract_confidence({"confidence": {"overall": 1.4}}) == 1.0
    assert extract_confidence({"confidence": {"overall": -1}}) == 0.0
    assert extract_confidence({"confidence": 0.9}) is None
    assert extract_confidence("x") is None


def test_filter_and_count():
    strokes = [make_stroke("ok", 3), make_stroke("dot", 1), make_stroke("ok2", 2)]
    assert [s.id for s in filter_valid_strokes(strokes)] == ["ok", "ok2"]
    assert count_total_points(strokes) == 6


def test_split_into_groups_respects_point_budget():
    strokes = [make_stroke(f"s{i}", 40) for i in range(5)]
    groups = split_strokes_into_groups(strokes, max_points_per_group=100)
    assert [len(g) for g in groups] == [2, 2, 1]

    # A single oversize stroke still gets its own group
    assert len(split_strokes_into_groups([make_stroke("big", 150)], 100)) == 1


def test_split_into_lines_by_vertical_distance():
    strokes = [make_stroke("a", y=100), make_stroke("b", y=130), make_stroke("c", y=400)]
    lines = split_strokes_into_lines(strokes, line_threshold=50)
    assert [[s.id for s in line] for line in lines] == [["a", "b"], ["c"]]
    assert split_strokes_into_lines([]) == []


def test_display_helpers():
    assert confidence_level(0.97) == "Very High"
    assert confidence_level(0.9) == "High"
    assert confidence_level(0.75) == "Medium"
    assert confidence_level(0.6) == "Low"
    assert confidence_level(0.1) == "Very Low"

    ok = RecognitionResult(status=RecognitionStatus.SUCCESS, latex="x=7")
    assert format_recognition_result(ok) == "LaTeX: x=7"
    failed = RecognitionResult(status=RecognitionStatus.ERROR, error="boom")
    assert format_recognition_result(failed) == "Error: boom"
    assert format_recognition_result(RecognitionResult(status=RecognitionStatus.PROCESSING)) == "Processing..."
