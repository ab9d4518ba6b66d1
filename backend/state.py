"""
Validation Workflow State

This module defines the ValidationGraphState TypedDict that flows through the
LangGraph validation workflow. All nodes must accept it and return updates to
this structure.
"""

from typing import TypedDict, List, Optional, Literal

from schemas import Problem, ValidationErrorKind, ValidationRequest, ValidationResult
from validation_client import SolvingStep


class ValidationGraphState(TypedDict):
    """
    The state object that flows through the validation workflow for one
    student step. It lives only for the duration of a single validate() call.
    """

    # --- Input ---
    request: ValidationRequest
    problem: Optional[Problem]

    # --- Cache ---
    cache_key: Optional[str]
    cached_result: Optional[ValidationResult]

    # --- Remote service ---
    remote_steps: Optional[List[SolvingStep]]
    remote_error: Optional[str]

    # --- Verdict (filled by reconciliation or local fallback) ---
    is_correct: bool
    is_useful: bool
    error_kind: Optional[ValidationErrorKind]
    feedback_text: str
    suggested_next_expressions: List[str]
    expected_next_expression: Optional[str]
    confidence: Optional[float]
    source: Literal["remote", "local"]

    # --- Output ---
    result: Optional[ValidationResult]


def initial_state(request: ValidationRequest) -> ValidationGraphState:
    return {
        "request": request,
        "problem": None,
        "cache_key": None,
        "cached_result": None,
        "remote_steps": None,
        "remote_error": None,
        "is_correct": False,
        "is_useful": False,
        "error_kind": None,
        "feedback_text": "",
        "suggested_next_expressions": [],
        "expected_next_expression": None,
        "confidence": None,
        "source": "local",
        "result": None,
    }
