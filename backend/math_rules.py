"""
Local rule-based judgment of student steps.

This is the guaranteed degraded mode of validation: when the remote service
is unreachable or its solution does not contain the student's step, these
rules decide correctness, usefulness, error kind and feedback against the
problem's expected-step table.
"""

import hashlib
import logging
import re
from typing import Optional, Sequence

from schemas import ExpectedStep, Problem, ValidationErrorKind

logger = logging.getLogger(__name__)


# Nearby expected steps tolerated on either side of the current step number
STEP_DRIFT_TOLERANCE = 2

# Coarse tautology detection over normalized text. "x/10" also matches "/1";
# kept as-is for parity with the existing feedback behavior.
TAUTOLOGY_PATTERNS = (
    re.compile(r"\+0"),   # Adding 0
    re.compile(r"-0"),    # Subtracting 0
    re.compile(r"\*1"),   # Multiplying by 1
    re.compile(r"/1"),    # Dividing by 1
)


def normalize_latex(latex: str) -> str:
    """
    Canonical form used for every expression comparison and cache key.

    Removes whitespace and \\left / \\right markup, collapses backslash runs
    and lower-cases.
    """
    normalized = re.sub(r"\s+", "", latex)
    normalized = normalized.replace("\\left", "").replace("\\right", "")
    normalized = re.sub(r"\\{2,}", r"\\", normalized)
    return normalized.lower().strip()


def expression_hash(latex: str) -> str:
    return hashlib.md5(normalize_latex(latex).encode("utf-8")).hexdigest()[:8]


def find_matching_expected_step(
    student_step: str,
    expected_steps: Sequence[ExpectedStep],
    current_step_number: int
) -> Optional[ExpectedStep]:
    """Exact normalized match at the current step, then within the drift window."""
    normalized_student = normalize_latex(student_step)

    for step in expected_steps:
        if step.step_number == current_step_number and normalize_latex(step.expression) == normalized_student:
            return step

    for step in expected_steps:
        if abs(step.step_number - current_step_number) <= STEP_DRIFT_TOLERANCE:
            if normalize_latex(step.expression) == normalized_student:
                return step

    return None


def contains_tautology(expression: str) -> bool:
    normalized = normalize_latex(expression)
    return any(pattern.search(normalized) for pattern in TAUTOLOGY_PATTERNS)


def is_step_useful(current_step: str, previous_step: Optional[str]) -> bool:
    """
    A step is not useful when it applies an identity operation (+0, -0, *1, /1)
    or just rewrites the previous step, regardless of correctness.
    """
    if contains_tautology(current_step):
        logger.info(f"[Validation] Step contains tautology: {current_step}")
        return False

    if previous_step is not None and normalize_latex(previous_step) == normalize_latex(current_step):
        logger.info("[Validation] Step is identical to previous step")
        return False

    return True


def has_mismatched_parentheses(expression: str) -> bool:
    return expression.count("(") != expression.count(")")


def classify_error(
    student_step: str,
    expected_steps: Sequence[ExpectedStep],
    step_number: int
) -> ValidationErrorKind:
    """Syntax first, then operation-sign mismatch (method), else arithmetic."""
    if has_mismatched_parentheses(student_step):
        return ValidationErrorKind.SYNTAX

    current_expected = next((s for s in expected_steps if s.step_number == step_number), None)
    if current_expected:
        expected_op = current_expected.operation_label.lower()

        if ("add" in expected_op and "-" in student_step) or \
                ("subtract" in expected_op and "+" in student_step):
            return ValidationErrorKind.METHOD

        if ("multiply" in expected_op and "/" in student_step) or \
                ("divide" in expected_op and "*" in student_step):
            return ValidationErrorKind.METHOD

    return ValidationErrorKind.ARITHMETIC


def generate_feedback(
    is_correct: bool,
    is_useful: bool,
    error_kind: Optional[ValidationErrorKind] = None,
    expected_step: Optional[ExpectedStep] = None
) -> str:
    if is_correct and is_useful:
        if expected_step:
            return f"Great! {expected_step.description}."
        return "Correct step! Keep going."

    if is_correct and not is_useful:
        return (
            "This step is mathematically correct, but it doesn't advance your solution. "
            "Try an operation that simplifies the equation."
        )

    if error_kind == ValidationErrorKind.SYNTAX:
        return (
            "There seems to be a syntax error in your expression. "
            "Check for mismatched parentheses or invalid mathematical notation."
        )

    if error_kind == ValidationErrorKind.ARITHMETIC:
        if expected_step:
            return f"This step has an arithmetic error. Remember: you need to {expected_step.operation_label}."
        return "Check your arithmetic. One of the calculations in this step is incorrect."

    if error_kind == ValidationErrorKind.METHOD:
        if expected_step:
            return f"You're using the wrong operation. Try to {expected_step.operation_label} instead."
        return (
            "The method you're using won't help solve this problem. "
            "Think about what operation would isolate the variable."
        )

    if error_kind == ValidationErrorKind.LOGIC:
        return "This step doesn't follow logically from the previous one. Review your work."

    return "This step is incorrect. Review your work and try again."


def is_final_answer(student_step: str, problem: Problem) -> bool:
    """Pure comparison against the problem's answer; no cache, no network."""
    return normalize_latex(student_step) == normalize_latex(problem.answer_expression)


def expected_step_at(problem: Problem, step_number: int) -> Optional[ExpectedStep]:
    return next((s for s in problem.expected_steps if s.step_number == step_number), None)
