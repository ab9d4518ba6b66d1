"""
Pydantic data contracts for strokes, recognition and validation.

StrokePoint / Stroke are produced by the drawing surface and only read here.
RecognitionResult and ValidationResult are write-once value objects and the
only things surfaced to presentation code.
"""

import time
import uuid
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    return int(time.time() * 1000)


# ============================================================================
# STROKES
# ============================================================================

class InputDevice(str, Enum):
    STYLUS = "stylus"
    FINGER = "finger"
    MOUSE = "mouse"
    UNKNOWN = "unknown"


PointerType = Literal["PEN", "TOUCH", "MOUSE"]


class StrokePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    pressure: float = Field(default=0.5, ge=0.0, le=1.0)
    timestamp_ms: int


class Stroke(BaseModel):
    """One pen-down to pen-up trace. Valid for recognition with >= 2 points."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"stroke_{uuid.uuid4().hex[:12]}")
    points: tuple[StrokePoint, ...] = Field(..., min_length=1)
    color: str = "#000000"
    stroke_width: float = 2.0
    start_timestamp_ms: int = Field(default_factory=now_ms)
    device: InputDevice = InputDevice.STYLUS

    @property
    def is_valid_for_recognition(self) -> bool:
        return len(self.points) >= 2


# ============================================================================
# RECOGNITION
# ============================================================================

class RecognitionStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class RecognitionResult(BaseModel):
    """Outcome of one recognition attempt."""
    model_config = ConfigDict(frozen=True)

    status: RecognitionStatus
    latex: Optional[str] = None
    mathml: Optional[str] = None
    plain_text: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    error: Optional[str] = None
    error_kind: Optional[str] = None
    timestamp_ms: int = Field(default_factory=now_ms)
    source_stroke_ids: frozenset[str] = frozenset()


# ============================================================================
# PROBLEMS
# ============================================================================

class ProblemDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class ExpectedStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_number: int = Field(..., ge=1)
    description: str
    expression: str
    operation_label: str


class Problem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    difficulty: ProblemDifficulty
    text: str
    statement_expression: str
    answer: str
    answer_expression: str
    expected_steps: tuple[ExpectedStep, ...]
    category: str = "linear_equations"
    tags: tuple[str, ...] = ()


# ============================================================================
# VALIDATION
# ============================================================================

class ValidationErrorKind(str, Enum):
    SYNTAX = "syntax"
    ARITHMETIC = "arithmetic"
    LOGIC = "logic"
    METHOD = "method"
    UNKNOWN = "unknown"


class ValidationRequest(BaseModel):
    problem_id: str = Field(..., min_length=1)
    student_step_expression: str
    step_number: int = Field(..., ge=1)
    previous_steps: list[str] = Field(default_factory=list)
    problem_statement_expression: str


class ValidationResult(BaseModel):
    """Verdict for one student step."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: f"validation_{now_ms()}_{uuid.uuid4().hex[:7]}")
    step_id: str
    is_correct: bool
    is_useful: bool
    error_kind: Optional[ValidationErrorKind] = None
    feedback_text: str
    suggested_next_expressions: list[str] = Field(default_factory=list)
    expected_next_expression: Optional[str] = None
    confidence: Optional[float] = None
    was_cached: bool = False
    is_final_answer: bool = False
    source: Literal["remote", "local"] = "local"
    timestamp_ms: int = Field(default_factory=now_ms)


class CacheEntry(BaseModel):
    key: str
    result: ValidationResult
    cached_at_ms: int
    ttl_ms: int

    def is_expired(self, now: int) -> bool:
        return now - self.cached_at_ms > self.ttl_ms
