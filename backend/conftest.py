"""
Shared fakes for the backend test suite.
"""

import asyncio
import os
import sys
from typing import Optional, Sequence

# Add backend to path
sys.path.insert(0, os.path.dirname(__file__))

from schemas import RecognitionResult, RecognitionStatus, Stroke, StrokePoint


def make_stroke(stroke_id: str, n_points: int = 5, y: float = 100.0, x0: float = 10.0) -> Stroke:
    return Stroke(
        id=stroke_id,
        points=tuple(
            StrokePoint(x=x0 + i * 4.6, y=y + (i % 2), pressure=0.6, timestamp_ms=1_000 + i * 16)
            for i in range(n_points)
        ),
    )


class FakeRecognitionClient:
    """Stands in for RecognitionClient; records every batch it is asked to recognize."""

    def __init__(
        self,
        latex: str = "x=7",
        confidence: Optional[float] = 0.95,
        status: RecognitionStatus = RecognitionStatus.SUCCESS,
        gate: Optional[asyncio.Event] = None
    ):
        self.latex = latex
        self.confidence = confidence
        self.status = status
        self.gate = gate
        self.calls: list[list[str]] = []

    async def recognize(self, strokes: Sequence[Stroke], use_signature: bool = True, pointer_type=None):
        self.calls.append([s.id for s in strokes])
        if self.gate is not None:
            await self.gate.wait()
        ids = frozenset(s.id for s in strokes)
        if self.status == RecognitionStatus.SUCCESS:
            return RecognitionResult(
                status=self.status,
                latex=self.latex,
                confidence=self.confidence,
                source_stroke_ids=ids,
            )
        return RecognitionResult(status=self.status, error="service failed", error_kind="unknown", source_stroke_ids=ids)


class FakeValidationClient:
    """
    Stands in for MathValidationClient.

    outcomes is consumed one per call; an exception instance is raised, a list
    of SolvingStep is returned. The last outcome repeats once the list runs out.
    """

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    async def fetch_solving_steps(self, problem_statement: str):
        self.calls.append(problem_statement)
        index = min(len(self.calls), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self):
        return None


async def no_sleep(delay: float) -> None:
    return None
