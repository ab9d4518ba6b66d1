"""
LangGraph Workflow for Step Validation

This module judges one student step with:
- Cache lookup keyed by (problem, step, normalized expression)
- Fail-fast rate limiting before any network call
- Remote show-steps call wrapped in the retry policy
- Reconciliation against the remote solution
- Local rule-based fallback against the expected-step table
- Cache write-back of the final verdict
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Literal, Optional

from langgraph.graph import StateGraph, END

from cache import ValidationCache, generate_validation_cache_key
from config import Settings, settings as default_settings
from errors import ProblemNotFound, RateLimitExceeded, TutorError
from math_rules import (
    classify_error,
    expected_step_at,
    find_matching_expected_step,
    generate_feedback,
    is_final_answer,
    is_step_useful,
    normalize_latex,
)
from problems import ProblemCatalog, default_catalog
from retry import RetryPolicy
from schemas import Problem, ValidationRequest, ValidationResult
from state import ValidationGraphState, initial_state
from timers import CancelableTimer
from validation_client import MathValidationClient

logger = logging.getLogger(__name__)


REMOTE_MATCH_CONFIDENCE = 0.95
LOCAL_CONFIDENCE = 0.85

HintLevel = Literal["concept", "direction", "micro"]


@dataclass(frozen=True)
class ValidationConfig:
    enable_caching: bool = True
    cache_ttl_ms: int = 7 * 24 * 60 * 60 * 1000
    debounce_ms: int = 500

    @classmethod
    def from_settings(cls, s: Settings) -> "ValidationConfig":
        return cls(
            enable_caching=s.validation_enable_caching,
            cache_ttl_ms=s.validation_cache_ttl_ms,
            debounce_ms=s.validation_debounce_ms,
        )


def retry_policy_from_settings(s: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=s.retry_max_attempts,
        base_delay=s.retry_base_delay_ms / 1000,
        multiplier=s.retry_backoff_multiplier,
    )


class ValidationOrchestrator:
    """
    Owns the compiled validation graph and the collaborators its nodes use.

    The rate limiter and cache are passed in so several orchestrators (or
    tests) never share hidden module-level state.
    """

    def __init__(
        self,
        client: MathValidationClient,
        rate_limiter,
        cache: ValidationCache,
        catalog: Optional[ProblemCatalog] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[ValidationConfig] = None
    ):
        self.client = client
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.catalog = catalog or default_catalog
        self.retry_policy = retry_policy or RetryPolicy()
        self.config = config or ValidationConfig()
        self.graph = self._build_graph()

    # ========================================================================
    # NODE FUNCTIONS
    # ========================================================================

    async def load_problem_node(self, state: ValidationGraphState) -> ValidationGraphState:
        request = state["request"]
        problem = self.catalog.get_problem_by_id(request.problem_id)
        if problem is None:
            raise ProblemNotFound(request.problem_id)
        return {**state, "problem": problem}

    async def cache_check_node(self, state: ValidationGraphState) -> ValidationGraphState:
        if not self.config.enable_caching:
            return state

        request = state["request"]
        key = generate_validation_cache_key(
            request.problem_id,
            request.step_number,
            request.student_step_expression
        )
        cached = self.cache.get(key)
        if cached is not None:
            logger.info("[Validation] Returning cached result")
            cached = cached.model_copy(update={"was_cached": True})
        return {**state, "cache_key": key, "cached_result": cached}

    async def serve_cached_node(self, state: ValidationGraphState) -> ValidationGraphState:
        return {**state, "result": state["cached_result"]}

    async def rate_limit_node(self, state: ValidationGraphState) -> ValidationGraphState:
        if not await self.rate_limiter.try_acquire():
            quota = await self.rate_limiter.get_quota_status()
            raise RateLimitExceeded(
                "Rate limit exceeded. Please wait before validating more steps.",
                reset_in=quota.get("reset_in_seconds", 0)
            )
        return state

    async def remote_call_node(self, state: ValidationGraphState) -> ValidationGraphState:
        statement = state["request"].problem_statement_expression
        try:
            steps = await self.retry_policy.run(lambda: self.client.fetch_solving_steps(statement))
            return {**state, "remote_steps": steps, "remote_error": None}
        except TutorError as e:
            # Local validation is the degraded mode, not an error path
            logger.warning(f"[Validation] Remote validation unavailable ({e.kind}): {e.message}")
            return {**state, "remote_steps": None, "remote_error": e.message}

    async def reconcile_node(self, state: ValidationGraphState) -> ValidationGraphState:
        steps = state["remote_steps"] or []
        normalized_student = normalize_latex(state["request"].student_step_expression)

        for index, step in enumerate(steps):
            if not step.expression or normalize_latex(step.expression) != normalized_student:
                continue

            suggested: list[str] = []
            expected_next = None
            if index + 1 < len(steps):
                expected_next = steps[index + 1].expression
                suggested = [expected_next]

            feedback = (
                f"Great! {step.description.rstrip('.')}."
                if step.description
                else "Great! This step is correct and advances your solution."
            )
            return {
                **state,
                "is_correct": True,
                "is_useful": True,
                "error_kind": None,
                "feedback_text": feedback,
                "suggested_next_expressions": suggested,
                "expected_next_expression": expected_next,
                "confidence": REMOTE_MATCH_CONFIDENCE,
                "source": "remote",
            }

        if steps:
            logger.info("[Validation] No match in API steps, using local validation")
        return state

    async def local_validation_node(self, state: ValidationGraphState) -> ValidationGraphState:
        logger.info("[Validation] Using local validation against expected steps")
        request = state["request"]
        problem: Problem = state["problem"]
        student_step = request.student_step_expression

        matching = find_matching_expected_step(student_step, problem.expected_steps, request.step_number)
        is_correct = matching is not None
        previous = request.previous_steps[-1] if request.previous_steps else None
        is_useful = is_step_useful(student_step, previous)

        error_kind = None
        if is_correct:
            expected_next_step = expected_step_at(problem, matching.step_number + 1)
            feedback = generate_feedback(True, is_useful, None, matching)
        else:
            error_kind = classify_error(student_step, problem.expected_steps, request.step_number)
            expected_next_step = expected_step_at(problem, request.step_number)
            feedback = generate_feedback(False, is_useful, error_kind, expected_next_step)

        expected_next = expected_next_step.expression if expected_next_step else None
        return {
            **state,
            "is_correct": is_correct,
            "is_useful": is_useful,
            "error_kind": error_kind,
            "feedback_text": feedback,
            "suggested_next_expressions": [expected_next] if expected_next else [],
            "expected_next_expression": expected_next,
            "confidence": LOCAL_CONFIDENCE,
            "source": "local",
        }

    async def finalize_node(self, state: ValidationGraphState) -> ValidationGraphState:
        request = state["request"]
        result = ValidationResult(
            step_id=f"step_{request.problem_id}_{request.step_number}",
            is_correct=state["is_correct"],
            is_useful=state["is_useful"],
            error_kind=state["error_kind"],
            feedback_text=state["feedback_text"],
            suggested_next_expressions=state["suggested_next_expressions"],
            expected_next_expression=state["expected_next_expression"],
            confidence=state["confidence"],
            was_cached=False,
            is_final_answer=is_final_answer(request.student_step_expression, state["problem"]),
            source=state["source"],
        )

        if self.config.enable_caching and state["cache_key"]:
            self.cache.set(state["cache_key"], result, self.config.cache_ttl_ms)

        logger.info(
            f"[Validation] Validation complete: correct={result.is_correct} "
            f"useful={result.is_useful} source={result.source}"
        )
        return {**state, "result": result}

    # ========================================================================
    # GRAPH CONSTRUCTION
    # ========================================================================

    @staticmethod
    def route_after_cache(state: ValidationGraphState) -> Literal["hit", "miss"]:
        return "hit" if state["cached_result"] is not None else "miss"

    @staticmethod
    def route_after_reconcile(state: ValidationGraphState) -> Literal["matched", "fallback"]:
        return "matched" if state["source"] == "remote" and state["is_correct"] else "fallback"

    def _build_graph(self):
        workflow = StateGraph(ValidationGraphState)

        workflow.add_node("load_problem", self.load_problem_node)
        workflow.add_node("cache_check", self.cache_check_node)
        workflow.add_node("serve_cached", self.serve_cached_node)
        workflow.add_node("rate_limit", self.rate_limit_node)
        workflow.add_node("remote_call", self.remote_call_node)
        workflow.add_node("reconcile", self.reconcile_node)
        workflow.add_node("local_validation", self.local_validation_node)
        workflow.add_node("finalize", self.finalize_node)

        workflow.set_entry_point("load_problem")
        workflow.add_edge("load_problem", "cache_check")

        workflow.add_conditional_edges(
            "cache_check",
            self.route_after_cache,
            {"hit": "serve_cached", "miss": "rate_limit"}
        )
        workflow.add_edge("serve_cached", END)

        # Remote pipeline: rate_limit → remote_call → reconcile → (finalize | local_validation)
        workflow.add_edge("rate_limit", "remote_call")
        workflow.add_edge("remote_call", "reconcile")
        workflow.add_conditional_edges(
            "reconcile",
            self.route_after_reconcile,
            {"matched": "finalize", "fallback": "local_validation"}
        )
        workflow.add_edge("local_validation", "finalize")
        workflow.add_edge("finalize", END)

        return workflow.compile()

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def validate(self, request: ValidationRequest) -> ValidationResult:
        """
        Judge one student step.

        Raises:
            ProblemNotFound: the referenced problem is not in the catalog
            RateLimitExceeded: the window quota is exhausted (nothing was sent)
        """
        logger.info(f"[Validation] validate called: {request.problem_id} step {request.step_number}")
        final_state = await self.graph.ainvoke(initial_state(request))
        return final_state["result"]

    async def validate_multiple_steps(
        self,
        problem_id: str,
        problem_statement: str,
        steps: list[str]
    ) -> list[ValidationResult]:
        """Validate a whole solution in order, stopping at the first incorrect step."""
        logger.info(f"[Validation] Batch validating {len(steps)} steps")
        results: list[ValidationResult] = []
        previous: list[str] = []

        for number, step in enumerate(steps, start=1):
            result = await self.validate(ValidationRequest(
                problem_id=problem_id,
                student_step_expression=step,
                step_number=number,
                previous_steps=list(previous),
                problem_statement_expression=problem_statement,
            ))
            results.append(result)
            previous.append(step)

            if not result.is_correct:
                logger.info(f"[Validation] Stopping batch validation at incorrect step {number}")
                break

        return results

    def get_problem(self, problem_id: str) -> Problem:
        problem = self.catalog.get_problem_by_id(problem_id)
        if problem is None:
            raise ProblemNotFound(problem_id)
        return problem

    def is_final_answer(self, student_step: str, problem_id: str) -> bool:
        return is_final_answer(student_step, self.get_problem(problem_id))

    def get_next_step_hint(self, problem_id: str, current_step_number: int, level: HintLevel) -> str:
        problem = self.catalog.get_problem_by_id(problem_id)
        if problem is None:
            return "Problem not found."

        step = expected_step_at(problem, current_step_number)
        if step is None:
            return "You're almost there! Check if you've reached the solution."

        if level == "concept":
            return f"Think about what operation would help {step.description.lower()}."
        if level == "direction":
            return f"Try to {step.operation_label}."
        if level == "micro":
            return f"The next step is: {step.description}"
        return step.description


class DebouncedValidator:
    """
    Coalesces bursts of validation requests into one call.

    Requests arriving during the quiet period restart it and replace the
    request to send; once the call is dispatched, later callers attach to the
    same in-flight future until it settles.
    """

    def __init__(self, orchestrator: ValidationOrchestrator, debounce_ms: Optional[int] = None):
        self.orchestrator = orchestrator
        self.debounce_ms = orchestrator.config.debounce_ms if debounce_ms is None else debounce_ms
        self._timer = CancelableTimer("validation-debounce")
        self._future: Optional[asyncio.Future] = None
        self._request: Optional[ValidationRequest] = None
        self._dispatched = False
        self.calls = 0

    @property
    def has_pending(self) -> bool:
        return self._future is not None

    async def validate(self, request: ValidationRequest) -> ValidationResult:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
            self._dispatched = False

        if self._dispatched:
            logger.info("[Validation] Returning existing pending validation")
        else:
            self._request = request
            self._timer.arm(self.debounce_ms / 1000, self._fire)

        return await asyncio.shield(self._future)

    def _fire(self):
        self._dispatched = True
        return self._run(self._future, self._request)

    async def _run(self, future: asyncio.Future, request: ValidationRequest) -> None:
        self.calls += 1
        try:
            result = await self.orchestrator.validate(request)
        except Exception as e:
            if not future.done():
                future.set_exception(e)
        else:
            if not future.done():
                future.set_result(result)
        finally:
            if self._future is future:
                self._future = None
                self._request = None
                self._dispatched = False

    async def close(self) -> None:
        self._timer.cancel()
        if self._future is not None and not self._dispatched:
            self._future.cancel()
            self._future = None
        await self._timer.wait_dispatched()


class DebouncedValidatorPool:
    """
    Keeps one DebouncedValidator per key (canvas session or problem).

    Bursts from the same key coalesce; different keys never replace each
    other's pending request. A key's validator is dropped once it is idle.
    """

    def __init__(self, orchestrator: ValidationOrchestrator, debounce_ms: Optional[int] = None):
        self.orchestrator = orchestrator
        self.debounce_ms = debounce_ms
        self._validators: dict[str, DebouncedValidator] = {}

    def __len__(self) -> int:
        return len(self._validators)

    @property
    def calls(self) -> int:
        return sum(v.calls for v in self._validators.values())

    async def validate(self, request: ValidationRequest, key: Optional[str] = None) -> ValidationResult:
        key = key or request.problem_id
        validator = self._validators.get(key)
        if validator is None:
            validator = DebouncedValidator(self.orchestrator, self.debounce_ms)
            self._validators[key] = validator

        try:
            return await validator.validate(request)
        finally:
            if not validator.has_pending and self._validators.get(key) is validator:
                del self._validators[key]

    async def close(self) -> None:
        validators = list(self._validators.values())
        self._validators.clear()
        for validator in validators:
            await validator.close()


def create_validation_orchestrator(
    client: MathValidationClient,
    rate_limiter,
    cache: ValidationCache,
    s: Settings = default_settings,
    catalog: Optional[ProblemCatalog] = None
) -> ValidationOrchestrator:
    return ValidationOrchestrator(
        client=client,
        rate_limiter=rate_limiter,
        cache=cache,
        catalog=catalog,
        retry_policy=retry_policy_from_settings(s),
        config=ValidationConfig.from_settings(s),
    )
