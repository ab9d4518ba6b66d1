"""
FastAPI Application for the Handwriting Math Tutor Backend
"""

import logging
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, status, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import settings
from cache import ValidationCache
from errors import ProblemNotFound, RateLimitExceeded
from rate_limiter import RateLimitConfig, create_rate_limiter
from recognition import RecognitionConfig, SessionRegistry, apply_confidence_threshold
from recognition_client import RecognitionClient
from schemas import RecognitionResult, Stroke, ValidationRequest, ValidationResult
from stroke_utils import filter_valid_strokes
from validation import DebouncedValidatorPool, HintLevel, create_validation_orchestrator
from validation_client import MathValidationClient, ValidationServiceConfig

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============================================================================
# PYDANTIC MODELS
# ============================================================================

class RecognizeRequest(BaseModel):
    strokes: list[Stroke] = Field(..., min_length=1)
    use_signature: bool = True


class CompleteStrokeRequest(BaseModel):
    stroke: Stroke


class SessionStatusResponse(BaseModel):
    session_id: str
    state: str
    status: str
    pending_strokes: int
    latest_result: Optional[RecognitionResult] = None


class BatchValidateRequest(BaseModel):
    problem_id: str = Field(..., min_length=1)
    problem_statement_expression: str
    steps: list[str] = Field(..., min_length=1)


class FinalAnswerRequest(BaseModel):
    problem_id: str = Field(..., min_length=1)
    student_step_expression: str


class FinalAnswerResponse(BaseModel):
    problem_id: str
    is_final_answer: bool


class HintResponse(BaseModel):
    problem_id: str
    step_number: int
    level: str
    hint: str


class HealthResponse(BaseModel):
    status: str
    version: str = "0.1.0"
    environment: str
    recognition: dict

# ============================================================================
# LIFECYCLE & APP
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up Handwriting Math Tutor Backend...")

    rate_config = RateLimitConfig(
        max_requests=settings.rate_limit_per_minute,
        window_seconds=settings.rate_limit_window_seconds
    )
    limiter = await create_rate_limiter(settings.redis_url, rate_config)
    logger.info(f"Rate limiter initialized ({rate_config.max_requests}/{rate_config.window_seconds}s)")

    recognition_client = RecognitionClient.from_settings(settings)
    validation_client = MathValidationClient(ValidationServiceConfig.from_settings(settings))
    cache = ValidationCache(default_ttl_ms=settings.validation_cache_ttl_ms)
    orchestrator = create_validation_orchestrator(validation_client, limiter, cache, settings)

    app.state.rate_limiter = limiter
    app.state.recognition_client = recognition_client
    app.state.sessions = SessionRegistry(recognition_client, RecognitionConfig.from_settings(settings))
    app.state.validation_client = validation_client
    app.state.cache = cache
    app.state.validator = orchestrator
    app.state.debounced_validator = DebouncedValidatorPool(orchestrator)

    if not settings.myscript_application_key:
        logger.warning("MYSCRIPT_APPLICATION_KEY not set; recognition calls will be rejected by the service")

    yield

    # Cleanup
    logger.info("Shutting down...")
    await app.state.sessions.close_all()
    await app.state.debounced_validator.close()
    await recognition_client.close()
    await validation_client.close()
    await limiter.close()

app = FastAPI(
    title="Handwriting Math Tutor API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "message": f"Too many requests. Try again in {exc.reset_in} seconds.",
            "retry_after": exc.reset_in,
        },
        headers={"Retry-After": str(exc.reset_in)}
    )


@app.exception_handler(ProblemNotFound)
async def problem_not_found_handler(request: Request, exc: ProblemNotFound):
    return JSONResponse(status_code=404, content={"error": "Problem not found", "message": exc.message})

# ============================================================================
# ENDPOINTS
# ============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    return HealthResponse(
        status="healthy",
        environment=settings.environment,
        recognition=request.app.state.recognition_client.get_config()
    )


@app.get("/v1/quota")
async def get_quota(request: Request):
    """Get current rate limit window status for the validation service."""
    return await request.app.state.rate_limiter.get_quota_status()

# --- Recognition ------------------------------------------------------------

@app.post("/v1/recognize", response_model=RecognitionResult)
async def recognize(body: RecognizeRequest, request: Request):
    """One-shot recognition of a stroke batch (no pause detection)."""
    valid = filter_valid_strokes(body.strokes)
    if not valid:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, "No valid strokes to recognize (all strokes have < 2 points)")

    config: RecognitionConfig = request.app.state.sessions.config
    client: RecognitionClient = request.app.state.recognition_client
    result = await client.recognize(valid, use_signature=body.use_signature)
    return apply_confidence_threshold(result, config.min_confidence)


@app.post("/v1/sessions/{session_id}/strokes/start", response_model=SessionStatusResponse)
async def start_stroke(session_id: str, request: Request):
    session = await request.app.state.sessions.get_or_create(session_id)
    session.start_stroke()
    return _session_status(session)


@app.post("/v1/sessions/{session_id}/strokes", response_model=SessionStatusResponse)
async def complete_stroke(session_id: str, body: CompleteStrokeRequest, request: Request):
    session = await request.app.state.sessions.get_or_create(session_id)
    session.complete_stroke(body.stroke)
    return _session_status(session)


@app.get("/v1/sessions/{session_id}/recognition", response_model=SessionStatusResponse)
async def get_recognition(session_id: str, request: Request):
    session = request.app.state.sessions.get(session_id)
    if session is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Session not found")
    return _session_status(session)


@app.delete("/v1/sessions/{session_id}")
async def close_session(session_id: str, request: Request):
    if not await request.app.state.sessions.close(session_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Session not found")
    return {"session_id": session_id, "closed": True}


def _session_status(session) -> SessionStatusResponse:
    return SessionStatusResponse(
        session_id=session.session_id,
        state=session.state.value,
        status=session.status.value,
        pending_strokes=len(session.pending_strokes),
        latest_result=session.latest_result
    )

# --- Validation -------------------------------------------------------------

@app.post("/v1/validate", response_model=ValidationResult)
async def validate_step(
    body: ValidationRequest,
    request: Request,
    debounce: bool = False,
    session_id: Optional[str] = None
):
    if debounce:
        # Bursts coalesce per canvas session, or per problem when no session is given
        return await request.app.state.debounced_validator.validate(body, key=session_id)
    return await request.app.state.validator.validate(body)


@app.post("/v1/validate/batch", response_model=list[ValidationResult])
async def validate_batch(body: BatchValidateRequest, request: Request):
    return await request.app.state.validator.validate_multiple_steps(
        body.problem_id,
        body.problem_statement_expression,
        body.steps
    )


@app.post("/v1/final_answer", response_model=FinalAnswerResponse)
async def check_final_answer(body: FinalAnswerRequest, request: Request):
    is_final = request.app.state.validator.is_final_answer(body.student_step_expression, body.problem_id)
    return FinalAnswerResponse(problem_id=body.problem_id, is_final_answer=is_final)


@app.get("/v1/hint", response_model=HintResponse)
async def get_hint(problem_id: str, step_number: int, request: Request, level: HintLevel = "concept"):
    hint = request.app.state.validator.get_next_step_hint(problem_id, step_number, level)
    return HintResponse(problem_id=problem_id, step_number=step_number, level=level, hint=hint)

# --- Cache ------------------------------------------------------------------

@app.get("/v1/cache/stats")
async def cache_stats(request: Request):
    return request.app.state.cache.get_stats()


@app.delete("/v1/cache")
async def clear_cache(request: Request):
    cleared = request.app.state.cache.clear()
    return {"cleared": cleared}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=settings.backend_port, reload=True)
