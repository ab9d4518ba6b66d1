"""
Pause-triggered recognition for one drawing session.

State machine:
    idle -> drawing -> awaiting_pause -> recognizing -> (success | failed) -> idle

Each completed stroke re-arms a single pause timer; when it fires, every stroke
collected since the last successful recognition is sent to the recognition
client. Success and failed hold while the result callbacks run, then the
session drops back to idle; the outcome stays readable as latest_result.
A second debounce gate refuses calls that come too soon after the
previous one completed. A new stroke cancels the pending timer but never an
in-flight call; whichever result lands last is the one kept.
"""

import dataclasses
import inspect
import logging
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from config import Settings, settings as default_settings
from errors import LowConfidenceError
from recognition_client import RecognitionClient
from schemas import RecognitionResult, RecognitionStatus, Stroke
from stroke_utils import filter_valid_strokes
from timers import CancelableTimer

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    AWAITING_PAUSE = "awaiting_pause"
    RECOGNIZING = "recognizing"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class RecognitionConfig:
    pause_duration_ms: int = 500   # 250-500ms feels natural
    min_confidence: float = 0.85
    max_strokes_per_recognition: int = 50
    debounce_duration_ms: int = 500
    use_hmac: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "RecognitionConfig":
        return cls(
            pause_duration_ms=s.recognition_pause_ms,
            min_confidence=s.recognition_min_confidence,
            max_strokes_per_recognition=s.recognition_max_strokes,
            debounce_duration_ms=s.recognition_debounce_ms,
            use_hmac=s.recognition_use_hmac,
        )


ResultCallback = Callable[[RecognitionResult], Any]
ErrorCallback = Callable[[RecognitionResult], Any]


def apply_confidence_threshold(result: RecognitionResult, min_confidence: float) -> RecognitionResult:
    """Downgrade a successful but low-confidence result to an error."""
    if (
        result.status == RecognitionStatus.SUCCESS
        and result.confidence is not None
        and result.confidence < min_confidence
    ):
        error = LowConfidenceError(
            f"Low confidence: {result.confidence * 100:.1f}% "
            f"(minimum: {min_confidence * 100:.1f}%)"
        )
        return result.model_copy(update={
            "status": RecognitionStatus.ERROR,
            "error": error.message,
            "error_kind": error.kind,
        })
    return result


class RecognitionSession:
    def __init__(
        self,
        client: RecognitionClient,
        config: Optional[RecognitionConfig] = None,
        on_result: Optional[ResultCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client = client
        self.config = config or RecognitionConfig()
        self.on_result = on_result
        self.on_error = on_error
        self.session_id = session_id or uuid.uuid4().hex
        self._clock = clock

        self.state = SessionState.IDLE
        self.latest_result: Optional[RecognitionResult] = None
        self._pending: list[Stroke] = []
        self._pause_timer = CancelableTimer(f"pause:{self.session_id[:8]}")
        self._last_completed_at: Optional[float] = None
        self._in_flight = 0
        self._closed = False
        self.recognition_calls = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_recognizing(self) -> bool:
        return self._in_flight > 0

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_strokes(self) -> list[Stroke]:
        return list(self._pending)

    @property
    def status(self) -> RecognitionStatus:
        if self._in_flight:
            return RecognitionStatus.PROCESSING
        if self.latest_result is not None:
            return self.latest_result.status
        return RecognitionStatus.IDLE

    def can_recognize(self) -> bool:
        """False until debounce_duration_ms has passed since the last completed call."""
        if self._last_completed_at is None:
            return True
        elapsed_ms = (self._clock() - self._last_completed_at) * 1000
        return elapsed_ms >= self.config.debounce_duration_ms

    # ------------------------------------------------------------------
    # Stroke events
    # ------------------------------------------------------------------

    def start_stroke(self) -> None:
        """Pen down: drop the scheduled trigger, leave any in-flight call alone."""
        if self._closed:
            return
        self._pause_timer.cancel()
        self.state = SessionState.DRAWING

    def complete_stroke(self, stroke: Stroke) -> None:
        """Pen up: collect the stroke and (re-)arm pause detection."""
        if self._closed:
            logger.debug(f"[Recognition] Session {self.session_id} closed, ignoring stroke {stroke.id}")
            return
        self._pending.append(stroke)
        self.state = SessionState.AWAITING_PAUSE
        self._pause_timer.arm(self.config.pause_duration_ms / 1000, self._on_pause)

    def cancel_pause_detection(self) -> None:
        if self._pause_timer.cancel() and self.state == SessionState.AWAITING_PAUSE:
            self.state = SessionState.IDLE

    async def _on_pause(self) -> Optional[RecognitionResult]:
        logger.info("[Recognition] Pause detected - triggering recognition")
        return await self._recognize_pending()

    async def trigger_recognition(self) -> Optional[RecognitionResult]:
        """Recognize right away instead of waiting for the pause."""
        self._pause_timer.cancel()
        return await self._recognize_pending()

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    async def _recognize_pending(self) -> Optional[RecognitionResult]:
        if self._closed:
            return None

        self.state = SessionState.RECOGNIZING
        batch = list(self._pending)
        valid = filter_valid_strokes(batch)

        valid_ids = {s.id for s in valid}
        dropped = {s.id for s in batch if s.id not in valid_ids}
        if dropped:
            logger.info(
                f"[Recognition] Filtered out {len(dropped)} invalid strokes "
                f"({len(valid)} valid strokes remaining)"
            )
            # Too short to ever be recognized; they leave the queue once dropped
            self._pending = [s for s in self._pending if s.id not in dropped]

        if not valid:
            logger.info("[Recognition] No valid strokes to recognize (all strokes have < 2 points)")
            self.state = SessionState.IDLE
            return None

        if not self.can_recognize():
            elapsed_ms = (self._clock() - self._last_completed_at) * 1000
            wait_ms = max(0.0, self.config.debounce_duration_ms - elapsed_ms)
            logger.info(f"[Recognition] Debounced - too soon after last call, retrying in {wait_ms:.0f}ms")
            self.state = SessionState.AWAITING_PAUSE
            self._pause_timer.arm(wait_ms / 1000, self._on_pause)
            return None

        limit = self.config.max_strokes_per_recognition
        if len(valid) > limit:
            logger.warning(f"[Recognition] Limiting recognition to {limit} strokes (had {len(valid)})")
            valid = valid[:limit]

        logger.info(f"[Recognition] Recognizing {len(valid)} strokes...")
        self._in_flight += 1
        self.recognition_calls += 1
        try:
            result = await self.client.recognize(valid, use_signature=self.config.use_hmac)
        except Exception as e:
            logger.error(f"[Recognition] Recognition error: {e}", exc_info=True)
            result = RecognitionResult(
                status=RecognitionStatus.ERROR,
                error=str(e) or "Unknown error",
                error_kind="unknown",
                source_stroke_ids=frozenset(s.id for s in valid),
            )
        finally:
            self._in_flight -= 1
            self._last_completed_at = self._clock()

        result = apply_confidence_threshold(result, self.config.min_confidence)

        if self._closed:
            logger.info(f"[Recognition] Session {self.session_id} closed, discarding late result")
            return result

        self._apply_result(result)
        await self._notify(result)

        if self.state in (SessionState.SUCCESS, SessionState.FAILED):
            self.state = SessionState.IDLE
        return result

    def _apply_result(self, result: RecognitionResult) -> None:
        self.latest_result = result
        succeeded = result.status == RecognitionStatus.SUCCESS

        if succeeded:
            # Strokes drawn while the call was in flight stay queued for the next pause
            self._pending = [s for s in self._pending if s.id not in result.source_stroke_ids]

        if self.state == SessionState.RECOGNIZING:
            self.state = SessionState.SUCCESS if succeeded else SessionState.FAILED

    async def _notify(self, result: RecognitionResult) -> None:
        if result.status == RecognitionStatus.SUCCESS:
            logger.info(f"[Recognition] Success: {result.latex}")
            callback = self.on_result
        else:
            logger.warning(f"[Recognition] Failed: {result.error}")
            callback = self.on_error

        if callback is None:
            return
        outcome = callback(result)
        if inspect.isawaitable(outcome):
            await outcome

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear_recognition(self) -> None:
        self.latest_result = None
        if self.state in (SessionState.SUCCESS, SessionState.FAILED):
            self.state = SessionState.IDLE

    def clear_strokes(self) -> None:
        self._pause_timer.cancel()
        self._pending.clear()
        self.state = SessionState.IDLE

    def update_config(self, **changes) -> RecognitionConfig:
        self.config = dataclasses.replace(self.config, **changes)
        return self.config

    async def close(self) -> None:
        """Tear down: no recognition call is issued after this returns."""
        self._closed = True
        self._pause_timer.cancel()
        self.state = SessionState.IDLE
        logger.info(f"[Recognition] Session {self.session_id} closed")

    async def wait_idle(self) -> None:
        """Wait for recognitions already dispatched by the pause timer."""
        await self._pause_timer.wait_dispatched()


class SessionRegistry:
    """
    Live drawing sessions keyed by id, all sharing one recognition client.

    Sessions untouched for idle_timeout_seconds are closed and evicted, and
    opening a session past max_sessions closes the least recently used one.
    """

    def __init__(
        self,
        client: RecognitionClient,
        config: Optional[RecognitionConfig] = None,
        max_sessions: Optional[int] = None,
        idle_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.client = client
        self.config = config or RecognitionConfig.from_settings(default_settings)
        self.max_sessions = default_settings.recognition_max_sessions if max_sessions is None else max_sessions
        self.idle_timeout_seconds = (
            default_settings.recognition_session_idle_seconds
            if idle_timeout_seconds is None
            else idle_timeout_seconds
        )
        self._clock = clock
        # Least recently used first
        self._sessions: OrderedDict[str, RecognitionSession] = OrderedDict()
        self._last_used: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _touch(self, session_id: str) -> None:
        self._sessions.move_to_end(session_id)
        self._last_used[session_id] = self._clock()

    def get(self, session_id: str) -> Optional[RecognitionSession]:
        session = self._sessions.get(session_id)
        if session is not None:
            self._touch(session_id)
        return session

    async def get_or_create(self, session_id: str) -> RecognitionSession:
        await self.evict_idle()

        session = self._sessions.get(session_id)
        if session is None:
            while self._sessions and len(self._sessions) >= self.max_sessions:
                oldest = next(iter(self._sessions))
                logger.warning(f"[Recognition] Session limit ({self.max_sessions}) reached, evicting {oldest}")
                await self.close(oldest)

            session = RecognitionSession(self.client, self.config, session_id=session_id)
            self._sessions[session_id] = session
            logger.info(f"[Recognition] Session {session_id} opened")

        self._touch(session_id)
        return session

    async def evict_idle(self) -> int:
        """Close every session idle for longer than idle_timeout_seconds."""
        now = self._clock()
        expired = [
            session_id
            for session_id, last_used in self._last_used.items()
            if now - last_used > self.idle_timeout_seconds
        ]
        for session_id in expired:
            logger.info(f"[Recognition] Session {session_id} idle, evicting")
            await self.close(session_id)
        return len(expired)

    async def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._last_used.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
