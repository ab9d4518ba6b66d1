"""
Client for the MyScript iink cloud handwriting recognition API.

Builds the request body for the configured endpoint variant, optionally signs
it, and turns the response (or the transport failure) into a
RecognitionResult. Transport failures never raise out of recognize().
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Literal, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict

from config import Settings, settings as default_settings
from errors import TutorError, UnknownError, TimeoutError as RequestTimeout, error_from_status
from schemas import (
    InputDevice,
    PointerType,
    RecognitionResult,
    RecognitionStatus,
    Stroke,
    StrokePoint,
)
from stroke_utils import (
    REQUEST_BUILDERS,
    extract_confidence,
    extract_latex,
    extract_mathml,
    extract_text,
)

logger = logging.getLogger(__name__)


SERVICE_NAME = "MyScript API"

ENDPOINT_PATHS = {
    "batch": "/batch",
    "recognize": "/recognize",
}


class RecognitionClientConfig(BaseModel):
    """Immutable client configuration. Replace it wholesale, never field by field."""
    model_config = ConfigDict(frozen=True)

    application_key: str = ""
    hmac_key: Optional[str] = None
    api_url: str = "https://cloud.myscript.com/api/v4.0/iink"
    endpoint: Literal["batch", "recognize"] = "batch"
    timeout_ms: int = 10_000
    line_threshold: Optional[float] = None

    @classmethod
    def from_settings(cls, s: Settings) -> "RecognitionClientConfig":
        return cls(
            application_key=s.myscript_application_key,
            hmac_key=s.myscript_hmac_key or None,
            api_url=s.myscript_api_url,
            endpoint=s.myscript_endpoint,
            timeout_ms=s.recognition_timeout_ms,
        )


def compute_signature(key: str, method: str, path: str, body: str) -> str:
    """HMAC-SHA512 over METHOD + PATH + BODY, base64 encoded."""
    message = f"{method.upper()}{path}{body}"
    digest = hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha512).digest()
    return base64.b64encode(digest).decode("ascii")


class RecognitionClient:
    def __init__(
        self,
        config: RecognitionClientConfig,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._config = config
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None

    @classmethod
    def from_settings(cls, s: Settings = default_settings, **kwargs) -> "RecognitionClient":
        return cls(RecognitionClientConfig.from_settings(s), **kwargs)

    @property
    def config(self) -> RecognitionClientConfig:
        return self._config

    def configure(self, **changes) -> RecognitionClientConfig:
        """
        Swap endpoint variant, keys or URL at runtime.

        The new config replaces the old one in a single assignment; calls that
        already started keep the snapshot they read.
        """
        self._config = self._config.model_copy(update=changes)
        logger.info(f"[Recognition] Client reconfigured: {self.get_config()}")
        return self._config

    def get_config(self) -> dict:
        """Safe view of the configuration (no keys)."""
        return {
            "api_url": self._config.api_url,
            "endpoint": self._config.endpoint,
            "has_application_key": bool(self._config.application_key),
            "has_hmac_key": bool(self._config.hmac_key),
        }

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def recognize(
        self,
        strokes: Sequence[Stroke],
        use_signature: bool = True,
        pointer_type: Optional[PointerType] = None
    ) -> RecognitionResult:
        """
        Recognize a non-empty stroke batch.

        Args:
            strokes: Strokes to send, each with >= 1 point
            use_signature: Sign the request when an HMAC key is configured
            pointer_type: Override the per-stroke device mapping

        Returns:
            RecognitionResult with status success or error
        """
        config = self._config
        stroke_ids = frozenset(s.id for s in strokes)

        if not strokes:
            return RecognitionResult(
                status=RecognitionStatus.ERROR,
                error="No strokes to recognize",
                error_kind="invalid_request",
                source_stroke_ids=stroke_ids,
            )

        path = ENDPOINT_PATHS[config.endpoint]
        payload = REQUEST_BUILDERS[config.endpoint](strokes, pointer_type, config.line_threshold)
        body = json.dumps(payload, separators=(",", ":"))

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "applicationKey": config.application_key,
        }
        if use_signature and config.hmac_key:
            headers["hmac"] = compute_signature(config.hmac_key, "POST", path, body)

        try:
            response = await self._http.post(
                config.api_url.rstrip("/") + path,
                content=body,
                headers=headers,
                timeout=config.timeout_ms / 1000,
            )
        except httpx.TimeoutException as e:
            return self._error_result(
                RequestTimeout("Request timeout: API took too long to respond", cause=e),
                stroke_ids,
            )
        except httpx.TransportError as e:
            return self._error_result(error_from_status(None, cause=e, service=SERVICE_NAME), stroke_ids)

        if response.is_error:
            error = error_from_status(response.status_code, response.reason_phrase, service=SERVICE_NAME)
            return self._error_result(error, stroke_ids)

        try:
            data = response.json()
        except ValueError:
            # /recognize can answer with a bare text body
            data = response.text

        if isinstance(data, dict) and data.get("error"):
            detail = data["error"]
            message = detail.get("message") if isinstance(detail, dict) else str(detail)
            return self._error_result(UnknownError(f"Recognition error: {message}"), stroke_ids)

        latex = extract_latex(data)
        mathml = extract_mathml(data)
        text = extract_text(data)

        if not latex and not mathml and not text:
            logger.warning("[Recognition] No recognized output from API")
            return RecognitionResult(
                status=RecognitionStatus.ERROR,
                error="No recognized output from API",
                error_kind="unknown",
                source_stroke_ids=stroke_ids,
            )

        return RecognitionResult(
            status=RecognitionStatus.SUCCESS,
            latex=latex,
            mathml=mathml,
            plain_text=text,
            confidence=extract_confidence(data),
            source_stroke_ids=stroke_ids,
        )

    def _error_result(self, error: TutorError, stroke_ids: frozenset[str]) -> RecognitionResult:
        logger.warning(f"[Recognition] {error.kind}: {error.message}", exc_info=error.cause)
        return RecognitionResult(
            status=RecognitionStatus.ERROR,
            error=error.message,
            error_kind=error.kind,
            source_stroke_ids=stroke_ids,
        )

    async def test_connection(self) -> bool:
        """Send one tiny unsigned stroke and report whether recognition succeeded."""
        sample = Stroke(
            id="test-stroke",
            points=tuple(
                StrokePoint(x=x, y=10, pressure=0.5, timestamp_ms=t)
                for x, t in ((10, 0), (20, 100), (30, 200))
            ),
            device=InputDevice.STYLUS,
        )
        result = await self.recognize([sample], use_signature=False)
        if result.status != RecognitionStatus.SUCCESS:
            logger.error(f"[Recognition] Connection test failed: {result.error}")
        return result.status == RecognitionStatus.SUCCESS
