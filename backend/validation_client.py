"""
Transport for the math-validation (UpStudy show-steps) service.

One call per attempt: POST {"input": <problem statement>, "lang": "EN"} and
return the list of solving steps. Failures are raised as taxonomy errors so
the retry policy can tell transport trouble from application errors.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from config import Settings, settings as default_settings
from errors import NetworkError, TimeoutError as RequestTimeout, UnknownError, error_from_status

logger = logging.getLogger(__name__)


SERVICE_NAME = "UpStudy API"


@dataclass(frozen=True)
class SolvingStep:
    expression: str
    description: str = ""


@dataclass(frozen=True)
class ValidationServiceConfig:
    base_url: str = "https://api.cameramath.com/v1"
    api_key: str = ""
    timeout_ms: int = 5_000

    @property
    def steps_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/show-steps"

    @classmethod
    def from_settings(cls, s: Settings) -> "ValidationServiceConfig":
        return cls(
            base_url=s.validation_api_url,
            api_key=s.validation_api_key,
            timeout_ms=s.validation_timeout_ms,
        )


def parse_solving_steps(payload: dict) -> list[SolvingStep]:
    """
    Pull {latex|expression|result, description} rows out of data.solving_steps.

    A missing or empty data block means "no solution". Any other shape is
    raised as UnknownError so the workflow can degrade to local validation.
    """
    data = payload.get("data")
    if not data:
        return []
    if not isinstance(data, dict):
        raise UnknownError(f"{SERVICE_NAME} returned malformed data: {type(data).__name__}")

    rows = data.get("solving_steps") or []
    if not isinstance(rows, list):
        raise UnknownError(f"{SERVICE_NAME} returned malformed solving_steps: {type(rows).__name__}")

    steps = []
    for raw in rows:
        if not isinstance(raw, dict):
            continue
        expression = raw.get("latex") or raw.get("expression") or raw.get("result") or ""
        description = raw.get("description") or ""
        steps.append(SolvingStep(expression=str(expression), description=str(description)))
    return steps


class MathValidationClient:
    def __init__(
        self,
        config: Optional[ValidationServiceConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config or ValidationServiceConfig.from_settings(default_settings)
        self._http = http_client or httpx.AsyncClient()
        self._owns_http = http_client is None

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": self.config.api_key,  # UpStudy API: no "Bearer" prefix
        }

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def fetch_solving_steps(self, problem_statement: str) -> list[SolvingStep]:
        payload = {"input": problem_statement, "lang": "EN"}
        logger.info(f"[Validation] Calling {SERVICE_NAME} (show-steps): {self.config.steps_url}")

        try:
            response = await self._http.post(
                self.config.steps_url,
                json=payload,
                headers=self._headers(),
                timeout=self.config.timeout_ms / 1000,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeout("Request timeout: API took too long to respond", cause=e) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: Unable to reach {SERVICE_NAME}", cause=e) from e

        if response.is_error:
            raise error_from_status(
                response.status_code,
                f"{response.reason_phrase} - {response.text[:200]}",
                service=SERVICE_NAME,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UnknownError(f"{SERVICE_NAME} returned invalid JSON", cause=e) from e

        if not isinstance(body, dict):
            raise UnknownError(f"{SERVICE_NAME} returned an unexpected payload")

        if body.get("err_msg"):
            raise UnknownError(f"{SERVICE_NAME} error: {body['err_msg']}")

        steps = parse_solving_steps(body)
        logger.info(f"[Validation] {SERVICE_NAME} returned {len(steps)} solving steps")
        return steps
