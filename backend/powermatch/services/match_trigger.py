"""
Client for the hosted scoring service.

The pipeline only depends on two operations:

  * trigger_user_power_match(subscriber_id) -> {status, message, newMatchesFound}
  * calculate_match_score(subscriber_id, job_id) -> number

How the service finds jobs or computes a score is opaque here.
"""
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, model_validator

from ..config import Settings
from ..utils.error_handlers import MatchTriggerError

logger = logging.getLogger(__name__)

TRIGGER_STATUS_SUCCESS = "success"

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class InvalidTriggerResult(MatchTriggerError):
    """The trigger call answered, but not with a well-formed result."""


class MatchTriggerHTTPError(MatchTriggerError):
    """The service answered with an error status."""
    def __init__(self, message: str, *, status_code: int, body: str = ""):
        super().__init__(message, details={"status_code": status_code, "body": body})
        self.upstream_status = status_code


class TriggerResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: StrictStr
    message: str | None = None
    new_matches_found: StrictInt | None = Field(default=None, alias="newMatchesFound", ge=0)

    @model_validator(mode="after")
    def _count_required_on_success(self) -> "TriggerResult":
        if self.status == TRIGGER_STATUS_SUCCESS and self.new_matches_found is None:
            raise ValueError("newMatchesFound is required when status is 'success'")
        return self

    @property
    def succeeded(self) -> bool:
        return self.status == TRIGGER_STATUS_SUCCESS


def parse_trigger_result(payload: Any) -> TriggerResult:
    if not isinstance(payload, dict):
        raise InvalidTriggerResult(
            f"Trigger result must be an object, got {type(payload).__name__}",
        )
    try:
        return TriggerResult.model_validate(payload)
    except ValidationError as e:
        raise InvalidTriggerResult(
            "Trigger result is malformed",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def coerce_match_score(value: Any) -> float | None:
    """Numbers pass through, anything else (including bools) becomes None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class MatchTriggerClient(ABC):
    """External scoring capability the batches depend on."""

    @abstractmethod
    def trigger_user_power_match(self, subscriber_id: int) -> Any:
        """Ask the service to generate power matches for one subscriber; returns the raw result."""

    @abstractmethod
    def calculate_match_score(self, subscriber_id: int, job_id: int) -> Any:
        """
        Return the subscriber/job match score.

        A score the service could not produce comes back as None (or any
        non-number). Raising is reserved for unexpected failures.
        """

    def close(self) -> None:
        return None


class HttpMatchTriggerClient(MatchTriggerClient):
    """
    Calls the service's RPC endpoints:

      POST {base}/rpc/trigger_user_power_match   {"p_user_id": ...}
      POST {base}/rpc/calculate_match_score      {"p_user_id": ..., "p_job_id": ...}

    Timeouts and transient-error retries live here, not in the batches.
    """

    def __init__(self, settings: Settings, *, transport: httpx.BaseTransport | None = None):
        if not settings.scoring_service_url:
            raise MatchTriggerError("Missing SCORING_SERVICE_URL")
        headers = {"content-type": "application/json"}
        if settings.scoring_service_key:
            headers["apikey"] = settings.scoring_service_key
            headers["Authorization"] = f"Bearer {settings.scoring_service_key}"
        self._max_retries = max(0, int(settings.scoring_max_retries))
        self._client = httpx.Client(
            base_url=settings.scoring_service_url.rstrip("/"),
            timeout=settings.scoring_timeout_s,
            headers=headers,
            transport=transport,
        )

    def trigger_user_power_match(self, subscriber_id: int) -> Any:
        return self._rpc("trigger_user_power_match", {"p_user_id": subscriber_id})

    def calculate_match_score(self, subscriber_id: int, job_id: int) -> Any:
        try:
            return self._rpc("calculate_match_score", {"p_user_id": subscriber_id, "p_job_id": job_id})
        except MatchTriggerHTTPError as e:
            logger.warning("calculate_match_score rejected for user %s job %s: %s", subscriber_id, job_id, e.message)
            return None

    def close(self) -> None:
        self._client.close()

    def _rpc(self, name: str, body: dict[str, Any]) -> Any:
        path = f"/rpc/{name}"
        for attempt in range(self._max_retries + 1):
            start = time.perf_counter()
            try:
                r = self._client.post(path, json=body)
            except httpx.TimeoutException:
                if attempt < self._max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("%s timeout; retrying in %.1fs", name, backoff)
                    time.sleep(backoff)
                    continue
                raise MatchTriggerError(f"{name} timed out") from None
            except httpx.RequestError as e:
                if attempt < self._max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("%s network error (%s); retrying in %.1fs", name, type(e).__name__, backoff)
                    time.sleep(backoff)
                    continue
                raise MatchTriggerError(f"{name} request failed: {type(e).__name__}") from e

            if r.status_code >= 400:
                if r.status_code in _RETRYABLE_STATUS and attempt < self._max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("%s HTTP %s; retrying in %.1fs", name, r.status_code, backoff)
                    time.sleep(backoff)
                    continue
                raise MatchTriggerHTTPError(
                    f"{name} failed with HTTP {r.status_code}",
                    status_code=r.status_code,
                    body=(r.text or "")[:500],
                )

            logger.debug(
                "%s ok status=%s latency_ms=%s retries=%s",
                name,
                r.status_code,
                int((time.perf_counter() - start) * 1000),
                attempt,
            )
            try:
                return r.json()
            except ValueError as e:
                raise InvalidTriggerResult(f"{name} returned a non-JSON body") from e

        # Should be unreachable
        raise MatchTriggerError(f"{name} failed after {self._max_retries} retries")


class UnconfiguredMatchTriggerClient(MatchTriggerClient):
    """Stand-in used when SCORING_SERVICE_URL is unset: every call fails as an item error."""

    def trigger_user_power_match(self, subscriber_id: int) -> Any:
        raise MatchTriggerError("Scoring service is not configured (SCORING_SERVICE_URL)")

    def calculate_match_score(self, subscriber_id: int, job_id: int) -> Any:
        raise MatchTriggerError("Scoring service is not configured (SCORING_SERVICE_URL)")


def build_match_trigger_client(settings: Settings) -> MatchTriggerClient:
    if not settings.scoring_service_url:
        logger.warning("SCORING_SERVICE_URL is not set; power match triggers and scoring will fail per item")
        return UnconfiguredMatchTriggerClient()
    return HttpMatchTriggerClient(settings)
