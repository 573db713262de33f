"""
Batch entry points, invoked by the scheduler (cron) or an operator.

Every route requires `Authorization: Bearer <FUNCTION_SECRET>`, answers 200 once
the batch ran (partial failures included) and 500 when the batch could not
select its items.
"""
from datetime import datetime, timedelta, timezone
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from ..config import Settings
from ..services.auto_apply import AutoApplyExecutor
from ..services.eligibility import deactivate_stale_subscribers
from ..services.generation import PowerMatchGenerator
from ..services.match_trigger import MatchTriggerClient
from ..services.view_checker import PowerMatchViewChecker
from ..utils.error_handlers import BatchFatalError, create_error_response
from ..utils.security import FUNCTION_CORS_HEADERS, require_function_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["Functions"])

FUNCTION_NAMES = {
    "generate-power-matches",
    "auto-apply-power-matches",
    "check-power-match-views",
    "deactivate-inactive-subscribers",
}


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _match_trigger_client(request: Request) -> MatchTriggerClient:
    return request.app.state.match_trigger_client


def _ok(payload: dict) -> JSONResponse:
    return JSONResponse(status_code=200, content=payload, headers=FUNCTION_CORS_HEADERS)


def _batch_failed(name: str, exc: BatchFatalError) -> JSONResponse:
    logger.error("Error in %s function: %s %s", name, exc.message, exc.details)
    return create_error_response(500, exc.message, exc.details, headers=FUNCTION_CORS_HEADERS)


async def function_preflight_middleware(request: Request, call_next):
    """
    Answer `OPTIONS /functions/<name>` before the app-wide CORS middleware sees
    it. Schedulers call from arbitrary origins, so these routes always get the
    fixed permissive header set.
    """
    if request.method == "OPTIONS" and request.url.path.startswith(router.prefix + "/"):
        function_name = request.url.path[len(router.prefix) + 1:].rstrip("/")
        if function_name in FUNCTION_NAMES:
            return Response(status_code=200, headers=FUNCTION_CORS_HEADERS)
    return await call_next(request)


@router.post("/generate-power-matches", dependencies=[Depends(require_function_secret)])
def generate_power_matches(request: Request):
    generator = PowerMatchGenerator(
        _settings(request),
        request.app.state.session_factory,
        _match_trigger_client(request),
    )
    try:
        result = generator.run()
    except BatchFatalError as e:
        return _batch_failed("generate-power-matches", e)
    return _ok(result.to_public())


@router.post("/auto-apply-power-matches", dependencies=[Depends(require_function_secret)])
def auto_apply_power_matches(request: Request):
    executor = AutoApplyExecutor(
        _settings(request),
        request.app.state.session_factory,
        _match_trigger_client(request),
    )
    try:
        result = executor.run()
    except BatchFatalError as e:
        return _batch_failed("auto-apply-power-matches", e)
    return _ok(result.to_public())


@router.post("/check-power-match-views", dependencies=[Depends(require_function_secret)])
def check_power_match_views(request: Request):
    checker = PowerMatchViewChecker(_settings(request), request.app.state.session_factory)
    try:
        result = checker.run()
    except BatchFatalError as e:
        return _batch_failed("check-power-match-views", e)
    return _ok(result.to_public())


@router.post("/deactivate-inactive-subscribers", dependencies=[Depends(require_function_secret)])
def deactivate_inactive_subscribers(request: Request):
    settings = _settings(request)
    try:
        with request.app.state.session_factory() as db:
            count = deactivate_stale_subscribers(
                db,
                now=datetime.now(timezone.utc),
                max_age=timedelta(hours=settings.check_in_max_age_hours),
            )
    except Exception as e:
        logger.exception("Error deactivating inactive subscribers")
        return _batch_failed(
            "deactivate-inactive-subscribers",
            BatchFatalError("Failed to deactivate inactive subscribers", details={"reason": type(e).__name__}),
        )
    return _ok({"message": "Inactive subscriber deactivation complete.", "subscribersDeactivated": count})
