"""
Auto-apply batch: turns unresolved power matches into job applications.

Per match the protocol is create-then-link:

  1. ask the scoring service for a score (a score it cannot produce is stored
     as null; an exception counts as an application error)
  2. insert the Application            -> failure counts as an application error
  3. link it on the PowerMatch         -> failure counts as an update error

An update error leaves an Application no PowerMatch points at, and the match is
selected again on the next run. Those are logged for reconciliation and never
retried inside a run. With `auto_apply_atomic` steps 2 and 3 share one
transaction, so that state cannot be produced.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import sessionmaker

from ..config import Settings
from ..utils.error_handlers import BatchFatalError, get_error_message
from .batch import run_bounded
from .match_trigger import MatchTriggerClient, coerce_match_score
from .store import MatchRef, create_application, link_application, select_unresolved_matches

logger = logging.getLogger(__name__)


class MatchOutcome(str, enum.Enum):
    APPLIED = "applied"
    APPLICATION_ERROR = "application_error"
    UPDATE_ERROR = "update_error"


@dataclass(frozen=True)
class _MatchResult:
    match_id: int
    outcome: MatchOutcome
    application_id: int | None = None


@dataclass
class AutoApplyResult:
    message: str
    matches_processed: int = 0
    applications_created: int = 0
    application_errors: int = 0
    update_errors: int = 0
    # (power_match_id, application_id) pairs that need a manual fix
    unlinked: list[tuple[int, int]] = field(default_factory=list)

    def to_public(self) -> dict:
        payload = {
            "message": self.message,
            "matchesProcessed": self.matches_processed,
            "applicationsCreated": self.applications_created,
            "applicationErrors": self.application_errors,
            "updateErrors": self.update_errors,
        }
        if self.unlinked:
            payload["reconciliationRequired"] = [
                {"powerMatchId": match_id, "applicationId": application_id}
                for match_id, application_id in sorted(self.unlinked)
            ]
        return payload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AutoApplyExecutor:
    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        scorer: MatchTriggerClient,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._scorer = scorer
        self._clock = clock

    def run(self) -> AutoApplyResult:
        include_viewed = self._settings.auto_apply_policy == "include_viewed"
        try:
            with self._session_factory() as db:
                matches = select_unresolved_matches(db, include_viewed=include_viewed)
        except Exception as e:
            logger.exception("Error fetching power matches")
            raise BatchFatalError(
                get_error_message("batch_failed"),
                details={"stage": "select_unresolved_matches", "reason": type(e).__name__},
            ) from e

        if not matches:
            logger.info("No power matches found requiring application.")
            return AutoApplyResult(message="No power matches found requiring application.")

        logger.info(
            "Found %s power matches to apply for (policy=%s, atomic=%s).",
            len(matches),
            self._settings.auto_apply_policy,
            self._settings.auto_apply_atomic,
        )
        results = run_bounded(
            matches,
            self._process_match,
            max_workers=self._settings.batch_max_workers,
            on_crash=lambda ref, _e: _MatchResult(match_id=ref.id, outcome=MatchOutcome.APPLICATION_ERROR),
            describe=lambda ref: f"power match {ref.id}",
        )

        result = AutoApplyResult(message="Auto-apply process complete.", matches_processed=len(matches))
        for r in results:
            if r.outcome is MatchOutcome.APPLIED:
                result.applications_created += 1
            elif r.outcome is MatchOutcome.UPDATE_ERROR:
                result.update_errors += 1
                result.unlinked.append((r.match_id, r.application_id))
            else:
                result.application_errors += 1

        if result.update_errors:
            logger.error(
                "Auto-apply left %s applications without a linked power match; reconciliation required: %s",
                result.update_errors,
                sorted(result.unlinked),
            )
        logger.info(
            "Auto-apply finished: processed=%s created=%s application_errors=%s update_errors=%s",
            result.matches_processed,
            result.applications_created,
            result.application_errors,
            result.update_errors,
        )
        return result

    def _score(self, ref: MatchRef) -> float | None:
        raw = self._scorer.calculate_match_score(ref.user_id, ref.job_id)
        score = coerce_match_score(raw)
        if score is None:
            logger.warning("Non-numeric match score for power match %s: %r", ref.id, raw)
        return score

    def _process_match(self, ref: MatchRef) -> _MatchResult:
        try:
            score = self._score(ref)
        except Exception as e:
            logger.error("Error calculating match score for power match %s: %s", ref.id, e)
            return _MatchResult(match_id=ref.id, outcome=MatchOutcome.APPLICATION_ERROR)

        if self._settings.auto_apply_atomic:
            return self._apply_atomically(ref, score)

        with self._session_factory() as db:
            try:
                application = create_application(
                    db,
                    user_id=ref.user_id,
                    job_id=ref.job_id,
                    match_score=score,
                    cover_letter=self._settings.auto_apply_cover_letter,
                )
            except Exception as e:
                db.rollback()
                logger.error("Error creating application for power match %s: %s", ref.id, e)
                return _MatchResult(match_id=ref.id, outcome=MatchOutcome.APPLICATION_ERROR)

            application_id = int(application.id)
            logger.info("Application %s created for power match %s.", application_id, ref.id)

            try:
                link_application(db, match_id=ref.id, application_id=application_id, now=self._clock())
            except Exception as e:
                db.rollback()
                logger.error(
                    "Error updating power match %s after application %s (reconciliation required): %s",
                    ref.id,
                    application_id,
                    e,
                )
                return _MatchResult(match_id=ref.id, outcome=MatchOutcome.UPDATE_ERROR, application_id=application_id)

        return _MatchResult(match_id=ref.id, outcome=MatchOutcome.APPLIED, application_id=application_id)

    def _apply_atomically(self, ref: MatchRef, score: float | None) -> _MatchResult:
        with self._session_factory() as db:
            try:
                application = create_application(
                    db,
                    user_id=ref.user_id,
                    job_id=ref.job_id,
                    match_score=score,
                    cover_letter=self._settings.auto_apply_cover_letter,
                    commit=False,
                )
                link_application(db, match_id=ref.id, application_id=application.id, now=self._clock(), commit=False)
                db.commit()
            except Exception as e:
                db.rollback()
                logger.error("Error applying for power match %s, transaction rolled back: %s", ref.id, e)
                return _MatchResult(match_id=ref.id, outcome=MatchOutcome.APPLICATION_ERROR)
            application_id = int(application.id)

        logger.info("Application %s created and linked for power match %s.", application_id, ref.id)
        return _MatchResult(match_id=ref.id, outcome=MatchOutcome.APPLIED, application_id=application_id)
