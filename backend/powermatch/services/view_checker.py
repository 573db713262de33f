import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.orm import sessionmaker

from ..config import Settings
from ..utils.error_handlers import BatchFatalError, get_error_message
from .batch import run_bounded
from .store import MatchRef, select_unviewed_applied_matches, withdraw_application

logger = logging.getLogger(__name__)


class WithdrawalOutcome(str, enum.Enum):
    WITHDRAWN = "withdrawn"
    ALREADY_WITHDRAWN = "already_withdrawn"
    FAILED = "failed"


@dataclass
class ViewCheckResult:
    message: str
    matches_checked: int = 0
    applications_withdrawn: int = 0
    withdrawal_errors: int = 0

    def to_public(self) -> dict:
        return {
            "message": self.message,
            "matchesChecked": self.matches_checked,
            "applicationsWithdrawn": self.applications_withdrawn,
            "withdrawalErrors": self.withdrawal_errors,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PowerMatchViewChecker:
    """
    Withdraws auto-filed applications the subscriber never looked at.

    A match qualifies once it has been applied for longer than
    `withdraw_after_days` with `viewed_at` still empty. Only the Application row
    changes; the PowerMatch keeps its link.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: sessionmaker,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._settings = settings
        self._session_factory = session_factory
        self._clock = clock

    def run(self) -> ViewCheckResult:
        cutoff = self._clock() - timedelta(days=self._settings.withdraw_after_days)
        logger.info("Checking for unviewed power matches applied before: %s", cutoff.isoformat())
        try:
            with self._session_factory() as db:
                matches = select_unviewed_applied_matches(db, applied_before=cutoff)
        except Exception as e:
            logger.exception("Error fetching power matches to check")
            raise BatchFatalError(
                get_error_message("batch_failed"),
                details={"stage": "select_unviewed_applied_matches", "reason": type(e).__name__},
            ) from e

        if not matches:
            logger.info("No unviewed power matches found requiring withdrawal.")
            return ViewCheckResult(message="No unviewed power matches found requiring withdrawal.")

        outcomes = run_bounded(
            matches,
            self._withdraw,
            max_workers=self._settings.batch_max_workers,
            on_crash=lambda _ref, _e: WithdrawalOutcome.FAILED,
            describe=lambda ref: f"power match {ref.id}",
        )
        result = ViewCheckResult(
            message="Check power match views process complete.",
            matches_checked=len(matches),
            applications_withdrawn=outcomes.count(WithdrawalOutcome.WITHDRAWN),
            withdrawal_errors=outcomes.count(WithdrawalOutcome.FAILED),
        )
        logger.info(
            "View check finished: checked=%s withdrawn=%s errors=%s",
            result.matches_checked,
            result.applications_withdrawn,
            result.withdrawal_errors,
        )
        return result

    def _withdraw(self, ref: MatchRef) -> WithdrawalOutcome:
        with self._session_factory() as db:
            try:
                changed = withdraw_application(db, application_id=ref.application_id)
            except Exception as e:
                db.rollback()
                logger.error(
                    "Error withdrawing application %s for power match %s: %s",
                    ref.application_id,
                    ref.id,
                    e,
                )
                return WithdrawalOutcome.FAILED
        if not changed:
            return WithdrawalOutcome.ALREADY_WITHDRAWN
        logger.info("Application %s withdrawn for unviewed power match %s.", ref.application_id, ref.id)
        return WithdrawalOutcome.WITHDRAWN
