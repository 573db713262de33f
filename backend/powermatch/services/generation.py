import enum
import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from ..config import Settings
from ..utils.error_handlers import BatchFatalError, get_error_message
from .batch import run_bounded
from .eligibility import select_eligible_subscribers
from .match_trigger import InvalidTriggerResult, MatchTriggerClient, parse_trigger_result

logger = logging.getLogger(__name__)


class UserOutcome(str, enum.Enum):
    PROCESSED = "processed"
    FAILED = "failed"


@dataclass(frozen=True)
class _UserResult:
    subscriber_id: int
    outcome: UserOutcome
    new_matches: int = 0


@dataclass
class GenerationResult:
    message: str
    users_processed: int = 0
    users_failed: int = 0
    total_new_matches_created: int = 0

    def to_public(self) -> dict:
        return {
            "message": self.message,
            "usersProcessed": self.users_processed,
            "usersFailed": self.users_failed,
            "totalNewMatchesCreated": self.total_new_matches_created,
        }


class PowerMatchGenerator:
    """
    Generation batch: asks the scoring service to produce power matches for every
    eligible subscriber. A subscriber's failure is counted and never stops the run.
    """

    def __init__(self, settings: Settings, session_factory: sessionmaker, trigger_client: MatchTriggerClient):
        self._settings = settings
        self._session_factory = session_factory
        self._trigger = trigger_client

    def run(self) -> GenerationResult:
        try:
            with self._session_factory() as db:
                subscriber_ids = select_eligible_subscribers(db)
        except Exception as e:
            logger.exception("Error fetching eligible subscribers")
            raise BatchFatalError(
                get_error_message("batch_failed"),
                details={"stage": "select_eligible_subscribers", "reason": type(e).__name__},
            ) from e

        if not subscriber_ids:
            logger.info("No active pro users found.")
            return GenerationResult(message="No active pro users found.")

        logger.info("Found %s active pro users.", len(subscriber_ids))
        results = run_bounded(
            subscriber_ids,
            self._process_subscriber,
            max_workers=self._settings.batch_max_workers,
            on_crash=lambda sid, _e: _UserResult(subscriber_id=sid, outcome=UserOutcome.FAILED),
            describe=lambda sid: f"subscriber {sid}",
        )

        result = GenerationResult(message="Power match generation complete.")
        for r in results:
            if r.outcome is UserOutcome.PROCESSED:
                result.users_processed += 1
                result.total_new_matches_created += r.new_matches
            else:
                result.users_failed += 1

        logger.info(
            "Power match generation finished: processed=%s failed=%s new_matches=%s",
            result.users_processed,
            result.users_failed,
            result.total_new_matches_created,
        )
        return result

    def _process_subscriber(self, subscriber_id: int) -> _UserResult:
        try:
            raw = self._trigger.trigger_user_power_match(subscriber_id)
        except Exception as e:
            logger.error("Error triggering power match for user %s: %s", subscriber_id, e)
            return _UserResult(subscriber_id=subscriber_id, outcome=UserOutcome.FAILED)

        try:
            trigger_result = parse_trigger_result(raw)
        except InvalidTriggerResult as e:
            logger.error("Invalid trigger result for user %s: %s %s", subscriber_id, e.message, e.details)
            return _UserResult(subscriber_id=subscriber_id, outcome=UserOutcome.FAILED)

        if not trigger_result.succeeded:
            logger.warning(
                "Power match trigger for user %s returned status=%s: %s",
                subscriber_id,
                trigger_result.status,
                trigger_result.message,
            )
            return _UserResult(subscriber_id=subscriber_id, outcome=UserOutcome.FAILED)

        logger.info("Created %s new power matches for user %s", trigger_result.new_matches_found, subscriber_id)
        return _UserResult(
            subscriber_id=subscriber_id,
            outcome=UserOutcome.PROCESSED,
            new_matches=int(trigger_result.new_matches_found or 0),
        )
