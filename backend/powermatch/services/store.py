"""
Row-level reads and writes used by the batch jobs.

Every write helper commits its own transaction, so the store is only assumed to
be atomic per row. Callers that want create+link in one transaction pass
`commit=False` and commit themselves.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models.application import Application, ApplicationStage
from ..models.power_match import PowerMatch, PowerMatchState
from ..utils.error_handlers import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)

APPLICATION_STATUS_ACTIVE = "active"
APPLICATION_STATUS_INACTIVE = "inactive"


@dataclass(frozen=True)
class MatchRef:
    """Plain snapshot of a power match handed to worker threads."""
    id: int
    user_id: int
    job_id: int
    application_id: int | None = None


def select_unresolved_matches(db: Session, *, include_viewed: bool = False) -> list[MatchRef]:
    allowed = [PowerMatchState.GENERATED.value]
    if include_viewed:
        allowed.append(PowerMatchState.VIEWED.value)
    stmt = (
        select(PowerMatch.id, PowerMatch.user_id, PowerMatch.job_id)
        .where(PowerMatch.state.in_(allowed))
        .where(PowerMatch.applied_at.is_(None))
        .order_by(PowerMatch.id)
    )
    if not include_viewed:
        stmt = stmt.where(PowerMatch.viewed_at.is_(None))
    return [MatchRef(id=r.id, user_id=r.user_id, job_id=r.job_id) for r in db.execute(stmt)]


def select_unviewed_applied_matches(db: Session, *, applied_before: datetime) -> list[MatchRef]:
    stmt = (
        select(PowerMatch.id, PowerMatch.user_id, PowerMatch.job_id, PowerMatch.application_id)
        .join(Application, Application.id == PowerMatch.application_id)
        .where(PowerMatch.state == PowerMatchState.APPLIED.value)
        .where(PowerMatch.application_id.is_not(None))
        .where(PowerMatch.applied_at.is_not(None))
        .where(PowerMatch.viewed_at.is_(None))
        .where(PowerMatch.applied_at < applied_before)
        .where(Application.stage != ApplicationStage.WITHDRAWN)
        .order_by(PowerMatch.id)
    )
    return [
        MatchRef(id=r.id, user_id=r.user_id, job_id=r.job_id, application_id=r.application_id)
        for r in db.execute(stmt)
    ]


def create_application(
    db: Session,
    *,
    user_id: int,
    job_id: int,
    match_score: float | None,
    cover_letter: str | None,
    commit: bool = True,
) -> Application:
    application = Application(
        user_id=int(user_id),
        job_id=int(job_id),
        status=APPLICATION_STATUS_ACTIVE,
        stage=ApplicationStage.APPLIED,
        cover_letter=cover_letter,
        match_score=match_score,
    )
    db.add(application)
    if commit:
        db.commit()
        db.refresh(application)
    else:
        db.flush()
    return application


def link_application(
    db: Session,
    *,
    match_id: int,
    application_id: int,
    now: datetime,
    commit: bool = True,
) -> PowerMatch:
    """
    generated/viewed -> applied as one conditional UPDATE, so two overlapping
    runs can never both link the same match.
    """
    stmt = (
        update(PowerMatch)
        .where(PowerMatch.id == int(match_id))
        .where(PowerMatch.applied_at.is_(None))
        .where(PowerMatch.application_id.is_(None))
        .values(**PowerMatch.applied_values(application_id, now))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        match = db.get(PowerMatch, int(match_id), populate_existing=True)
        if match is None:
            raise NotFoundError(f"Power match {match_id} not found")
        raise InvalidTransitionError(
            f"Power match {match_id} is already applied (application {match.application_id})",
            details={"power_match_id": match.id, "state": match.state},
        )
    if commit:
        db.commit()
    return db.get(PowerMatch, int(match_id), populate_existing=True)


def withdraw_application(db: Session, *, application_id: int) -> bool:
    """Returns False when the application was already withdrawn."""
    application = db.get(Application, int(application_id))
    if application is None:
        raise NotFoundError(f"Application {application_id} not found")
    if application.stage == ApplicationStage.WITHDRAWN:
        return False
    application.stage = ApplicationStage.WITHDRAWN
    application.status = APPLICATION_STATUS_INACTIVE
    db.commit()
    return True
