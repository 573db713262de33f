import logging
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from ..models.subscriber import JobSeekerProfile
from ..utils.error_handlers import NotFoundError, ValidationError, get_error_message

logger = logging.getLogger(__name__)


def select_eligible_subscribers(db: Session) -> list[int]:
    """
    Subscribers entitled to automated matching: Pro subscription AND a confirmed
    daily check-in. An empty list is a normal outcome.
    """
    stmt = (
        select(JobSeekerProfile.id)
        .where(JobSeekerProfile.is_pro.is_(True))
        .where(JobSeekerProfile.pro_active_status.is_(True))
        .order_by(JobSeekerProfile.id)
    )
    return [int(row) for row in db.scalars(stmt)]


def record_daily_check_in(db: Session, *, subscriber_id: int, now: datetime) -> JobSeekerProfile:
    profile = db.get(JobSeekerProfile, int(subscriber_id))
    if profile is None:
        raise NotFoundError(get_error_message("subscriber_not_found"))
    if not profile.is_pro:
        raise ValidationError(get_error_message("not_pro"))

    profile.pro_active_status = True
    profile.last_active_check_in = now
    db.commit()
    db.refresh(profile)
    logger.info("Daily check-in recorded for subscriber %s", profile.id)
    return profile


def deactivate_stale_subscribers(db: Session, *, now: datetime, max_age: timedelta) -> int:
    """Clear the active-search flag for Pro subscribers whose check-in has lapsed."""
    cutoff = now - max_age
    stmt = (
        update(JobSeekerProfile)
        .where(JobSeekerProfile.is_pro.is_(True))
        .where(JobSeekerProfile.pro_active_status.is_(True))
        .where(
            or_(
                JobSeekerProfile.last_active_check_in.is_(None),
                JobSeekerProfile.last_active_check_in < cutoff,
            )
        )
        .values(pro_active_status=False)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    count = int(result.rowcount or 0)
    logger.info("Deactivated %s subscribers with check-ins older than %s", count, cutoff.isoformat())
    return count


def subscriber_to_public(profile: JobSeekerProfile) -> dict:
    return {
        "id": profile.id,
        "is_pro": bool(profile.is_pro),
        "pro_active_status": bool(profile.pro_active_status),
        "last_active_check_in": profile.last_active_check_in.isoformat() if profile.last_active_check_in else None,
    }
