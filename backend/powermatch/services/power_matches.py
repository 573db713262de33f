import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models.power_match import PowerMatch
from ..utils.error_handlers import ForbiddenError, NotFoundError, get_error_message

logger = logging.getLogger(__name__)


def mark_power_match_viewed(db: Session, *, match_id: int, viewer_id: int, now: datetime) -> PowerMatch:
    """
    Stamp the first view. Opening an already-viewed or applied match changes
    nothing; an applied match keeps its state.
    """
    match = db.get(PowerMatch, int(match_id))
    if match is None:
        raise NotFoundError(get_error_message("power_match_not_found"))
    if int(match.user_id) != int(viewer_id):
        raise ForbiddenError(get_error_message("power_match_forbidden"))

    stmt = (
        update(PowerMatch)
        .where(PowerMatch.id == match.id)
        .where(PowerMatch.viewed_at.is_(None))
        .values(**PowerMatch.viewed_values(now))
        .execution_options(synchronize_session=False)
    )
    if db.execute(stmt).rowcount == 1:
        db.commit()
        match = db.get(PowerMatch, match.id, populate_existing=True)
        logger.info("Power match %s viewed by user %s (state=%s)", match.id, viewer_id, match.state)
    else:
        db.rollback()
    return match


def list_power_matches_for_user(db: Session, *, user_id: int) -> list[PowerMatch]:
    stmt = (
        select(PowerMatch)
        .where(PowerMatch.user_id == int(user_id))
        .order_by(PowerMatch.created_at.desc(), PowerMatch.id.desc())
    )
    return list(db.scalars(stmt))
