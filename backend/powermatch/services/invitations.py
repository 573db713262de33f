"""
Candidate response to an employer invitation.

    pending -> accepted
    pending -> declined

Both outcomes are terminal. The transition is one conditional UPDATE, so a
concurrent second response can never overwrite the first.
"""
import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models.invitation import (
    INVITATION_PENDING,
    INVITATION_RESPONSES,
    CandidateInvitation,
)
from ..utils.error_handlers import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    get_error_message,
)

logger = logging.getLogger(__name__)


def respond_to_invitation(
    db: Session,
    *,
    invitation_id: int,
    responder_id: int,
    decision: str,
    now: datetime,
) -> CandidateInvitation:
    decision = (decision or "").strip().lower()
    if decision not in INVITATION_RESPONSES:
        raise ValidationError(get_error_message("invalid_response"), details={"status": decision})

    stmt = (
        update(CandidateInvitation)
        .where(CandidateInvitation.id == int(invitation_id))
        .where(CandidateInvitation.candidate_id == int(responder_id))
        .where(CandidateInvitation.status == INVITATION_PENDING)
        .values(status=decision, responded_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount == 1:
        db.commit()
        invitation = db.get(CandidateInvitation, int(invitation_id), populate_existing=True)
        logger.info("Invitation %s %s by candidate %s", invitation_id, decision, responder_id)
        return invitation

    # Nothing changed; work out why without touching the row.
    db.rollback()
    invitation = db.get(CandidateInvitation, int(invitation_id))
    if invitation is None:
        raise NotFoundError(get_error_message("invitation_not_found"))
    if int(invitation.candidate_id) != int(responder_id):
        logger.warning("User %s tried to respond to invitation %s of candidate %s", responder_id, invitation_id, invitation.candidate_id)
        raise ForbiddenError(get_error_message("invitation_forbidden"))
    raise InvalidStateError(
        get_error_message("invitation_not_pending"),
        details={"invitation_id": invitation.id, "status": invitation.status},
    )


def list_invitations_for_candidate(
    db: Session,
    *,
    candidate_id: int,
    status: str | None = None,
) -> list[CandidateInvitation]:
    stmt = select(CandidateInvitation).where(CandidateInvitation.candidate_id == int(candidate_id))
    if status:
        stmt = stmt.where(CandidateInvitation.status == status)
    stmt = stmt.order_by(CandidateInvitation.created_at.desc(), CandidateInvitation.id.desc())
    return list(db.scalars(stmt))


def invitation_to_public(invitation: CandidateInvitation) -> dict:
    return {
        "id": invitation.id,
        "job_id": invitation.job_id,
        "candidate_id": invitation.candidate_id,
        "employer_id": invitation.employer_id,
        "status": invitation.status,
        "message": invitation.message,
        "created_at": invitation.created_at.isoformat() if invitation.created_at else None,
        "responded_at": invitation.responded_at.isoformat() if invitation.responded_at else None,
    }
