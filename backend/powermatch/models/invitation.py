from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func

from ..database import Base

INVITATION_PENDING = "pending"
INVITATION_ACCEPTED = "accepted"
INVITATION_DECLINED = "declined"
INVITATION_RESPONSES = (INVITATION_ACCEPTED, INVITATION_DECLINED)


class CandidateInvitation(Base):
    __tablename__ = "candidate_invitations"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')",
            name="ck_candidate_invitations_status",
        ),
        CheckConstraint(
            "status = 'pending' OR responded_at IS NOT NULL",
            name="ck_candidate_invitations_responded_at",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    candidate_id = Column(Integer, ForeignKey("job_seeker_profiles.id"), nullable=False, index=True)
    employer_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default=INVITATION_PENDING)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    responded_at = Column(DateTime(timezone=True), nullable=True)
