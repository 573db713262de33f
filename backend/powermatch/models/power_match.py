import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, case
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.error_handlers import InvalidTransitionError


class PowerMatchState(str, enum.Enum):
    GENERATED = "generated"
    VIEWED = "viewed"
    APPLIED = "applied"


class PowerMatch(Base):
    """
    A system-proposed subscriber <-> job pairing.

    Lifecycle is an explicit tag (`state`) with the timestamps as payload:

        generated -> viewed -> applied
        generated ----------> applied

    `applied` is terminal: `applied_at`, `application_id` and `match_score` are
    never written again. A subscriber can still open an applied match, which
    stamps `viewed_at` once without leaving `applied`.
    """
    __tablename__ = "power_matches"
    __table_args__ = (
        CheckConstraint(
            "(applied_at IS NULL AND application_id IS NULL) OR (applied_at IS NOT NULL AND application_id IS NOT NULL)",
            name="ck_power_matches_applied_link",
        ),
        CheckConstraint(
            "state IN ('generated', 'viewed', 'applied')",
            name="ck_power_matches_state",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("job_seeker_profiles.id"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    match_score = Column(Float, nullable=True)
    state = Column(String(20), nullable=False, default=PowerMatchState.GENERATED.value, index=True)
    viewed_at = Column(DateTime(timezone=True), nullable=True)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    subscriber = relationship("JobSeekerProfile", back_populates="power_matches")
    job = relationship("Job")
    application = relationship("Application")

    @staticmethod
    def viewed_values(now: datetime) -> dict:
        """
        Column values for the first view. Meant for an UPDATE guarded by
        `viewed_at IS NULL`; the state only moves when it is still `generated`.
        """
        return {
            "viewed_at": now,
            "state": case(
                (PowerMatch.state == PowerMatchState.GENERATED.value, PowerMatchState.VIEWED.value),
                else_=PowerMatch.state,
            ),
        }

    @staticmethod
    def applied_values(application_id: int | None, now: datetime) -> dict:
        """Column values for generated/viewed -> applied, guarded by `applied_at IS NULL`."""
        if not application_id:
            raise InvalidTransitionError("A power match cannot be applied without an application id")
        return {
            "application_id": int(application_id),
            "applied_at": now,
            "state": PowerMatchState.APPLIED.value,
        }

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "job_id": self.job_id,
            "match_score": self.match_score,
            "state": self.state,
            "viewed_at": self.viewed_at.isoformat() if self.viewed_at else None,
            "applied_at": self.applied_at.isoformat() if self.applied_at else None,
            "application_id": self.application_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
