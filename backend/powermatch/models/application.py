import enum

from sqlalchemy import Column, DateTime, Enum, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class ApplicationStage(str, enum.Enum):
    APPLIED = "Applied"
    SCREENING = "Screening"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    REJECTED = "Rejected"
    WITHDRAWN = "Withdrawn"


class Application(Base):
    __tablename__ = "applications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("job_seeker_profiles.id"), nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id"), nullable=False, index=True)
    # Opaque to the pipeline apart from the "active" default written by auto-apply.
    status = Column(String(50), nullable=False, default="active")
    stage = Column(
        Enum(ApplicationStage, name="application_stage", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ApplicationStage.APPLIED,
    )
    cover_letter = Column(Text, nullable=True)
    match_score = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    subscriber = relationship("JobSeekerProfile", back_populates="applications")
    job = relationship("Job", back_populates="applications")
