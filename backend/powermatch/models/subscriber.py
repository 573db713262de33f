from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base


class JobSeekerProfile(Base):
    """
    A subscriber. Eligibility for automated matching is `is_pro AND pro_active_status`.
    """
    __tablename__ = "job_seeker_profiles"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    is_pro = Column(Boolean, nullable=False, default=False)
    # Confirmed by the daily check-in; cleared again when the check-in goes stale.
    pro_active_status = Column(Boolean, nullable=False, default=False)
    last_active_check_in = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    power_matches = relationship("PowerMatch", back_populates="subscriber")
    applications = relationship("Application", back_populates="subscriber")
