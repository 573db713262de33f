from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.eligibility import record_daily_check_in, subscriber_to_public

router = APIRouter(prefix="/subscribers", tags=["Subscribers"])


@router.post("/{subscriber_id:int}/check-in")
def daily_check_in(subscriber_id: int, db: Session = Depends(get_db)):
    """Subscriber confirms they are still actively searching today."""
    profile = record_daily_check_in(db, subscriber_id=subscriber_id, now=datetime.now(timezone.utc))
    return {"success": True, "subscriber": subscriber_to_public(profile)}
