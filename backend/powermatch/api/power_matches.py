from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.power_matches import list_power_matches_for_user, mark_power_match_viewed

router = APIRouter(prefix="/power-matches", tags=["Power Matches"])


class PowerMatchViewIn(BaseModel):
    viewer_id: int = Field(..., ge=1)


@router.post("/{match_id:int}/view")
def view_power_match(match_id: int, body: PowerMatchViewIn, db: Session = Depends(get_db)):
    match = mark_power_match_viewed(db, match_id=match_id, viewer_id=body.viewer_id, now=datetime.now(timezone.utc))
    return {"success": True, "power_match": match.to_public()}


@router.get("")
def list_power_matches(user_id: int = Query(..., ge=1), db: Session = Depends(get_db)):
    matches = list_power_matches_for_user(db, user_id=user_id)
    return {"success": True, "power_matches": [m.to_public() for m in matches]}
