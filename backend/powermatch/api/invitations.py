from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.invitations import invitation_to_public, list_invitations_for_candidate, respond_to_invitation
from ..utils.validation import validate_invitation_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/invitations", tags=["Invitations"])


class InvitationResponseIn(BaseModel):
    # Identity is resolved upstream; this service only checks it matches the invitee.
    responder_id: int = Field(..., ge=1)
    status: str = Field(..., min_length=1, max_length=20)


@router.post("/{invitation_id:int}/respond")
def respond(invitation_id: int, body: InvitationResponseIn, db: Session = Depends(get_db)):
    invitation = respond_to_invitation(
        db,
        invitation_id=invitation_id,
        responder_id=body.responder_id,
        decision=body.status,
        now=datetime.now(timezone.utc),
    )
    return {"success": True, "invitation": invitation_to_public(invitation)}


@router.get("")
def list_invitations(
    candidate_id: int = Query(..., ge=1),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    status = validate_invitation_status(status, required=False)
    invitations = list_invitations_for_candidate(db, candidate_id=candidate_id, status=status)
    return {"success": True, "invitations": [invitation_to_public(i) for i in invitations]}
