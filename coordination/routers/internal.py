"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when the polling worker is not deployed.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from coordination.core.config import settings
from coordination.core.deps import get_db
from coordination.services import auto_confirm_service


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class AutoConfirmResponse(BaseModel):
    rooms_confirmed: int
    ran_at: datetime


@router.post("/auto-confirm", response_model=AutoConfirmResponse)
def auto_confirm_travel_mode(
    x_internal_secret: str = Header(...),
    db: Session = Depends(get_db),
):
    """
    Confirm travel-mode decisions whose auto-confirm deadline has passed.

    Same sweep the worker runs on its poll interval.
    """
    verify_internal_secret(x_internal_secret)

    now = datetime.now(timezone.utc)
    confirmed = auto_confirm_service.run_sweep(db, now)

    return AutoConfirmResponse(rooms_confirmed=confirmed, ran_at=now)
