"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron (every 5 minutes for the automation queue).
"""
from fastapi import APIRouter, Depends, Header, HTTPException, Query

from mailflow.core.config import settings
from mailflow.core.deps import get_automation_service
from mailflow.core.security import Principal, verify_secret
from mailflow.routers.automations import unwrap
from mailflow.schemas.automation import ProcessQueueResult
from mailflow.services.automation_service import AutomationService


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not verify_secret(x_internal_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


@router.post("/process-automation-queue", response_model=ProcessQueueResult)
async def process_automation_queue(
    limit: int | None = Query(None, ge=1, le=500),
    dry_run: bool = Query(False),
    _secret=Depends(verify_internal_secret),
    service: AutomationService = Depends(get_automation_service),
):
    """Drain due automation emails (batch size defaults to QUEUE_BATCH_SIZE)."""
    return unwrap(await service.process_queue(Principal.system(), limit=limit, dry_run=dry_run))
