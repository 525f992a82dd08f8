"""
Operator endpoints for source polling.
"""

from fastapi import APIRouter, Depends, HTTPException, status
import logging

from leadflow.dependencies import get_reconciler
from leadflow.schemas.workflow import SyncResultResponse, SyncStatusResponse
from leadflow.services.polling_reconciler import PollingReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


@router.post("/{source}/trigger", response_model=SyncResultResponse)
async def trigger_sync(reconciler: PollingReconciler = Depends(get_reconciler)):
    """Run one sync cycle now, outside the timer."""
    try:
        return await reconciler.trigger_manual_sync()
    except Exception as e:
        logger.error(f"Manual sync failed: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Sync failed: {str(e)}"
        )


@router.get("/{source}/status", response_model=SyncStatusResponse)
async def get_sync_status(reconciler: PollingReconciler = Depends(get_reconciler)):
    return reconciler.get_status()
