"""CRM sync router - trigger and monitor CRM data syncs."""

import math

from fastapi import APIRouter, Depends, HTTPException, status

from donorsync.dependencies import get_current_account_id, get_sync_coordinator
from donorsync.exceptions import (
    AlreadyRunningError,
    NoCredentialError,
    ServiceShuttingDownError,
    TooSoonError,
    UnknownProviderError,
)
from donorsync.schemas.sync import SyncJobResponse, SyncStatusResponse, SyncTriggerResponse
from donorsync.services.sync_service import SyncCoordinator


router = APIRouter(prefix="/crm-integrations", tags=["CRM Sync"])


@router.post("/{provider}/sync", response_model=SyncTriggerResponse)
async def trigger_sync(
    provider: str,
    account_id: str = Depends(get_current_account_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """
    Start a full sync from the CRM.

    Returns as soon as the job is created; the fetch runs in the background.
    Poll GET /crm-integrations/{provider}/sync for progress.
    """
    try:
        job = coordinator.start_sync(account_id, provider)
    except UnknownProviderError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid CRM provider",
        )
    except AlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except TooSoonError as e:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(e),
            headers={"Retry-After": str(math.ceil(e.retry_after.total_seconds()))},
        )
    except NoCredentialError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ServiceShuttingDownError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    display_name = coordinator.adapters.get(provider).display_name
    return SyncTriggerResponse(
        sync_id=job.id,
        message=f"Started syncing data from {display_name}. This may take a few minutes.",
    )


@router.get("/{provider}/sync", response_model=SyncStatusResponse)
async def get_sync_status(
    provider: str,
    account_id: str = Depends(get_current_account_id),
    coordinator: SyncCoordinator = Depends(get_sync_coordinator),
):
    """Latest sync jobs for the current account and provider."""
    try:
        jobs = coordinator.get_sync_status(account_id, provider)
    except UnknownProviderError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid CRM provider",
        )
    return SyncStatusResponse(logs=[SyncJobResponse.from_job(job) for job in jobs])
