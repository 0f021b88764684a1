"""Scheduled cron jobs for background tasks."""

from dataclasses import dataclass
from typing import Callable, Iterable

from fastapi_utils.tasks import repeat_every

from donorsync.database import Database
from donorsync.exceptions import SyncRejectedError
from donorsync.logging_config import get_logger
from donorsync.services.sync_service import SyncCoordinator


logger = get_logger("cron")


@dataclass
class ScheduledSyncSummary:
    started: int = 0
    skipped: int = 0
    errors: int = 0


def trigger_connected_accounts(
    coordinator: SyncCoordinator,
    connections: Iterable[dict],
) -> ScheduledSyncSummary:
    """
    Start a sync for every connected (account, provider) pair.

    Pre-flight rejections (already running, synced recently, key removed)
    are expected on a schedule and count as skipped.
    """
    summary = ScheduledSyncSummary()

    for connection in connections:
        account_id = connection["account_id"]
        provider = connection["provider"]
        try:
            coordinator.start_sync(account_id, provider)
            summary.started += 1
        except SyncRejectedError as e:
            logger.info(f"[CRON] Skipping {provider} for account {account_id}: {e}")
            summary.skipped += 1
        except Exception:
            logger.exception(f"[CRON] Error starting {provider} sync for account {account_id}")
            summary.errors += 1

    logger.info(
        f"[CRON] CRM sync trigger complete: {summary.started} started, "
        f"{summary.skipped} skipped, {summary.errors} errors"
    )
    return summary


def schedule_crm_sync(
    coordinator: SyncCoordinator,
    db: Database,
    interval_seconds: int,
) -> Callable:
    """Build the repeating task; await the result once from the app lifespan."""

    @repeat_every(seconds=interval_seconds, wait_first=interval_seconds, logger=logger)
    def sync_connected_crms() -> None:
        """
        Auto-sync every connected CRM.

        The coordinator's minimum-interval throttle keeps this from
        re-syncing accounts a user just synced by hand.
        """
        logger.info("[CRON] Starting scheduled CRM sync...")
        connections = db.get_crm_connections(coordinator.adapters.providers())
        if not connections:
            logger.info("[CRON] No connected CRMs to sync")
            return
        trigger_connected_accounts(coordinator, connections)

    return sync_connected_crms
