from typing import Optional
import logging

from celery import shared_task

from .container import get_container
from .notifier import SCAN_TASK_NAME

logger = logging.getLogger(__name__)


@shared_task(name=SCAN_TASK_NAME)
def scan_and_dispatch_task(owner_id: Optional[str] = None) -> int:
    """Run one agent scan. Returns the number of reminders delivered.

    ``owner_id`` is set when the scan was requested by a wake signal; the
    scan still covers every due reminder.
    """
    if owner_id:
        logger.info(f"⏰ [Tasks] Scan requested after settings change for owner {owner_id}")
    report = get_container().agent.run_once()
    return report.fired
