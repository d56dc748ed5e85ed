import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from apps.pointcard.services.errors import CoreError
from apps.pointcard.services.loyalty.loyalty_service import LoyaltyService

log = logging.getLogger("pointcard.scheduler")

# --------------------------------------------------------
# Periodic integrity scan
#   - report only; remediation stays an explicit operator action
# --------------------------------------------------------

JOB_ID = "integrity_scan"


def run_integrity_scan(service: LoyaltyService) -> None:
    try:
        report = service.run_integrity_check()
    except CoreError as e:
        log.warning("scheduled integrity scan failed: %s", e.message)
        return

    if report.is_clean:
        log.info("scheduled integrity scan clean: %s", report.counts)
    else:
        log.warning("scheduled integrity scan found issues: %s; %s", report.counts, report.recommended_action)


def schedule_integrity_scan(
    service: LoyaltyService,
    interval_seconds: int,
    scheduler: Optional[BackgroundScheduler] = None,
) -> Optional[BackgroundScheduler]:
    """
    Register the scan every interval_seconds. Returns None (nothing scheduled)
    when the interval is not positive.
    """
    if interval_seconds <= 0:
        log.info("integrity scan scheduler disabled")
        return None

    scheduler = scheduler or BackgroundScheduler()
    scheduler.add_job(
        run_integrity_scan,
        "interval",
        seconds=interval_seconds,
        args=[service],
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    log.info("integrity scan registered, interval = %d seconds", interval_seconds)
    return scheduler
