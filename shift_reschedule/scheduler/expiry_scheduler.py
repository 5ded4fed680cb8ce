"""Background jobs: expiry sweep and notification dispatch."""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session
from typing import Callable, Optional
import logging

from shift_reschedule.config import settings
from shift_reschedule.database import SessionLocal
from shift_reschedule.services.notification_service import EventBus, NotificationService, event_bus
from shift_reschedule.services.reschedule_service import RescheduleService


logger = logging.getLogger(__name__)


# Global scheduler instance
scheduler = AsyncIOScheduler()


def sweep_expired_requests(session_factory: Optional[Callable[[], Session]] = None) -> int:
    """
    Expire every lapsed reschedule request.

    This function is called by the scheduler at a fixed interval. Lapsed
    requests are also expired lazily when read, so the sweep only bounds
    how long a stale request can sit unnoticed.

    Returns:
        Number of requests expired, 0 on error
    """
    db = (session_factory or SessionLocal)()
    try:
        count = RescheduleService(db).expire_stale_requests()
        logger.info(f"Expiry sweep completed. Expired {count} request(s).")
        return count
    except Exception as e:
        logger.error(f"Error during expiry sweep: {str(e)}", exc_info=True)
        return 0
    finally:
        db.close()


def dispatch_pending_notifications(
    session_factory: Optional[Callable[[], Session]] = None,
    bus: Optional[EventBus] = None
) -> int:
    """
    Deliver due notification outbox rows to the event bus.

    Called by the scheduler and after each API mutation.

    Returns:
        Number of events delivered, 0 on error
    """
    db = (session_factory or SessionLocal)()
    try:
        return NotificationService(db, bus=bus or event_bus).dispatch_pending()
    except Exception as e:
        logger.error(f"Error during notification dispatch: {str(e)}", exc_info=True)
        return 0
    finally:
        db.close()


def start_scheduler():
    """
    Start the background scheduler.

    Configures the expiry sweep every expiry_sweep_interval_minutes and
    the notification dispatcher every notification_dispatch_interval_seconds.
    """
    scheduler.add_job(
        sweep_expired_requests,
        trigger=IntervalTrigger(minutes=settings.expiry_sweep_interval_minutes),
        id='reschedule_expiry_sweep',
        name='Reschedule Expiry Sweep',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )
    scheduler.add_job(
        dispatch_pending_notifications,
        trigger=IntervalTrigger(seconds=settings.notification_dispatch_interval_seconds),
        id='reschedule_notification_dispatch',
        name='Reschedule Notification Dispatch',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    logger.info(
        f"Scheduler configured: expiry sweep every {settings.expiry_sweep_interval_minutes} min, "
        f"notification dispatch every {settings.notification_dispatch_interval_seconds} s"
    )

    scheduler.start()
    logger.info("Reschedule scheduler started")


def stop_scheduler():
    """
    Stop the background scheduler.

    This should be called during application shutdown to gracefully
    stop the scheduler and any running jobs.
    """
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Reschedule scheduler stopped")
    else:
        logger.info("Reschedule scheduler was not running")
