"""Tests for the reschedule background scheduler."""
import pytest
from unittest.mock import patch, MagicMock
from apscheduler.triggers.interval import IntervalTrigger

from shift_reschedule.scheduler.expiry_scheduler import (
    dispatch_pending_notifications,
    sweep_expired_requests,
    start_scheduler,
    stop_scheduler,
    scheduler
)
from shift_reschedule.services.notification_service import EventBus


class TestExpirySweep:
    """Test suite for the expiry sweep job."""

    def test_sweep_creates_and_closes_session(self):
        """Test that sweep_expired_requests creates and closes a database session."""
        with patch('shift_reschedule.scheduler.expiry_scheduler.SessionLocal') as mock_session_local:
            mock_db = MagicMock()
            mock_session_local.return_value = mock_db

            with patch('shift_reschedule.scheduler.expiry_scheduler.RescheduleService') as mock_service_class:
                mock_service = MagicMock()
                mock_service.expire_stale_requests.return_value = 2
                mock_service_class.return_value = mock_service

                result = sweep_expired_requests()

                assert result == 2
                mock_session_local.assert_called_once()
                mock_service_class.assert_called_once_with(mock_db)
                mock_service.expire_stale_requests.assert_called_once()
                mock_db.close.assert_called_once()

    def test_sweep_uses_given_session_factory(self):
        """Test that an explicit session factory takes precedence."""
        mock_db = MagicMock()
        factory = MagicMock(return_value=mock_db)

        with patch('shift_reschedule.scheduler.expiry_scheduler.SessionLocal') as mock_session_local, \
                patch('shift_reschedule.scheduler.expiry_scheduler.RescheduleService') as mock_service_class:
            mock_service_class.return_value.expire_stale_requests.return_value = 0

            sweep_expired_requests(factory)

            factory.assert_called_once()
            mock_session_local.assert_not_called()
            mock_db.close.assert_called_once()

    def test_sweep_handles_errors(self):
        """Test that sweep_expired_requests handles errors gracefully."""
        with patch('shift_reschedule.scheduler.expiry_scheduler.SessionLocal') as mock_session_local:
            mock_db = MagicMock()
            mock_session_local.return_value = mock_db

            with patch('shift_reschedule.scheduler.expiry_scheduler.RescheduleService') as mock_service_class:
                mock_service_class.side_effect = Exception("Database error")

                assert sweep_expired_requests() == 0
                mock_db.close.assert_called_once()


class TestNotificationDispatch:
    """Test suite for the notification dispatch job."""

    def test_dispatch_uses_given_bus(self):
        bus = EventBus()
        with patch('shift_reschedule.scheduler.expiry_scheduler.SessionLocal') as mock_session_local:
            mock_db = MagicMock()
            mock_session_local.return_value = mock_db

            with patch('shift_reschedule.scheduler.expiry_scheduler.NotificationService') as mock_service_class:
                mock_service_class.return_value.dispatch_pending.return_value = 4

                assert dispatch_pending_notifications(bus=bus) == 4
                mock_service_class.assert_called_once_with(mock_db, bus=bus)
                mock_db.close.assert_called_once()

    def test_dispatch_handles_errors(self):
        with patch('shift_reschedule.scheduler.expiry_scheduler.SessionLocal') as mock_session_local:
            mock_db = MagicMock()
            mock_session_local.return_value = mock_db

            with patch('shift_reschedule.scheduler.expiry_scheduler.NotificationService') as mock_service_class:
                mock_service_class.return_value.dispatch_pending.side_effect = Exception("Outbox locked")

                assert dispatch_pending_notifications() == 0
                mock_db.close.assert_called_once()


class TestSchedulerLifecycle:
    """Test scheduler configuration and shutdown."""

    def test_start_scheduler_configures_jobs(self):
        """Test that start_scheduler registers both interval jobs."""
        if scheduler.running:
            scheduler.shutdown(wait=True)
        scheduler.remove_all_jobs()

        with patch.object(scheduler, "start") as mock_start:
            start_scheduler()
            mock_start.assert_called_once()

        jobs = {job.id: job for job in scheduler.get_jobs()}
        assert set(jobs) == {'reschedule_expiry_sweep', 'reschedule_notification_dispatch'}
        assert jobs['reschedule_expiry_sweep'].name == 'Reschedule Expiry Sweep'
        assert all(isinstance(job.trigger, IntervalTrigger) for job in jobs.values())

        # Clean up
        scheduler.remove_all_jobs()

    def test_stop_scheduler_when_not_running(self):
        """Test that stop_scheduler handles an already stopped scheduler gracefully."""
        if scheduler.running:
            scheduler.shutdown(wait=True)

        try:
            stop_scheduler()
        except Exception as e:
            pytest.fail(f"stop_scheduler raised an exception: {e}")
