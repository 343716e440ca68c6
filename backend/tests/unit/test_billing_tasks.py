"""
Unit tests for the Celery billing tasks.
"""
from unittest.mock import MagicMock, patch

import pytest

from tribelab.core.celery_app import celery_app
from tribelab.schemas import MaintenanceResult, SweepResult
from tribelab.tasks.billing_tasks import run_billing_sweep, run_subscription_maintenance


class TestBillingTasks:
    @patch("tribelab.tasks.billing_tasks.billing_sweep")
    @patch("tribelab.tasks.billing_tasks.SessionLocal")
    def test_sweep_task_returns_summary_and_closes_session(self, mock_session_local, mock_sweep, now):
        session = MagicMock()
        mock_session_local.return_value = session
        mock_sweep.run_scheduled_sweep.return_value = SweepResult(success=True, ran_at=now, reminders_sent=2)

        result = run_billing_sweep()

        assert result["reminders_sent"] == 2
        assert result["ran_at"] == "2025-01-01T12:00:00"
        session.close.assert_called_once()

    @patch("tribelab.tasks.billing_tasks.billing_sweep")
    @patch("tribelab.tasks.billing_tasks.SessionLocal")
    def test_maintenance_task_closes_session_on_failure(self, mock_session_local, mock_sweep):
        session = MagicMock()
        mock_session_local.return_value = session
        mock_sweep.run_subscription_maintenance.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError):
            run_subscription_maintenance()

        session.close.assert_called_once()

    @patch("tribelab.tasks.billing_tasks.billing_sweep")
    @patch("tribelab.tasks.billing_tasks.SessionLocal")
    def test_maintenance_task_returns_summary(self, mock_session_local, mock_sweep, now):
        mock_session_local.return_value = MagicMock()
        mock_sweep.run_subscription_maintenance.return_value = MaintenanceResult(success=True, ran_at=now, synced=3)

        assert run_subscription_maintenance()["synced"] == 3


class TestBeatSchedule:
    def test_daily_jobs_are_scheduled(self):
        schedule = celery_app.conf.beat_schedule

        assert schedule["community-billing-sweep"]["task"] == "tribelab.tasks.billing_tasks.run_billing_sweep"
        assert schedule["subscription-maintenance"]["task"] == (
            "tribelab.tasks.billing_tasks.run_subscription_maintenance"
        )
