from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from celery.schedules import crontab

from home_services.models.payout import Payout
from home_services.tasks import settlement_tasks
from home_services.tasks.beat_schedule import get_beat_schedule
from home_services.tasks.settlement_tasks import create_provider_payouts, run_provider_settlement

from tests.unit._ledger_helpers import FIXED_NOW


class TestRunProviderSettlement:
    def test_summary_counts_each_outcome(self, unit_db, ledger, dispatcher, clock):
        service = ledger.service()
        busy = ledger.provider(offers=[service], business_name="Busy Co")
        ledger.provider(offers=[service], business_name="Idle Co")
        mixed = ledger.provider(offers=[service], business_name="Mixed Co")
        ledger.provider(offers=[service], business_name="Retired Co", is_active=False)

        ledger.completed_booking(
            service=service, provider=busy, completed_at=FIXED_NOW - timedelta(days=2)
        )
        ledger.completed_booking(
            service=service, provider=busy, completed_at=FIXED_NOW - timedelta(days=1)
        )
        ledger.completed_booking(
            service=service, provider=mixed, completed_at=FIXED_NOW - timedelta(days=2)
        )
        ledger.completed_booking(
            service=service,
            provider=mixed,
            completed_at=FIXED_NOW - timedelta(days=1),
            currency="EUR",
        )

        summary = run_provider_settlement(unit_db, dispatcher=dispatcher, clock=clock)

        assert summary["providers"] == 3
        assert summary["created"] == 1
        assert summary["skipped"] == 1
        assert summary["failed"] == 1
        payouts = unit_db.query(Payout).all()
        assert [p.id for p in payouts] == summary["payout_ids"]
        assert payouts[0].provider_id == busy.id

    def test_second_run_settles_nothing(self, unit_db, ledger, dispatcher, clock):
        service = ledger.service()
        provider = ledger.provider(offers=[service])
        ledger.completed_booking(
            service=service, provider=provider, completed_at=FIXED_NOW - timedelta(days=1)
        )

        first = run_provider_settlement(unit_db, dispatcher=dispatcher, clock=clock)
        second = run_provider_settlement(unit_db, dispatcher=dispatcher, clock=clock)

        assert first["created"] == 1
        assert second["created"] == 0
        assert second["skipped"] == 1


class TestCreateProviderPayoutsTask:
    def test_parses_period_and_closes_session(self, monkeypatch):
        session = Mock()
        runner = Mock(return_value={"created": 0})
        monkeypatch.setattr(settlement_tasks, "SessionLocal", Mock(return_value=session))
        monkeypatch.setattr(settlement_tasks, "run_provider_settlement", runner)

        result = create_provider_payouts.run(
            period_start="2026-03-01T00:00:00+00:00", period_end="2026-03-08T00:00:00+00:00"
        )

        assert result == {"created": 0}
        runner.assert_called_once_with(
            session,
            period_start=datetime(2026, 3, 1, tzinfo=timezone.utc),
            period_end=datetime(2026, 3, 8, tzinfo=timezone.utc),
        )
        session.close.assert_called_once()


def test_beat_schedule_runs_weekly_settlement():
    entry = get_beat_schedule("production")["create-provider-payouts"]
    assert entry["task"] == "settlement.create_provider_payouts"
    assert entry["schedule"] == crontab(day_of_week="mon", hour=3, minute=0)

    dev_entry = get_beat_schedule("development")["create-provider-payouts"]
    assert dev_entry["schedule"] == crontab(hour=3, minute=0)
