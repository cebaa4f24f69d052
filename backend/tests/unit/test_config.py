from decimal import Decimal

from pydantic import ValidationError
import pytest

from home_services.core.config import Settings


def test_defaults():
    cfg = Settings(_env_file=None)
    assert cfg.platform_commission_rate == Decimal("0.15")
    assert cfg.payout_default_period_days == 30
    assert cfg.reschedule_min_notice_hours == 2
    assert cfg.review_edit_window_hours == 48


@pytest.mark.parametrize("rate", ["1", "1.2", "-0.01"])
def test_commission_rate_must_be_a_fraction(rate):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, platform_commission_rate=Decimal(rate))


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PLATFORM_COMMISSION_RATE", "0.2")
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")
    cfg = Settings(_env_file=None)
    assert cfg.platform_commission_rate == Decimal("0.2")
    assert cfg.notifications_enabled is False
