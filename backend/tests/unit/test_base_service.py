# backend/tests/unit/test_base_service.py
"""
Unit tests for BaseService transaction handling.

The session is mocked so only the unit-of-work logic is exercised.
"""

from unittest.mock import Mock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from home_services.core.exceptions import (
    ConcurrencyConflictException,
    NotFoundException,
    RepositoryException,
    ServiceException,
)
from home_services.monitoring.prometheus_metrics import prometheus_metrics
from home_services.services.base import BaseService


@pytest.fixture
def mock_db():
    db = Mock(spec=Session)
    db.info = {}
    return db


class TestTransactionManagement:
    def test_commits_then_runs_post_commit_hooks(self, mock_db):
        service = BaseService(mock_db)
        events = []
        mock_db.commit.side_effect = lambda: events.append("commit")

        with service.transaction() as session:
            assert session is mock_db
            service.after_commit(lambda: events.append("first"))
            service.after_commit(lambda: events.append("second"))
            assert events == []

        assert events == ["commit", "first", "second"]
        mock_db.rollback.assert_not_called()

    def test_domain_error_rolls_back_and_skips_hooks(self, mock_db):
        service = BaseService(mock_db)
        hook = Mock()

        with pytest.raises(NotFoundException):
            with service.transaction():
                service.after_commit(hook)
                raise NotFoundException("Booking missing")

        mock_db.rollback.assert_called_once()
        mock_db.commit.assert_not_called()
        hook.assert_not_called()

    def test_nested_transactions_join_the_outer_unit(self, mock_db):
        outer = BaseService(mock_db)
        inner = BaseService(mock_db)
        hook = Mock()

        with outer.transaction():
            with inner.transaction():
                inner.after_commit(hook)
            mock_db.commit.assert_not_called()
            hook.assert_not_called()

        mock_db.commit.assert_called_once()
        hook.assert_called_once()

    def test_inner_failure_rolls_back_the_whole_unit(self, mock_db):
        outer = BaseService(mock_db)
        inner = BaseService(mock_db)

        with pytest.raises(NotFoundException):
            with outer.transaction():
                with inner.transaction():
                    raise NotFoundException("Provider missing")

        mock_db.rollback.assert_called_once()
        mock_db.commit.assert_not_called()
        assert mock_db.info["home_services.uow_depth"] == 0

    @pytest.mark.parametrize(
        "error",
        [
            IntegrityError("INSERT INTO payout_bookings", {}, Exception("UNIQUE constraint failed")),
            OperationalError("UPDATE bookings", {}, Exception("database is locked")),
        ],
    )
    def test_lost_races_become_concurrency_conflicts(self, mock_db, error):
        service = BaseService(mock_db)
        mock_db.commit.side_effect = error

        with pytest.raises(ConcurrencyConflictException) as exc_info:
            with service.transaction():
                pass

        assert exc_info.value.retryable is True
        mock_db.rollback.assert_called_once()

    def test_other_storage_errors_become_service_exceptions(self, mock_db):
        service = BaseService(mock_db)

        with pytest.raises(ServiceException):
            with service.transaction():
                raise SQLAlchemyError("connection reset")

        mock_db.rollback.assert_called_once()

    def test_repository_errors_become_service_exceptions(self, mock_db):
        service = BaseService(mock_db)

        with pytest.raises(ServiceException):
            with service.transaction():
                raise RepositoryException("Failed to lock Booking")

    def test_unexpected_errors_propagate_unchanged(self, mock_db):
        service = BaseService(mock_db)

        with pytest.raises(ValueError):
            with service.transaction():
                raise ValueError("bug")

        mock_db.rollback.assert_called_once()

    def test_failing_post_commit_hook_is_contained(self, mock_db):
        service = BaseService(mock_db)
        later = Mock()

        with service.transaction():
            service.after_commit(Mock(side_effect=RuntimeError("broker down")))
            service.after_commit(later)

        mock_db.commit.assert_called_once()
        later.assert_called_once()

    def test_after_commit_outside_transaction_runs_immediately(self, mock_db):
        hook = Mock()
        BaseService(mock_db).after_commit(hook)
        hook.assert_called_once()

    def test_statement_timeout_is_skipped_off_postgres(self, mock_db):
        with BaseService(mock_db, statement_timeout_ms=500).transaction():
            pass
        mock_db.execute.assert_not_called()


class TestMeasureOperation:
    def test_records_success_and_failure(self, mock_db):
        class SampleService(BaseService):
            @BaseService.measure_operation("sample_operation")
            def sample_operation(self, fail=False):
                if fail:
                    raise NotFoundException("nope")
                return "ok"

        service = SampleService(mock_db)
        assert service.sample_operation() == "ok"
        with pytest.raises(NotFoundException):
            service.sample_operation(fail=True)

        metrics = service.get_metrics()["sample_operation"]
        assert metrics["count"] == 2
        assert metrics["success_rate"] == 0.5
        assert getattr(SampleService.sample_operation, "_operation_name") == "sample_operation"


def test_metrics_exposition_includes_service_counters(mock_db):
    class ExpoService(BaseService):
        @BaseService.measure_operation("expo")
        def expo(self):
            return None

    ExpoService(mock_db).expo()

    body = prometheus_metrics.get_metrics().decode()
    assert (
        'home_services_service_operations_total{service="ExpoService",operation="expo",status="success"}'
        in body
    )
