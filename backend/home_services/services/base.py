# backend/home_services/services/base.py
"""
Base Service Pattern for the booking and settlement engine.

Provides common functionality for all service classes including:
- Unit-of-work transaction management with post-commit hooks
- Mapping storage failures onto domain errors
- Performance monitoring
"""

from contextlib import contextmanager
from datetime import datetime
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional, TypeVar, cast

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import Clock, utc_now
from ..core.config import settings
from ..core.exceptions import (
    ConcurrencyConflictException,
    DomainException,
    RepositoryException,
    ServiceException,
)
from ..database.session_utils import apply_statement_timeout
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_UOW_DEPTH_KEY = "home_services.uow_depth"
_POST_COMMIT_KEY = "home_services.post_commit"

_CONFLICT_MARKERS = (
    "deadlock detected",
    "could not serialize access",
    "lock not available",
    "database is locked",
)


def _is_conflict_error(exc: BaseException) -> bool:
    """Return True for errors that mean a concurrent writer won and a retry may succeed."""
    if isinstance(exc, IntegrityError):
        return True
    if isinstance(exc, DBAPIError):
        orig = getattr(exc, "orig", None)
        pgcode = getattr(orig, "pgcode", None)
        if pgcode in {"40001", "40P01", "55P03"}:
            return True
        message = str(orig or exc).lower()
        return any(marker in message for marker in _CONFLICT_MARKERS)
    return False


class BaseService:
    """
    Base class for all service layer components.

    Services that share a Session also share its unit of work: a
    ``transaction()`` opened while another one is active on the same session
    joins it instead of committing on its own.
    """

    # Class-level metrics storage
    _class_metrics: Dict[str, Dict[str, Dict[str, float]]] = {}

    def __init__(
        self,
        db: Session,
        *,
        clock: Optional[Clock] = None,
        statement_timeout_ms: Optional[int] = None,
    ):
        """
        Initialize base service.

        Args:
            db: Database session
            clock: Source of "now"; defaults to the wall clock in UTC
            statement_timeout_ms: Deadline applied to every statement of a unit of work
        """
        self.db = db
        self.clock: Clock = clock or utc_now
        self.statement_timeout_ms = (
            statement_timeout_ms
            if statement_timeout_ms is not None
            else settings.db_statement_timeout_ms
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    def now(self) -> datetime:
        return self.clock()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for an all-or-nothing unit of work.

        Usage:
            with self.transaction():
                booking = self.booking_repository.get_for_update(booking_id)
                ...
                self.after_commit(lambda: notify(...))

        Domain exceptions roll back and propagate unchanged. Lost races surface as
        ConcurrencyConflictException; other storage failures as ServiceException.
        Post-commit callbacks run only after a successful outermost commit.
        """
        info = self.db.info
        depth = info.get(_UOW_DEPTH_KEY, 0)
        if depth > 0:
            info[_UOW_DEPTH_KEY] = depth + 1
            try:
                yield self.db
            finally:
                info[_UOW_DEPTH_KEY] = depth
            return

        info[_UOW_DEPTH_KEY] = 1
        info[_POST_COMMIT_KEY] = []
        try:
            apply_statement_timeout(self.db, self.statement_timeout_ms)
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except DomainException:
            self.db.rollback()
            info.pop(_POST_COMMIT_KEY, None)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            info.pop(_POST_COMMIT_KEY, None)
            if _is_conflict_error(e):
                self.logger.warning(f"Transaction lost a concurrent update: {str(e)}")
                raise ConcurrencyConflictException(
                    "Concurrent update detected; retry the operation",
                    details={"cause": type(e).__name__},
                ) from e
            self.logger.error(f"Transaction failed: {str(e)}")
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except RepositoryException as e:
            self.logger.error(f"Repository failure in transaction: {str(e)}")
            self.db.rollback()
            info.pop(_POST_COMMIT_KEY, None)
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except Exception as e:
            self.logger.error(f"Unexpected error in transaction: {str(e)}")
            self.db.rollback()
            info.pop(_POST_COMMIT_KEY, None)
            raise
        finally:
            info[_UOW_DEPTH_KEY] = 0

        self._run_post_commit(cast(List[Callable[[], None]], info.pop(_POST_COMMIT_KEY, [])))

    def after_commit(self, callback: Callable[[], None]) -> None:
        """
        Defer ``callback`` until the current unit of work commits.

        Outside a transaction the callback runs immediately.
        """
        hooks = self.db.info.get(_POST_COMMIT_KEY)
        if self.db.info.get(_UOW_DEPTH_KEY, 0) > 0 and hooks is not None:
            hooks.append(callback)
            return
        self._run_post_commit([callback])

    def _run_post_commit(self, callbacks: List[Callable[[], None]]) -> None:
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                # Committed state is final; side effects are best-effort
                self.logger.error(f"Post-commit callback failed: {str(e)}", exc_info=True)

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("accept_booking")
            def accept_booking(self, booking_id, provider_id):
                ...

        Args:
            operation_name: Name of the operation for metrics

        Returns:
            Decorator function
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                start_time = time.time()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time

                    if hasattr(self, "_record_metric"):
                        self._record_metric(operation_name, elapsed, success)

                    if elapsed > 1.0 and hasattr(self, "logger"):
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )

                    try:
                        prometheus_metrics.record_service_operation(
                            service=self.__class__.__name__,
                            operation=operation_name,
                            duration=elapsed,
                            status="success" if success else "error",
                            error_type=error_type,
                        )
                    except Exception:
                        # Don't let metrics collection break the operation
                        pass

            setattr(wrapper, "_operation_name", operation_name)
            setattr(wrapper, "_is_measured", True)
            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        """Log an operation with context."""
        self.logger.info(f"Operation: {operation}", extra={"operation": operation, **context})

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        class_name = self.__class__.__name__
        metrics = BaseService._class_metrics.setdefault(class_name, {})
        metric_data = metrics.setdefault(
            operation,
            {
                "count": 0,
                "total_time": 0.0,
                "success_count": 0,
                "failure_count": 0,
                "min_time": float("inf"),
                "max_time": 0.0,
            },
        )
        metric_data["count"] += 1
        metric_data["total_time"] += elapsed
        metric_data["min_time"] = min(metric_data["min_time"], elapsed)
        metric_data["max_time"] = max(metric_data["max_time"], elapsed)
        if success:
            metric_data["success_count"] += 1
        else:
            metric_data["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, float]]:
        """Return per-operation timing counters recorded for this service class."""
        metrics = BaseService._class_metrics.get(self.__class__.__name__, {})
        result: Dict[str, Dict[str, float]] = {}
        for operation, data in metrics.items():
            count = data["count"]
            result[operation] = {
                "count": count,
                "avg_time": data["total_time"] / count if count else 0.0,
                "min_time": data["min_time"] if count else 0.0,
                "max_time": data["max_time"],
                "success_rate": data["success_count"] / count if count else 0.0,
            }
        return result
