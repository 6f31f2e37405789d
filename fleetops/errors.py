from contextlib import contextmanager
from sqlalchemy.exc import SQLAlchemyError
import httpx
import logging

logger = logging.getLogger(__name__)


class DashboardError(Exception):
    """Failure of a single operator action, rendered as `{"detail": message}`."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ActionRejected(DashboardError):
    """Local validation failed; nothing was written."""

    status_code = 400


class RecordNotFound(DashboardError):
    status_code = 404


class StaleRecord(DashboardError):
    """The record changed since the operator loaded it."""

    status_code = 409


class BackendError(DashboardError):
    """A table, storage, function or RPC call failed."""

    status_code = 502


@contextmanager
def reported(message: str):
    """Log a backend failure once and surface it as `BackendError(message)`.

    There is no retry: the operator repeats the action.
    """
    try:
        yield
    except (SQLAlchemyError, httpx.HTTPError) as e:
        logger.error("%s: %s", message, e)
        raise BackendError(message) from e
