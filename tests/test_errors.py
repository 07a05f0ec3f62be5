"""
错误分类与事务异常映射测试
"""
import json

import pytest
from sqlalchemy.exc import DBAPIError, OperationalError

from fm_core.services.base import BaseService, is_storage_conflict
from fm_core.utils.errors import (
    AlreadyConsumedError, InsufficientStockError, InternalServerError, InvalidStateTransitionError,
    NotFoundError, PriceMismatchError, ProductUnavailableError, StorageConflictError, ValidationError
)


class _PgError(Exception):
    def __init__(self, sqlstate):
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


@pytest.mark.parametrize("exc,kind,status", [
    (ValidationError("EMPTY_ORDER", "empty"), "ValidationError", 422),
    (NotFoundError("ADDRESS_NOT_FOUND", "Address 1"), "NotFound", 404),
    (ProductUnavailableError(1), "ProductUnavailable", 409),
    (InsufficientStockError(1, requested=6, available=5), "InsufficientStock", 409),
    (PriceMismatchError(1, "9.00", "10.00"), "PriceMismatch", 409),
    (InvalidStateTransitionError("shipped", "cancelled"), "InvalidStateTransition", 409),
    (AlreadyConsumedError("COUPON_ALREADY_USED", "used"), "AlreadyConsumed", 409),
    (StorageConflictError(), "StorageConflict", 409),
    (InternalServerError(), "Internal", 500),
])
def test_error_envelope(exc, kind, status):
    response = exc.to_response()
    body = json.loads(response.body)

    assert response.status_code == status
    assert body["error_kind"] == kind
    assert body["message"] == exc.message
    assert body["error"]["code"] == exc.code


def test_storage_conflict_is_retryable():
    response = StorageConflictError().to_response()
    assert response.headers["retry-after"] == "1"
    assert "retry-after" not in InsufficientStockError(1, 2, 1).to_response().headers


@pytest.mark.parametrize("sqlstate,expected", [
    ("40P01", True),
    ("40001", True),
    ("55P03", True),
    ("23503", False),
])
def test_is_storage_conflict_by_sqlstate(sqlstate, expected):
    exc = DBAPIError("UPDATE products ...", {}, _PgError(sqlstate))
    assert is_storage_conflict(exc) is expected


def test_sqlite_lock_is_storage_conflict():
    exc = OperationalError("UPDATE products ...", {}, Exception("database is locked"))
    assert is_storage_conflict(exc)


class _Service(BaseService):
    pass


async def test_transaction_maps_conflict(db_manager):
    service = _Service(db_manager)

    async def deadlock(session):
        raise DBAPIError("UPDATE products ...", {}, _PgError("40P01"))

    async def broken(session):
        raise DBAPIError("UPDATE products ...", {}, _PgError("42P01"))

    with pytest.raises(StorageConflictError):
        await service.execute_with_transaction(deadlock)
    with pytest.raises(InternalServerError):
        await service.execute_with_transaction(broken)
