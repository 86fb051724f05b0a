import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeout

from snaplink import crud, database
from snaplink.errors import StoreError, StoreTimeout


def test_pool_timeout_is_store_timeout():
    error = database.translate_error(PoolTimeout("QueuePool limit of size 5 overflow 0 reached"))
    assert isinstance(error, StoreTimeout)
    assert error.status_code == 503


def test_locked_database_is_store_timeout():
    exc = OperationalError("UPDATE short_links", {}, sqlite3.OperationalError("database is locked"))
    assert isinstance(database.translate_error(exc), StoreTimeout)


@pytest.mark.parametrize("exc", [
    IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed")),
    OperationalError("SELECT", {}, sqlite3.OperationalError("no such table: short_links")),
])
def test_other_failures_are_plain_store_errors(exc):
    error = database.translate_error(exc)
    assert type(error) is StoreError
    assert error.status_code == 500


def test_timeout_surfaces_as_503(client, signup, monkeypatch):
    user = signup()

    def exhausted_pool(db, owner_id):
        raise PoolTimeout("QueuePool limit of size 5 overflow 0 reached")

    monkeypatch.setattr(crud, "list_links_for_owner", exhausted_pool)
    res = client.get("/api/urls", headers=user["headers"])

    assert res.status_code == 503
    assert res.json() == {"detail": "Database timed out"}
