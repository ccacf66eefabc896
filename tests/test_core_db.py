"""Tests for the psycopg connection helpers."""

from uuid import uuid4

import psycopg
import pytest

from concierge.core import db
from concierge.core.tenant_context import reset_tenant_context, set_tenant_context
from concierge.errors import StoreError


class _RecordingCursor:
    def __init__(self, executed, fail=False):
        self._executed = executed
        self._fail = fail

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, sql, params=None):
        if self._fail:
            raise psycopg.OperationalError("connection lost")
        self._executed.append((sql, params))


class _FakeConnection:
    def __init__(self, fail=False):
        self.executed = []
        self._fail = fail

    def cursor(self):
        return _RecordingCursor(self.executed, self._fail)


def test_connect_without_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(StoreError):
        db.connect()


def test_apply_tenant_settings_uses_explicit_tenant():
    conn = _FakeConnection()
    tenant = uuid4()

    db.apply_tenant_settings(conn, tenant)

    assert conn.executed == [("SELECT set_config('app.tenant_id', %s, false)", (str(tenant),))]


def test_apply_tenant_settings_falls_back_to_context():
    conn = _FakeConnection()
    tenant = str(uuid4())
    token = set_tenant_context(tenant, "waha")
    try:
        db.apply_tenant_settings(conn)
    finally:
        reset_tenant_context(token)

    assert conn.executed[0][1] == (tenant,)


def test_apply_tenant_settings_requires_tenant():
    with pytest.raises(RuntimeError):
        db.apply_tenant_settings(_FakeConnection())


def test_apply_tenant_settings_wraps_driver_errors():
    with pytest.raises(StoreError):
        db.apply_tenant_settings(_FakeConnection(fail=True), uuid4())


def test_store_errors_translates_psycopg_errors():
    with pytest.raises(StoreError) as excinfo:
        with db.store_errors("load history"):
            raise psycopg.OperationalError("server closed the connection")

    assert excinfo.value.kind == "store"
    assert isinstance(excinfo.value.__cause__, psycopg.OperationalError)


def test_store_errors_leaves_other_errors_alone():
    with pytest.raises(KeyError):
        with db.store_errors("load history"):
            raise KeyError("missing")
