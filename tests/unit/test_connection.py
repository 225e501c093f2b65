"""
Unit tests -- read-only connection lifecycle (recording engine, no live DB).
"""
import pytest

from src.db import connection


class _Transaction:
    def __init__(self, log):
        self.log = log

    def rollback(self):
        self.log.append("rollback")

    def commit(self):
        self.log.append("commit")


class _Connection:
    def __init__(self, log):
        self.log = log

    def begin(self):
        self.log.append("begin")
        return _Transaction(self.log)

    def execute(self, statement, params=None):
        self.log.append(str(statement))

    def close(self):
        self.log.append("close")


class _Engine:
    def __init__(self):
        self.log = []

    def connect(self):
        return _Connection(self.log)


@pytest.fixture
def engine(monkeypatch):
    fake = _Engine()
    monkeypatch.setattr(connection, "get_engine", lambda: fake)
    return fake


def test_transaction_rolled_back_on_exit(engine):
    with connection.readonly_connection() as conn:
        conn.execute("SELECT 1")
    assert engine.log == ["begin", "SET TRANSACTION READ ONLY", "SELECT 1", "rollback", "close"]
    assert "commit" not in engine.log


def test_transaction_rolled_back_on_error(engine):
    with pytest.raises(RuntimeError):
        with connection.readonly_connection():
            raise RuntimeError("boom")
    assert engine.log[-2:] == ["rollback", "close"]
