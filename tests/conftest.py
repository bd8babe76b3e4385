import pytest
from sqlite_writer import ConnectionHandle, SQLiteWriter


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / 'test.db')


@pytest.fixture()
def events(monkeypatch):
    """Collects diagnostic records emitted through the handle's sink."""
    monkeypatch.delenv('LOG_LEVEL', raising=False)
    return []


@pytest.fixture()
async def handle(db_path, events):
    h = ConnectionHandle(db_path, 'CW', log=events.append)
    await h.open()
    yield h
    await h.close()


@pytest.fixture()
def writer(handle):
    return SQLiteWriter(handle)
