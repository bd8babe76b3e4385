import pytest
from sqlite_writer import SQLiteWriter, ConnectionHandle, InvalidConfiguration, StatementError, ClosedHandle


class RecordingExecutor:
    """Executor stand-in that records statements instead of running them."""

    def __init__(self):
        self.calls = []

    async def _done(self):
        return None

    def execute(self, sql, params=()):
        self.calls.append((sql, tuple(params)))
        return self._done()

    def query_all(self, sql, params=()):
        return self.execute(sql, params)

    def query_one(self, sql, params=()):
        return self.execute(sql, params)


@pytest.mark.parametrize('names,types', [
    (['name', 'age'], ['TEXT']),
    (['name'], ['TEXT', 'INTEGER']),
    ([], []),
])
def test_create_table_failure_sends_nothing(names, types):
    ex = RecordingExecutor()
    assert SQLiteWriter(ex).create_table('users', names, types) is False
    assert ex.calls == []


async def test_create_table_delegates_to_executor():
    ex = RecordingExecutor()
    await SQLiteWriter(ex).create_table('users', ['name'], ['TEXT'])
    assert ex.calls == [('CREATE TABLE IF NOT EXISTS users(id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT)', ())]


def test_shape_errors_raise_before_sending():
    ex = RecordingExecutor()
    w = SQLiteWriter(ex)
    with pytest.raises(InvalidConfiguration):
        w.insert_row('users', ['name', 'age'], ['Ann'])
    with pytest.raises(InvalidConfiguration):
        w.insert_multiple_rows('users', ['name', 'age'], [['Bo', 20], ['Cy', 40, 'x']])
    with pytest.raises(InvalidConfiguration):
        w.update_row('users', ['name'], {}, 'id', 1)
    with pytest.raises(InvalidConfiguration):
        w.delete_row('users', 'id = 1 OR 1', 1)
    assert ex.calls == []


async def test_create_table_rejection_is_logged(writer, events):
    assert writer.create_table('users', ['name'], []) is False
    rejected = [e for e in events if e['event'] == 'create_table_rejected']
    assert rejected and rejected[0]['table'] == 'users'


async def test_create_insert_query_scenario(writer, handle):
    await writer.create_table('users', ['name', 'age'], ['TEXT', 'INTEGER'])
    res = await writer.insert_row('users', ['name', 'age'], ['Ann', 30])
    assert res.last_row_id == 1
    rows = await handle.query_all('SELECT * FROM users')
    assert rows == [{'id': 1, 'name': 'Ann', 'age': 30}]


async def test_create_table_is_idempotent(writer, handle):
    await writer.create_table('users', ['name'], ['TEXT'])
    await writer.insert_row('users', ['name'], ['Ann'])
    await writer.create_table('users', ['name'], ['TEXT'])
    assert len(await handle.query_all('SELECT * FROM users')) == 1


async def test_round_trip_preserves_types(writer, handle):
    await writer.create_table('m', ['i', 's', 'f'], ['INTEGER', 'TEXT', 'REAL'])
    res = await writer.insert_row('m', ['i', 's', 'f'], [-7, "it's", 3.141592653589793])
    row = await handle.query_one('SELECT i, s, f FROM m WHERE id = ?', [res.last_row_id])
    assert row == {'i': -7, 's': "it's", 'f': 3.141592653589793}
    assert type(row['i']) is int and type(row['f']) is float


async def test_insert_multiple_rows_assigns_ids_in_order(writer, handle):
    await writer.create_table('users', ['name', 'age'], ['TEXT', 'INTEGER'])
    res = await writer.insert_multiple_rows('users', ['name', 'age'], [['Bo', 20], ['Cy', 40]])
    assert res.changes == 2
    rows = await handle.query_all('SELECT id, name, age FROM users ORDER BY id')
    assert rows == [{'id': 1, 'name': 'Bo', 'age': 20}, {'id': 2, 'name': 'Cy', 'age': 40}]


async def test_insert_multiple_rows_mismatch_writes_nothing(writer, handle):
    await writer.create_table('users', ['name', 'age'], ['TEXT', 'INTEGER'])
    with pytest.raises(InvalidConfiguration):
        writer.insert_multiple_rows('users', ['name', 'age'], [['Bo', 20], ['Cy']])
    assert await handle.query_all('SELECT * FROM users') == []


async def test_insert_multiple_rows_constraint_failure_is_atomic(writer, handle):
    await writer.create_table('tags', ['label'], ['TEXT UNIQUE'])
    with pytest.raises(StatementError):
        await writer.insert_multiple_rows('tags', ['label'], [['a'], ['b'], ['a']])
    assert await handle.query_all('SELECT * FROM tags') == []


async def test_update_row_sequence_and_mapping(writer, handle):
    await writer.create_table('users', ['name', 'age'], ['TEXT', 'INTEGER'])
    await writer.insert_multiple_rows('users', ['name', 'age'], [['Ann', 30], ['Bo', 20]])
    res = await writer.update_row('users', ['name', 'age'], ['Anna', 31], 'id', 1)
    assert res.changes == 1
    await writer.update_row('users', ['age', 'name'], {'name': 'Bob', 'age': 21}, 'name', 'Bo')
    rows = await handle.query_all('SELECT name, age FROM users ORDER BY id')
    assert rows == [{'name': 'Anna', 'age': 31}, {'name': 'Bob', 'age': 21}]


async def test_where_value_is_bound_not_interpolated(writer, handle):
    await writer.create_table('users', ['name'], ['TEXT'])
    await writer.insert_multiple_rows('users', ['name'], [['Ann'], ["x' OR '1'='1"]])
    res = await writer.delete_row('users', 'name', "x' OR '1'='1")
    assert res.changes == 1
    assert await handle.query_all('SELECT name FROM users') == [{'name': 'Ann'}]


async def test_delete_row(writer, handle):
    await writer.create_table('users', ['name'], ['TEXT'])
    await writer.insert_multiple_rows('users', ['name'], [['Ann'], ['Bo']])
    await writer.delete_row('users', 'id', 1)
    assert await handle.query_all('SELECT id, name FROM users') == [{'id': 2, 'name': 'Bo'}]
    res = await writer.delete_row('users', 'id', 99)
    assert res.changes == 0


async def test_drop_table(writer, handle):
    await writer.create_table('users', ['name'], ['TEXT'])
    await writer.drop_table('users')
    await writer.drop_table('users')  # already gone: still fine
    with pytest.raises(StatementError) as exc:
        await handle.query_all('SELECT * FROM users')
    assert 'no such table' in str(exc.value)


async def test_set_wal_mode(writer, handle):
    await writer.set_wal_mode()
    hc = await handle.health_check()
    assert str(hc['journal_mode']).lower() == 'wal'


async def test_close_db_then_operations_fail(db_path):
    h = ConnectionHandle(db_path, 'CW')
    w = SQLiteWriter(h)
    await w.create_table('users', ['name'], ['TEXT'])
    await w.close_db()
    with pytest.raises(ClosedHandle):
        await w.insert_row('users', ['name'], ['Ann'])
    with pytest.raises(ClosedHandle):
        await h.query_all('SELECT * FROM users')


async def test_writer_uses_handle_log(handle):
    assert SQLiteWriter(handle).log is handle.log


@pytest.mark.parametrize('names,types', [
    (None, ['TEXT']),
    (['name'], None),
    ('name', 'TEXT'),
    ((c for c in ['name', 'age']), iter(['TEXT'])),
])
def test_create_table_bad_inputs_return_false(names, types):
    ex = RecordingExecutor()
    assert SQLiteWriter(ex).create_table('users', names, types) is False
    assert ex.calls == []


async def test_create_table_accepts_iterables():
    ex = RecordingExecutor()
    await SQLiteWriter(ex).create_table('users', (c for c in ['name']), iter(['TEXT']))
    assert ex.calls == [('CREATE TABLE IF NOT EXISTS users(id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT)', ())]


async def test_update_row_reports_no_last_row_id(writer):
    await writer.create_table('users', ['name'], ['TEXT'])
    await writer.insert_row('users', ['name'], ['Ann'])
    res = await writer.update_row('users', ['name'], ['Anna'], 'id', 1)
    assert res.last_row_id == 0
    assert res.changes == 1


def test_close_db_requires_closable_executor():
    with pytest.raises(TypeError):
        SQLiteWriter(RecordingExecutor()).close_db()
