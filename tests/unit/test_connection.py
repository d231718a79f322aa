"""
Tests for session-level operations: cached session facts, the statement
cache, named types, nested cursors, pools and connect entry points.
"""
import gc

import config
import dbexec
import pytest
from dbexec.connection import Connection
from dbexec.cursor import Cursor, CursorState
from dbexec.exceptions import CollaboratorFailure, StateViolation, UnknownType
from dbexec.exceptions import UnsupportedType
from dbexec.pool import ConnectionPool
from dbexec.types import BindType, ObjectBase, ServerVersion, TypeDescriptor
from tests.fixtures.mocks import column


class Point(ObjectBase):
    type_name = 'POINT_T'


POINT_T = TypeDescriptor('POINT_T', [('x', BindType.INTEGER, None),
                                     ('y', BindType.INTEGER, None)])


class TestSessionFacts:

    def test_username_cached(self, fake_conn):
        assert fake_conn.username == 'SCOTT'
        prepared = len(fake_conn.session.prepared)
        assert fake_conn.username == 'SCOTT'
        assert len(fake_conn.session.prepared) == prepared

    def test_repr(self, fake_conn):
        assert repr(fake_conn) == '<Connection:scott>'

    def test_server_version_from_release_number(self, fake_conn):
        fake_conn.session.release = (19 << 24) | (3 << 20)
        version = fake_conn.server_version
        assert version == ServerVersion('19.3')
        assert version.to_tuple() == (19, 3, 0, 0, 0)
        assert version >= '12.1'

    def test_server_version_from_banner(self, fake_conn):
        fake_conn.session.queries['SELECT banner FROM v$version'] = (
            [column('BANNER', 'VARCHAR2', data_size=80)],
            [('Oracle Database 19c Enterprise Edition Release 19.0.0.0.0 - Production',),
             ('PL/SQL Release 19.0.0.0.0 - Production',)])
        assert str(fake_conn.server_version) == '19.0.0.0.0'

    def test_charset(self, fake_conn):
        assert fake_conn.database_charset_name == 'AL32UTF8'

    def test_call_statistics(self, fake_conn):
        fake_conn.run('UPDATE t SET x = 1')
        fake_conn.run('UPDATE t SET x = 2')
        assert fake_conn.calls == 2
        assert fake_conn.time >= 0


class TestLifecycle:

    def test_dropped_cursor_freed_on_logoff(self, create_fake_connection):
        cn = create_fake_connection()
        cn.session.queries['SELECT 1 FROM dual'] = ([column('1', 'NUMBER')], [(1,)])
        cn.run('SELECT 1 FROM dual')
        gc.collect()
        assert cn.session.freed == []
        cn.logoff()
        assert len(cn.session.freed) == 1

    def test_closed_cursor_no_longer_tracked(self, fake_conn):
        cursor = fake_conn.parse('UPDATE t SET x = 1')
        assert cursor in fake_conn._open_cursors
        cursor.close()
        assert cursor not in fake_conn._open_cursors

    def test_prefetch_failure_releases_statement(self, create_fake_connection, monkeypatch):
        cn = create_fake_connection(prefetch_rows=10)

        def reject(handle, rows):
            raise CollaboratorFailure('prefetch rejected')

        monkeypatch.setattr(cn.transport, 'set_prefetch', reject)
        with pytest.raises(CollaboratorFailure):
            cn.parse('SELECT 1 FROM dual')
        assert len(cn.session.freed) == 1
        assert not cn._open_cursors

    def test_logoff_closes_cursors_and_rolls_back(self, create_fake_connection):
        cn = create_fake_connection()
        cursor = cn.parse('UPDATE t SET x = 1')
        cn.logoff()
        assert cursor.state is CursorState.CLOSED
        assert cn.closed
        assert cn.session.closed

    def test_logoff_is_idempotent(self, create_fake_connection):
        cn = create_fake_connection()
        cn.logoff()
        cn.logoff()
        assert cn.session.rollbacks == 1

    def test_closed_connection(self, create_fake_connection):
        cn = create_fake_connection()
        cn.logoff()
        with pytest.raises(StateViolation):
            cn.parse('SELECT 1 FROM dual')
        with pytest.raises(StateViolation):
            cn.commit()

    def test_context_manager(self):
        with dbexec.connect({'drivername': 'fake', 'username': 'scott'}) as cn:
            session = cn.session
        assert cn.closed
        assert session.closed

    def test_commit_and_rollback(self, fake_conn):
        fake_conn.commit()
        fake_conn.rollback()
        assert fake_conn.session.commits == 1
        assert fake_conn.session.rollbacks == 1


class TestStatementCache:

    def test_handle_reused(self, create_fake_connection):
        cn = create_fake_connection(statement_cache_size=2)
        cn.run('UPDATE a SET x = 1')
        handle = cn._stmt_cache['UPDATE a SET x = 1']
        cn.run('UPDATE a SET x = 1')
        assert cn.session.prepared == ['UPDATE a SET x = 1']
        assert cn._stmt_cache['UPDATE a SET x = 1'] is handle
        assert cn.session.freed == []

    def test_eviction_frees_handle(self, create_fake_connection):
        cn = create_fake_connection(statement_cache_size=2)
        for sql in ('UPDATE a SET x = 1', 'UPDATE a SET x = 1',
                    'UPDATE b SET x = 1', 'UPDATE c SET x = 1'):
            cn.run(sql)
        assert [h.sql for h in cn.session.freed] == ['UPDATE a SET x = 1']
        cn.logoff()
        assert len(cn.session.freed) == 3

    def test_disabled_by_default(self, fake_conn):
        fake_conn.run('UPDATE a SET x = 1')
        fake_conn.run('UPDATE a SET x = 1')
        assert len(fake_conn.session.prepared) == 2
        assert len(fake_conn.session.freed) == 2


class TestNamedTypes:

    @pytest.fixture
    def point_conn(self, fake_conn):
        fake_conn.session.types['POINT_T'] = POINT_T
        return fake_conn

    def test_object_bind_roundtrip(self, point_conn):
        sql = 'BEGIN :p := scale_point(:p, 2); END;'
        point_conn.session.procedures[sql] = lambda params: {
            'p': {'x': params['p']['x'] * 2, 'y': params['p']['y'] * 2}}
        with point_conn.parse(sql) as cursor:
            cursor.bind_param(':p', Point(x=1, y=2))
            cursor.exec()
            assert cursor[':p'] == Point(x=2, y=4)

    def test_descriptor_fetched_once(self, point_conn):
        first = point_conn.get_type_descriptor(Point)
        second = point_conn.get_type_descriptor('point_t')
        assert point_conn.session.type_lookups == ['POINT_T']
        assert first.host_class is Point
        assert second is first

    def test_unknown_type(self, fake_conn):
        with pytest.raises(UnknownType):
            fake_conn.get_type_descriptor(Point)

    def test_object_column_uses_registered_class(self, point_conn, restore_bind_registry):
        restore_bind_registry.register_object_type(Point)
        point_conn.session.queries['SELECT loc FROM sites'] = (
            [column('LOC', 'NAMED TYPE', type_name='POINT_T')],
            [({'x': 1, 'y': 2},), (None,)])
        assert point_conn.select_one('SELECT loc FROM sites') == [Point(x=1, y=2)]

    def test_object_column_without_class(self, point_conn):
        point_conn.session.queries['SELECT loc FROM sites'] = (
            [column('LOC', 'NAMED TYPE', type_name='POINT_T')],
            [({'x': 1, 'y': 2},)])
        value = point_conn.select_one('SELECT loc FROM sites')[0]
        assert type(value) is ObjectBase
        assert value.attributes() == {'x': 1, 'y': 2}


class TestNestedCursor:

    @pytest.fixture
    def emp_set(self, fake_conn):
        def factory():
            return fake_conn.session.result_set(
                [column('ENAME', 'VARCHAR2', data_size=10)], [('SMITH',), ('ALLEN',)])
        return factory

    def test_ref_cursor_out_bind(self, fake_conn, emp_set):
        sql = 'BEGIN OPEN :c FOR SELECT ename FROM emp; END;'
        fake_conn.session.procedures[sql] = lambda params: {'c': emp_set()}
        with fake_conn.parse(sql) as cursor:
            cursor.bind_param(':c', Cursor)
            cursor.exec()
            nested = cursor[':c']
            assert nested is cursor[':c']
        assert isinstance(nested, Cursor)
        assert nested.type is dbexec.StatementType.CURSOR
        assert nested.get_col_names() == ['ENAME']
        assert [row[0] for row in nested] == ['SMITH', 'ALLEN']
        with pytest.raises(StateViolation):
            nested.exec()
        nested.close()

    def test_ref_cursor_from_run(self, fake_conn, emp_set):
        sql = 'BEGIN OPEN :1 FOR SELECT ename FROM emp; END;'
        fake_conn.session.procedures[sql] = lambda params: {1: emp_set()}
        [nested] = fake_conn.run(sql, (None, Cursor, None))
        assert nested.fetch() == ['SMITH']
        fake_conn.logoff()
        assert nested.closed

    def test_unsupported_nested_cursor_released(self, fake_conn):
        sql = 'BEGIN OPEN :c FOR SELECT doc FROM docs; END;'
        fake_conn.session.procedures[sql] = lambda params: {
            'c': fake_conn.session.result_set([column('DOC', 'XMLTYPE')], [])}
        with fake_conn.parse(sql) as cursor:
            cursor.bind_param(':c', Cursor)
            cursor.exec()
            with pytest.raises(UnsupportedType):
                cursor[':c']
        assert [h.sql for h in fake_conn.session.freed] == [None, sql]
        assert len(fake_conn._open_cursors) == 0

    def test_cursor_column(self, fake_conn, emp_set):
        fake_conn.session.queries['SELECT deptno, CURSOR(SELECT ename FROM emp) FROM dept'] = (
            [column('DEPTNO', 'NUMBER', precision=2, scale=0), column('EMPS', 'REF CURSOR')],
            [(10, emp_set()), (20, emp_set())])
        rows = []
        fake_conn.run('SELECT deptno, CURSOR(SELECT ename FROM emp) FROM dept',
                      callback=lambda row: rows.append((row[0], row[1].fetch_all())))
        assert rows == [(10, [['SMITH'], ['ALLEN']]), (20, [['SMITH'], ['ALLEN']])]


class TestConnect:

    def test_connect_from_config(self):
        cn = dbexec.connect('fake', config=config)
        try:
            assert isinstance(cn, Connection)
            assert cn.options.dbname == 'orcl'
            assert cn.statement_cache_size == 4
            assert cn.prefetch_rows == 50
        finally:
            cn.logoff()

    def test_connect_string(self):
        cn = dbexec.logon('scott/tiger@orcl as sysdba', drivername='fake')
        try:
            assert cn.options.username == 'scott'
            assert cn.options.password == 'tiger'
            assert cn.options.dbname == 'orcl'
            assert cn.options.privilege == 'SYSDBA'
        finally:
            cn.logoff()

    def test_pool(self):
        pool = ConnectionPool('hr_pool')
        cn = pool.connect({'drivername': 'fake', 'username': 'hr'})
        try:
            assert cn.pool is pool
            assert cn.options.pool_name == 'hr_pool'
        finally:
            cn.logoff()

    def test_module_facades(self, fake_conn):
        fake_conn.session.queries['SELECT 1 FROM dual'] = ([column('1', 'NUMBER', precision=1, scale=0)], [(1,)])
        assert dbexec.select_one(fake_conn, 'SELECT 1 FROM dual') == [1]
        assert dbexec.run(fake_conn, 'UPDATE t SET x = 1') == 1
        with dbexec.parse(fake_conn, 'SELECT 1 FROM dual') as cursor:
            assert cursor.exec() == 1


if __name__ == '__main__':
    __import__('pytest').main([__file__])
