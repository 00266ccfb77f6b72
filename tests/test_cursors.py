# tests/test_cursors.py
import datetime as dt

import pytest

from dbhelper.cursors import Cursor, TupleCursor, DictCursor, ColumnCase
from dbhelper.utils import ParamStyle, process_sql_parameters, to_string


class TestCursors:
    """Row shapes and column names."""

    def test_list_rows(self, quotes_db):
        """The default cursor returns lists."""
        cursor = quotes_db.cursor()
        cursor.execute("SELECT symbol, volume FROM quotes WHERE symbol = ?", ('MSFT',))
        assert cursor.fetchone() == ['MSFT', 1000]
        assert cursor.fetchone() is None

    def test_tuple_rows(self, quotes_db):
        """TupleCursor returns namedtuples."""
        cursor = quotes_db.cursor('tuple')
        cursor.execute("SELECT symbol, volume FROM quotes ORDER BY symbol")
        rows = cursor.fetchall()
        assert rows[0].symbol == 'AAPL'
        assert rows[1].volume is None

    def test_tuple_rows_bad_names(self, quotes_db):
        """Column names that are not identifiers are renamed."""
        cursor = quotes_db.cursor('tuple')
        cursor.execute("SELECT symbol AS \"first name\", symbol FROM quotes WHERE symbol = 'IBM'")
        assert cursor.fetchone()._fields == ('_0', 'symbol')

    def test_dict_rows(self, quotes_db):
        """DictCursor returns dictionaries in select order."""
        cursor = quotes_db.cursor('dict')
        cursor.execute("SELECT close, symbol FROM quotes WHERE symbol = 'AAPL'")
        assert list(cursor.fetchone().items()) == [('close', 26.85), ('symbol', 'AAPL')]

    def test_fetchmany(self, quotes_db):
        """fetchmany() honours the size."""
        cursor = quotes_db.cursor()
        cursor.execute("SELECT symbol FROM quotes ORDER BY symbol")
        assert cursor.fetchmany(2) == [['AAPL'], ['IBM']]
        assert cursor.fetchmany(2) == [['MSFT']]

    def test_iteration(self, quotes_db):
        """Cursors iterate over their rows."""
        cursor = quotes_db.cursor()
        cursor.execute("SELECT symbol FROM quotes ORDER BY symbol")
        assert [row[0] for row in cursor] == ['AAPL', 'IBM', 'MSFT']

    @pytest.mark.parametrize('case,expected', [
        (ColumnCase.PRESERVE, ['Symbol', 'Close_Price']),
        (ColumnCase.LOWER, ['symbol', 'close_price']),
        (ColumnCase.UPPER, ['SYMBOL', 'CLOSE_PRICE']),
        (ColumnCase.TITLE, ['Symbol', 'Close_Price']),
    ])
    def test_column_case(self, quotes_db, case, expected):
        """Column names follow the cursor's column case."""
        cursor = quotes_db.cursor(column_case=case)
        cursor.execute("SELECT symbol AS Symbol, close AS Close_Price FROM quotes")
        assert cursor.columns() == expected

    def test_fetch_without_result_set(self, quotes_db):
        """Fetching after a statement without rows raises RuntimeError."""
        cursor = quotes_db.cursor()
        cursor.execute("DELETE FROM quotes WHERE 1 = 0")
        assert not cursor.has_result_set()
        assert cursor.columns() == []
        with pytest.raises(RuntimeError, match="did not return a result set"):
            cursor.fetchall()

    def test_execute_file(self, quotes_db, tmp_path):
        """A single statement file runs with named bind variables."""
        path = tmp_path / 'close.sql'
        path.write_text("SELECT close FROM quotes WHERE symbol = :symbol")
        cursor = quotes_db.cursor()
        cursor.execute_file(str(path), {'symbol': 'IBM'})
        assert cursor.fetchone() == [96.10]

    def test_owns_connection(self, quotes_db):
        """A cursor that owns its connection closes it."""
        cursor = quotes_db.cursor(owns_connection=True)
        cursor.close()
        assert quotes_db.closed

    def test_not_a_connection(self):
        """Cursors need a connection."""
        with pytest.raises(TypeError, match="must be a database connection object"):
            Cursor(object())

    def test_execute_returns_none(self, quotes_db):
        """execute() follows DB-API and returns None; rows are read from the cursor."""
        cursor = quotes_db.cursor()
        assert cursor.execute("SELECT symbol FROM quotes WHERE symbol = 'IBM'") is None
        assert cursor.fetchone() == ['IBM']

    def test_wrapper_settings(self):
        """Only the wrapper's own options are kept from the driver cursor arguments."""
        assert Cursor.WRAPPER_SETTINGS == ('column_case', 'owns_connection', 'type')
        assert 'debug' not in Cursor._local_attrs
        assert 'return_cursor' not in Cursor._local_attrs

    def test_subclasses(self):
        """All cursor types share the base class."""
        assert issubclass(TupleCursor, Cursor)
        assert issubclass(DictCursor, Cursor)


class TestParameters:
    """Named bind variable conversion."""

    SQL = "SELECT * FROM quotes WHERE symbol = :symbol AND close > :close AND symbol <> :symbol"

    @pytest.mark.parametrize('style,expected', [
        (ParamStyle.NAMED, SQL),
        (ParamStyle.QMARK, "SELECT * FROM quotes WHERE symbol = ? AND close > ? AND symbol <> ?"),
        (ParamStyle.FORMAT, "SELECT * FROM quotes WHERE symbol = %s AND close > %s AND symbol <> %s"),
        (ParamStyle.PYFORMAT,
         "SELECT * FROM quotes WHERE symbol = %(symbol)s AND close > %(close)s AND symbol <> %(symbol)s"),
        (ParamStyle.NUMERIC, "SELECT * FROM quotes WHERE symbol = :1 AND close > :2 AND symbol <> :3"),
    ])
    def test_styles(self, style, expected):
        """Bind variables are rewritten for each driver style."""
        sql, names = process_sql_parameters(self.SQL, style)
        assert sql == expected
        assert names == ('symbol', 'close', 'symbol')

    def test_casts_and_times_ignored(self):
        """'::' casts and times are not bind variables."""
        sql, names = process_sql_parameters("SELECT '12:30', x::int, :id", ParamStyle.QMARK)
        assert sql == "SELECT '12:30', x::int, ?"
        assert names == ('id',)

    def test_unsupported(self):
        """Unknown styles are rejected."""
        with pytest.raises(ValueError, match="Unsupported paramstyle"):
            process_sql_parameters("SELECT :a", 'dollar')


class TestToString:
    """Text rendering of database values."""

    @pytest.mark.parametrize('value,expected', [
        (None, ''),
        (dt.datetime(2024, 3, 1), '2024-03-01'),
        (dt.datetime(2024, 3, 1, 6, 30), '2024-03-01 06:30:00'),
        (dt.datetime(2024, 3, 1, 6, 30, 0, 1500), '2024-03-01 06:30:00.001500'),
        (dt.date(2024, 3, 1), '2024-03-01'),
        (dt.time(6, 30), '06:30:00'),
        (True, '1'),
        (b'\x01\xff', '01ff'),
        (19.76, '19.76'),
    ])
    def test_values(self, value, expected):
        """Values render in the configured formats."""
        assert to_string(value) == expected
