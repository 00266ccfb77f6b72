# dbhelper/cursors.py
"""
Cursor classes that wrap database cursors and provide different return types.
All cursors delegate to the underlying database cursor stored in _cursor.
"""

import logging
import math
from typing import List, Any, Optional, Iterator
from collections import namedtuple, OrderedDict

from .utils import ParamStyle, process_sql_parameters
from .defaults import settings

logger = logging.getLogger(__name__)
__all__ = ['Cursor', 'TupleCursor', 'DictCursor', 'ColumnCase', 'Command']


class ColumnCase:
    """
    Column name case transformation options for result sets.

    - UPPER: Convert to uppercase (USER_ID)
    - LOWER: Convert to lowercase (user_id)
    - TITLE: Convert to title case (User_Id)
    - PRESERVE: Keep original case from database [default]

    Example:
        >>> cursor = db.cursor(column_case=ColumnCase.LOWER)
        >>> cursor = db.cursor(column_case='preserve')
    """
    UPPER = 'upper'
    LOWER = 'lower'
    TITLE = 'title'
    PRESERVE = 'preserve'
    DEFAULT = PRESERVE

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls)
                if not attr.startswith('_') and isinstance(getattr(cls, attr), str)]


class Command:
    """
    A SQL statement bound to a cursor, with its parameters and timeout.

    SQL parameter conversion is performed once, based on the cursor's
    paramstyle, and only when bind variables are given; statements without
    bind variables are sent to the driver untouched. Commands are normally
    built through ``dbhelper.queries.build_command()`` which validates the
    connection, timeout and transaction first.

    Example
    -------
    ::

        cmd = build_command(db, "UPDATE quotes SET close = :close WHERE symbol = :symbol",
                            {'close': 19.76, 'symbol': 'msft'})
        rows = cmd.execute_non_query()
    """

    def __init__(self, cursor: 'Cursor', sql: str, bind_vars: Optional[dict] = None,
                 timeout: Optional[float] = None, transaction=None):
        """
        Args:
            cursor: The cursor that will execute this statement
            sql: SQL text, using :name bind variables
            bind_vars: Dictionary of named parameters
            timeout: Seconds before the statement is cancelled, where the driver supports it
            transaction: Transaction the statement takes part in
        """
        self.cursor = cursor
        self.bind_vars = bind_vars
        self.timeout = timeout
        self.transaction = transaction

        if bind_vars is None:
            self.sql, self.param_names = sql, ()
        else:
            self.sql, self.param_names = process_sql_parameters(sql, cursor.paramstyle)

    def __iter__(self):
        return self.cursor.__iter__()

    def __getattr__(self, key: str):
        """Delegate attribute access to underlying cursor."""
        return getattr(self.cursor, key)

    def _apply_timeout(self):
        """Set the statement timeout on the connection; returns a callable that restores the old one."""
        if self.timeout is None:
            return None
        raw_connection = getattr(self.cursor.connection, '_connection', self.cursor.connection)
        if not hasattr(raw_connection, 'timeout'):
            logger.debug(f"Driver does not support statement timeouts, ignoring timeout={self.timeout}")
            return None
        previous = raw_connection.timeout
        # pyodbc: query timeout in whole seconds, 0 disables it
        raw_connection.timeout = math.ceil(self.timeout) if self.timeout > 0 else 0

        def restore():
            raw_connection.timeout = previous
        return restore

    def execute(self) -> 'Cursor':
        """Execute the statement and return the cursor."""
        params = () if self.bind_vars is None else self.cursor._prepare_params(self.param_names, self.bind_vars)
        restore_timeout = self._apply_timeout()
        try:
            self.cursor.execute(self.sql, params)
        except Exception:
            logger.error(
                f"Error executing statement\n"
                f"SQL: {self.sql}\n"
                f"Parameters: {self.bind_vars}"
            )
            raise
        finally:
            if restore_timeout:
                restore_timeout()
        return self.cursor

    def execute_reader(self) -> 'Cursor':
        """Execute a query; rows are read from the returned cursor."""
        return self.execute()

    def execute_non_query(self) -> int:
        """Execute a statement and return the number of rows affected (-1 when unknown)."""
        return self.execute().rowcount


class Cursor:
    """
    Basic cursor that returns query results as lists.

    This is the base class for all dbhelper cursor types. It wraps database-specific cursor
    objects and provides a consistent interface plus SQL file execution and named
    bind variable conversion.

    Attributes
    ----------
    connection : Database
        The database connection this cursor belongs to
    paramstyle : str
        Parameter style of the underlying database ('qmark', 'pyformat', etc.)
    placeholder : str
        Placeholder string for bind parameters (e.g., '?', '%s')
    owns_connection : bool
        Close the connection when this cursor is closed. Set for cursors
        returned by ``execute_reader()`` on a connection string.

    Example
    -------
    ::

        cursor = db.cursor('list')
        cursor.execute("SELECT id, name FROM users WHERE status = ?", ('active',))

        for user_id, name in cursor:
            print(f"{user_id}: {name}")
    """
    # Attributes that live on this class and are not delegated to the underlying cursor
    _local_attrs = [
        'connection', 'column_case',
        'placeholder', 'paramstyle', 'record_factory', 'owns_connection',
        '_cursor', '_statement', '_bind_vars'
    ]
    # Attributes that are allowed to be passed in from the connection/configuration layer
    WRAPPER_SETTINGS = ('column_case', 'owns_connection', 'type')

    def __init__(self,
                 connection,
                 column_case: Optional[str] = None,
                 owns_connection: bool = False,
                 **kwargs):
        """
        Initialize a cursor for database operations.

        Parameters
        ----------
        connection : Database
            Database connection object
        column_case : str, optional
            How to handle column name casing: 'lower', 'upper', 'title' or 'preserve' (default)
        owns_connection : bool, default False
            Close the connection along with the cursor
        **kwargs
            Additional arguments passed to the underlying database cursor
        """
        self.connection = connection
        self.record_factory = None
        self.owns_connection = owns_connection
        if column_case is None:
            column_case = settings.get('default_column_case', ColumnCase.DEFAULT)
        self.column_case = column_case
        self._statement = None              # Stores statement locally if adapter doesn't
        self._bind_vars = None              # Stores bind vars locally if adapter doesn't
        filtered_kwargs = {key: val for key, val in kwargs.items() if key not in self.WRAPPER_SETTINGS}
        try:
            if hasattr(self.connection, '_connection'):
                self._cursor = self.connection._connection.cursor(**filtered_kwargs)
            else:
                self._cursor = self.connection.cursor(**filtered_kwargs)
        except AttributeError as e:
            raise TypeError(f'First argument must be a database connection object: {e}')

        self.paramstyle = getattr(self.connection.interface, 'paramstyle', ParamStyle.DEFAULT)
        self.placeholder = ParamStyle.get_placeholder(self.paramstyle)

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying cursor."""
        if key == 'statement' and not hasattr(self._cursor, 'statement'):
            return self._statement
        if key == 'bind_vars' and not hasattr(self._cursor, 'bind_vars'):
            return self._bind_vars
        try:
            cursor = self.__dict__['_cursor']
        except KeyError:
            raise AttributeError(key)
        return getattr(cursor, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes on this cursor or delegate to underlying cursor."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._cursor, key, value)

    def __dir__(self) -> List[str]:
        """Return available attributes."""
        return list(set(
            dir(self._cursor) +
            dir(self.__class__) +
            self._local_attrs
        ))

    def __iter__(self) -> Iterator:
        """Make cursor iterable."""
        self._is_ready()
        return self

    def __next__(self) -> Any:
        """Iterator protocol."""
        row = self.fetchone()
        if row is not None:
            return row
        raise StopIteration

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _prepare_params(self, param_names: tuple, bind_vars: dict) -> Any:
        """
        Convert dict parameters to format required by cursor's paramstyle.

        Names without a value are bound as NULL.

        Returns:
            Tuple for positional styles, dict for named styles
        """
        missing = set(param_names) - set(bind_vars.keys())
        if missing:
            logger.info(f"Parameters not provided, defaulting to None: {', '.join(sorted(missing))}")
        if self.paramstyle in ParamStyle.positional_styles():
            return tuple(bind_vars.get(name) for name in param_names)
        else:
            return {name: bind_vars.get(name) for name in param_names}

    def _create_record_factory(self) -> None:
        """Create the function to process each row. Override in subclasses."""

        def factory(*args):
            return list(args)

        self.record_factory = factory

    def columns(self, case: Optional[str] = None) -> List[str]:
        """Return list of column names, or [] when the last statement returned no result set."""
        if not self.description:
            return []

        if case not in ColumnCase.values():
            case = self.column_case

        if case == ColumnCase.LOWER:
            return [c[0].lower() for c in self.description]
        elif case == ColumnCase.UPPER:
            return [c[0].upper() for c in self.description]
        elif case == ColumnCase.TITLE:
            return [c[0].title() for c in self.description]
        return [c[0] for c in self.description]

    def has_result_set(self) -> bool:
        """True when the last statement produced rows to read (a query rather than a non-query)."""
        return self._cursor.description is not None

    def _is_ready(self) -> bool:
        """Check if cursor is ready to fetch results."""
        if not self.has_result_set():
            raise RuntimeError('Query has not been run or did not return a result set.')

        if self.record_factory is None:
            self._create_record_factory()

        return True

    def execute(self, query: str, bind_vars: Any = ()) -> None:
        """Execute a database query."""
        if bind_vars is None:
            bind_vars = ()
        self.record_factory = None

        if not hasattr(self._cursor, 'statement'):
            self.__dict__['_statement'] = query
        if not hasattr(self._cursor, 'bind_vars'):
            self.__dict__['_bind_vars'] = bind_vars

        # some adapters return a cursor instead of the Database API specified None
        _ = self._cursor.execute(query, bind_vars)

    def execute_file(self, filename: str, bind_vars: Optional[dict] = None, **kwargs) -> None:
        """
        Execute a single SQL statement from a file with named parameter substitution.

        Scripts holding several statements separated by GO lines should go
        through ``dbhelper.queries.execute_non_query_batch()`` instead.

        Args:
            filename: Path to SQL file (relative to CWD)
            bind_vars: Dictionary of named parameters
            **kwargs:
                encoding: File encoding (default: utf-8-sig)

        Example:
            cursor.execute_file('queries/get_user.sql', {'user_id': 123})
        """
        encoding = kwargs.get('encoding', 'utf-8-sig')
        with open(filename, encoding=encoding) as f:
            sql = f.read()

        if bind_vars is None:
            transformed_sql, params = sql, ()
        else:
            transformed_sql, param_names = process_sql_parameters(sql, self.paramstyle)
            params = self._prepare_params(param_names, bind_vars)

        try:
            self.execute(transformed_sql, params)
        except Exception:
            logger.error(
                f"Error executing SQL file: {filename}\n"
                f"Transformed SQL: {transformed_sql}\n"
                f"Parameters: {bind_vars}"
            )
            raise

    def fetchone(self) -> Optional[Any]:
        """Fetch the next row."""
        if self._is_ready():
            row = self._cursor.fetchone()
            if row is not None:
                return self.record_factory(*row)
        return None

    def fetchmany(self, size: Optional[int] = None) -> List[Any]:
        """Fetch the next set of rows."""
        if size is None:
            size = getattr(self._cursor, 'arraysize', 1)

        if self._is_ready():
            return [
                self.record_factory(*row)
                for row in self._cursor.fetchmany(size)
            ]
        return []

    def fetchall(self) -> List[Any]:
        """Fetch all remaining rows."""
        if self._is_ready():
            return [
                self.record_factory(*row)
                for row in self._cursor.fetchall()
            ]
        return []

    def close(self) -> None:
        """Close the cursor, and its connection when the cursor owns it."""
        self._cursor.close()
        if self.owns_connection and not getattr(self.connection, 'closed', False):
            self.connection.close()


class TupleCursor(Cursor):
    """Cursor that returns namedtuples."""

    def _create_record_factory(self) -> None:
        """Create namedtuple factory with current columns."""
        # rename=True turns names that are not identifiers (or repeat) into _0, _1, ...
        self.record_factory = namedtuple('TupleRecord', self.columns(), rename=True)


class DictCursor(Cursor):
    """Cursor that returns OrderedDict objects."""

    def _create_record_factory(self) -> None:
        """Create factory that returns OrderedDict."""
        columns = self.columns()

        def factory(*args):
            return OrderedDict(zip(columns, args))

        self.record_factory = factory
