# dbhelper/queries.py
"""
Command execution and result helpers.

Every helper takes a ``target`` that is either an open :class:`Database` or a
connection string. With a connection string the helper opens its own
connection and closes it when it is done.

Statements run outside a :class:`Transaction` are committed as soon as they
succeed. Pass the transaction to every helper while one is pending on the
connection; its work is committed or rolled back as a unit.

The helpers cover the common shapes of a result set::

    read_single_value(db, "SELECT COUNT(*) FROM quotes")
    read_single_column(db, "SELECT symbol FROM quotes")
    read_single_row_with_named_columns(db, "SELECT * FROM quotes WHERE id = :id", {'id': 7})
    read_all_rows_with_ordinal_columns(db, "SELECT open, close FROM quotes")

and SQL scripts with GO separators::

    execute_non_query_batch(db, open('deploy.sql').read())

Errors raised by the driver propagate unchanged. Results that do not have
the expected shape (no rows where one is required, two columns where one is
expected, ...) raise RuntimeError.
"""

import logging
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .batch import split_batch
from .cursors import Command, Cursor
from .database import CursorType, Database, Transaction, open_connection
from .defaults import settings
from .utils import require_text, require_timeout, to_bit
from .writers.csv import to_csv

logger = logging.getLogger(__name__)

__all__ = ['build_command', 'execute_reader', 'execute_non_query', 'execute_non_query_batch',
           'has_at_least_one_row', 'read_single_column', 'read_single_value',
           'read_single_row_with_named_columns', 'read_single_row_with_named_columns_or_default',
           'read_single_row_with_ordinal_columns', 'read_single_row_with_ordinal_columns_or_default',
           'read_all_rows_with_named_columns', 'read_all_rows_with_ordinal_columns',
           'write_to_csv', 'rollback_transaction', 'to_bit']

Target = Union[Database, str]

NO_ROWS = "Query results in no rows."
MORE_THAN_ONE_ROW = "Query results in more than one row."
MORE_THAN_ONE_COLUMN = "Query results in more than one column."
NO_RESULT_SET = "Statement does not return a result set."


def _validate_transaction(database: Database, transaction: Optional[Transaction]) -> None:
    if transaction is None:
        pending = getattr(database, '_transaction', None)
        if pending is not None and pending.active:
            raise RuntimeError("Command requires the transaction when the connection has a pending transaction.")
        return
    if transaction.connection is None:
        raise ValueError("transaction is invalid; its connection is None.")
    if transaction.connection is not database:
        raise ValueError("transaction is using a different connection than the specified connection.")


def build_command(database: Database,
                  sql: str,
                  bind_vars: Optional[dict] = None,
                  timeout: Optional[float] = None,
                  transaction: Optional[Transaction] = None,
                  cursor_type: Optional[str] = None) -> Command:
    """
    Build a command to run against an open connection.

    Args:
        database: Open Database
        sql: SQL text with :name bind variables
        bind_vars: Values for the bind variables. Names without a value bind as NULL.
        timeout: Statement timeout in seconds (default: settings['default_command_timeout'])
        transaction: Transaction the command takes part in; must belong to database
        cursor_type: 'list', 'tuple' or 'dict' (default: settings['default_cursor_type'])

    Raises:
        ValueError: connection is None or closed, sql is blank, timeout is negative
            or the transaction is completed or belongs to another connection
    """
    if database is None:
        raise ValueError("database is required, got None")
    if getattr(database, 'closed', False):
        raise ValueError(f"connection is in an invalid state: '{database.state}'. Must be open.")
    require_text(sql, 'sql')
    if timeout is None:
        timeout = settings.get('default_command_timeout')
    require_timeout(timeout)
    _validate_transaction(database, transaction)

    cursor = database.cursor(cursor_type)
    return Command(cursor, sql, bind_vars, timeout=timeout, transaction=transaction)


def _open(target: Target) -> Database:
    if target is None:
        raise ValueError("target is required, got None")
    if not isinstance(target, str):
        raise TypeError(f"target must be a Database or a connection string, got {type(target).__name__}")
    return open_connection(target)


@contextmanager
def _connected(target: Target) -> Iterator[Database]:
    """Yield an open Database for target, closing it afterwards if it was opened here."""
    if isinstance(target, Database):
        yield target
        return

    with _open(target) as db:
        yield db


def _query(database: Database, sql, bind_vars, timeout, transaction) -> Cursor:
    """Run a query on a list cursor, failing when the statement returns no result set."""
    cursor = build_command(database, sql, bind_vars, timeout, transaction, CursorType.LIST).execute_reader()
    if not cursor.has_result_set():
        cursor.close()
        raise RuntimeError(NO_RESULT_SET)
    return cursor


def _check_owned_transaction(target: Target, transaction: Optional[Transaction]) -> None:
    if transaction is not None and not isinstance(target, Database):
        raise ValueError("A transaction can only be used with an open Database, not a connection string.")


def execute_reader(target: Target,
                   sql: str,
                   bind_vars: Optional[dict] = None,
                   timeout: Optional[float] = None,
                   transaction: Optional[Transaction] = None,
                   cursor_type: Optional[str] = None) -> Cursor:
    """
    Run a query and return the cursor to read it.

    When target is a connection string the cursor owns the connection it
    opened: closing the cursor closes the connection.

    Example:
        with execute_reader(conn_str, "SELECT * FROM quotes") as cursor:
            for row in cursor:
                ...
    """
    _check_owned_transaction(target, transaction)
    if isinstance(target, Database):
        return build_command(target, sql, bind_vars, timeout, transaction, cursor_type).execute_reader()

    db = _open(target)
    try:
        cursor = build_command(db, sql, bind_vars, timeout, None, cursor_type).execute_reader()
    except Exception:
        db.close()
        raise
    cursor.owns_connection = True
    return cursor


def execute_non_query(target: Target,
                      sql: str,
                      bind_vars: Optional[dict] = None,
                      timeout: Optional[float] = None,
                      transaction: Optional[Transaction] = None) -> int:
    """
    Run a statement that returns no rows.

    Returns:
        Number of rows affected, or -1 when the driver does not report it
        (DDL for example)
    """
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        cmd = build_command(db, sql, bind_vars, timeout, transaction)
        try:
            rowcount = cmd.execute_non_query()
        finally:
            cmd.cursor.close()
        if transaction is None:
            db.commit()
        return rowcount


def execute_non_query_batch(target: Target,
                            batch_sql: str,
                            timeout: Optional[float] = None,
                            transaction: Optional[Transaction] = None) -> List[int]:
    """
    Run a SQL script whose statements are separated by GO lines.

    Statements run one after another on a single connection. The first
    statement that fails stops the batch and its error is raised unchanged;
    nothing after it runs. Without a transaction each statement is
    committed as soon as it succeeds, so the statements before a failure
    stay applied; with one, the caller commits or rolls back the lot.

    Args:
        target: Open Database or connection string
        batch_sql: Script text
        timeout: Timeout in seconds applied to each statement
        transaction: Transaction spanning the whole batch (Database targets only)

    Returns:
        Rows affected by each statement, in script order

    Raises:
        ValueError: batch_sql is None, empty or white space
        RuntimeError: the script holds nothing but GO separators
    """
    require_text(batch_sql, 'batch_sql')
    statements = split_batch(batch_sql)
    if not statements:
        raise RuntimeError("Batch contains no statements to execute; it holds only GO separators and white space.")

    _check_owned_transaction(target, transaction)
    results = []
    with _connected(target) as db:
        logger.info(f"Executing batch of {len(statements)} statement(s) on {db}")
        for index, statement in enumerate(statements, 1):
            cmd = build_command(db, statement, None, timeout, transaction)
            try:
                results.append(cmd.execute_non_query())
            except Exception:
                logger.error(f"Batch stopped at statement {index} of {len(statements)}")
                raise
            finally:
                cmd.cursor.close()
            if transaction is None:
                db.commit()
            logger.debug(f"Statement {index} of {len(statements)} affected {results[-1]} row(s)")
    return results


def has_at_least_one_row(target: Target,
                         sql: str,
                         bind_vars: Optional[dict] = None,
                         timeout: Optional[float] = None,
                         transaction: Optional[Transaction] = None) -> bool:
    """True when the query returns at least one row."""
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        with _query(db, sql, bind_vars, timeout, transaction) as cursor:
            return cursor.fetchone() is not None


def read_single_column(target: Target,
                       sql: str,
                       bind_vars: Optional[dict] = None,
                       timeout: Optional[float] = None,
                       transaction: Optional[Transaction] = None) -> List[Any]:
    """
    Read the values of a one column query.

    Raises:
        RuntimeError: the query returns more than one column
    """
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        with _query(db, sql, bind_vars, timeout, transaction) as cursor:
            if len(cursor.description) > 1:
                raise RuntimeError(MORE_THAN_ONE_COLUMN)
            return [row[0] for row in cursor.fetchall()]


def read_single_value(target: Target,
                      sql: str,
                      bind_vars: Optional[dict] = None,
                      timeout: Optional[float] = None,
                      transaction: Optional[Transaction] = None) -> Any:
    """
    Read the one value of a one row, one column query. NULL is returned as None.

    Raises:
        RuntimeError: the query returns no rows, more than one row or more than one column
    """
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        with _query(db, sql, bind_vars, timeout, transaction) as cursor:
            if len(cursor.description) > 1:
                raise RuntimeError(MORE_THAN_ONE_COLUMN)
            row = _fetch_single_row(cursor, required=True)
            return row[0]


def _fetch_single_row(cursor: Cursor, required: bool):
    rows = cursor.fetchmany(2)
    if len(rows) > 1:
        raise RuntimeError(MORE_THAN_ONE_ROW)
    if not rows:
        if required:
            raise RuntimeError(NO_ROWS)
        return None
    return rows[0]


def _unique_columns(cursor: Cursor) -> List[str]:
    columns = cursor.columns()
    seen = set()
    for name in columns:
        if name in seen:
            raise RuntimeError(f"Query results in two columns with the same name: {name}.")
        seen.add(name)
    return columns


def _named(columns: List[str], row) -> 'OrderedDict[str, Any]':
    return OrderedDict(zip(columns, row))


def _ordinal(row) -> Dict[int, Any]:
    return dict(enumerate(row))


def _read_single_row(target, sql, bind_vars, timeout, transaction, named: bool, required: bool):
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        with _query(db, sql, bind_vars, timeout, transaction) as cursor:
            columns = _unique_columns(cursor) if named else None
            row = _fetch_single_row(cursor, required)
            if row is None:
                return None
            return _named(columns, row) if named else _ordinal(row)


def read_single_row_with_named_columns(target: Target,
                                       sql: str,
                                       bind_vars: Optional[dict] = None,
                                       timeout: Optional[float] = None,
                                       transaction: Optional[Transaction] = None) -> 'OrderedDict[str, Any]':
    """
    Read the one row of a query as column name -> value.

    Raises:
        RuntimeError: no rows, more than one row, or two columns with the same name
    """
    return _read_single_row(target, sql, bind_vars, timeout, transaction, named=True, required=True)


def read_single_row_with_named_columns_or_default(target: Target,
                                                  sql: str,
                                                  bind_vars: Optional[dict] = None,
                                                  timeout: Optional[float] = None,
                                                  transaction: Optional[Transaction] = None
                                                  ) -> Optional['OrderedDict[str, Any]']:
    """Like read_single_row_with_named_columns() but returns None when there are no rows."""
    return _read_single_row(target, sql, bind_vars, timeout, transaction, named=True, required=False)


def read_single_row_with_ordinal_columns(target: Target,
                                         sql: str,
                                         bind_vars: Optional[dict] = None,
                                         timeout: Optional[float] = None,
                                         transaction: Optional[Transaction] = None) -> Dict[int, Any]:
    """
    Read the one row of a query as column ordinal -> value.

    Raises:
        RuntimeError: no rows or more than one row
    """
    return _read_single_row(target, sql, bind_vars, timeout, transaction, named=False, required=True)


def read_single_row_with_ordinal_columns_or_default(target: Target,
                                                    sql: str,
                                                    bind_vars: Optional[dict] = None,
                                                    timeout: Optional[float] = None,
                                                    transaction: Optional[Transaction] = None
                                                    ) -> Optional[Dict[int, Any]]:
    """Like read_single_row_with_ordinal_columns() but returns None when there are no rows."""
    return _read_single_row(target, sql, bind_vars, timeout, transaction, named=False, required=False)


def read_all_rows_with_named_columns(target: Target,
                                     sql: str,
                                     bind_vars: Optional[dict] = None,
                                     timeout: Optional[float] = None,
                                     transaction: Optional[Transaction] = None) -> List['OrderedDict[str, Any]']:
    """
    Read every row of a query as column name -> value.

    Raises:
        RuntimeError: two columns with the same name
    """
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        with _query(db, sql, bind_vars, timeout, transaction) as cursor:
            columns = _unique_columns(cursor)
            return [_named(columns, row) for row in cursor.fetchall()]


def read_all_rows_with_ordinal_columns(target: Target,
                                       sql: str,
                                       bind_vars: Optional[dict] = None,
                                       timeout: Optional[float] = None,
                                       transaction: Optional[Transaction] = None) -> List[Dict[int, Any]]:
    """Read every row of a query as column ordinal -> value."""
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        with _query(db, sql, bind_vars, timeout, transaction) as cursor:
            return [_ordinal(row) for row in cursor.fetchall()]


def write_to_csv(target: Target,
                 sql: str,
                 output_path: Union[str, Path],
                 bind_vars: Optional[dict] = None,
                 timeout: Optional[float] = None,
                 transaction: Optional[Transaction] = None,
                 **csv_kwargs) -> int:
    """
    Run a query and write its result set to a CSV file, header line first.

    A query without rows produces a file holding only the header line.

    Returns:
        Number of rows written

    Raises:
        ValueError: output_path is None or blank
        RuntimeError: the statement does not return a result set
    """
    if output_path is None or not str(output_path).strip():
        raise ValueError("output_path cannot be None, empty or white space")
    _check_owned_transaction(target, transaction)
    with _connected(target) as db:
        with _query(db, sql, bind_vars, timeout, transaction) as cursor:
            return to_csv(cursor, output_path, **csv_kwargs)


def rollback_transaction(transaction: Transaction) -> None:
    """
    Roll back a transaction.

    Raises:
        ValueError: transaction is None
        RuntimeError: transaction has already been committed or rolled back
    """
    if transaction is None:
        raise ValueError("transaction is required, got None")
    transaction.rollback()
