# dbhelper/__init__.py
"""
dbhelper - SQL batch and query helpers

A small database convenience layer that provides:
- Splitting of SQL scripts on GO separator lines and running them statement by statement
- Query helpers that check the shape of a result (one value, one row, one column)
- SQL Server style connection strings: build, parse, obfuscate
- YAML-based configuration with password encryption
- CSV export of query results

Basic usage::

    import dbhelper

    with dbhelper.connect('warehouse') as db:
        dbhelper.execute_non_query_batch(db, open('deploy.sql').read())
        count = dbhelper.read_single_value(db, "SELECT COUNT(*) FROM orders")

Connection strings work wherever a Database does::

    conn_str = dbhelper.build_connection_string('db01', database_name='sales')
    rows = dbhelper.read_all_rows_with_named_columns(conn_str, "SELECT * FROM regions")
"""

__version__ = '0.1.0'

from .batch import split_batch, split_batch_file
from .database import Database, Transaction, open_connection
from .config import connect, set_config_file
from .connection_string import build_connection_string, obfuscate_credentials
from .cursors import Cursor, TupleCursor, DictCursor
from .logging_utils import setup_logging, errors_logged, cleanup_old_logs
from .queries import (
    execute_reader, execute_non_query, execute_non_query_batch, has_at_least_one_row,
    read_single_column, read_single_value,
    read_single_row_with_named_columns, read_single_row_with_named_columns_or_default,
    read_single_row_with_ordinal_columns, read_single_row_with_ordinal_columns_or_default,
    read_all_rows_with_named_columns, read_all_rows_with_ordinal_columns,
    write_to_csv, rollback_transaction, to_bit,
)
from . import writers

__all__ = [
    'split_batch',
    'split_batch_file',
    'connect',
    'config',
    'set_config_file',
    'open_connection',
    'build_connection_string',
    'obfuscate_credentials',
    'Database',
    'Transaction',
    'Cursor',
    'TupleCursor',
    'DictCursor',
    'execute_reader',
    'execute_non_query',
    'execute_non_query_batch',
    'has_at_least_one_row',
    'read_single_column',
    'read_single_value',
    'read_single_row_with_named_columns',
    'read_single_row_with_named_columns_or_default',
    'read_single_row_with_ordinal_columns',
    'read_single_row_with_ordinal_columns_or_default',
    'read_all_rows_with_named_columns',
    'read_all_rows_with_ordinal_columns',
    'write_to_csv',
    'rollback_transaction',
    'to_bit',
    'writers',
    'setup_logging',
    'errors_logged',
    'cleanup_old_logs'
]
