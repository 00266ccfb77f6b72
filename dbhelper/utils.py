# dbhelper/utils.py
"""
Utility functions for dbhelper.
"""

import re
import datetime as dt
from typing import Tuple, Any, Optional

from .defaults import settings

MIDNIGHT = dt.time(0, 0, 0)
# cache format strings for performance
_format_cache = None

# :name bind variables; skips '::' casts and numeric tails like '12:30'
_BIND_VAR_PATTERN = re.compile(r'(?<![:\w]):([A-Za-z_]\w*)')


class ParamStyle:
    """
    SQL parameter placeholder styles for different database drivers.

    Queries passed to dbhelper are always written with ``:name`` bind variables.
    They are rewritten to the driver's style before execution:

    - QMARK: Question mark placeholders (?, ?) - SQLite, pyodbc
    - NUMERIC: Numeric placeholders (:1, :2)
    - NAMED: Named placeholders (:name, :email)
    - FORMAT: Printf-style (%s, %s)
    - PYFORMAT: Python format (%(name)s) - pymssql

    Example
    -------
    ::
        >>> ParamStyle.get_placeholder('qmark')
        '?'
        >>> ParamStyle.get_placeholder('pyformat')
        '%s'
    """
    QMARK = 'qmark'         # id = ?
    NUMERIC = 'numeric'     # id = :1
    NAMED = 'named'         # id = :id
    FORMAT = 'format'       # id = %s
    PYFORMAT = 'pyformat'   # id = %(id)s also %s for positional
    DEFAULT = NAMED

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls)
                if not attr.startswith('_') and isinstance(getattr(cls, attr), str)]

    @classmethod
    def positional_styles(cls):
        """ Parameter styles where parameters must be in properly ordered tuple instead of dict"""
        return (cls.QMARK, cls.NUMERIC, cls.FORMAT)

    @classmethod
    def named_styles(cls):
        """ Parameter styles where parameters must be in dict instead of tuple"""
        return (cls.NAMED, cls.PYFORMAT)

    @classmethod
    def get_placeholder(cls, paramstyle: str) -> str:
        if paramstyle == cls.QMARK:
            return '?'
        elif paramstyle in (cls.FORMAT, cls.PYFORMAT):
            return '%s'
        elif paramstyle in (cls.NUMERIC, cls.NAMED):
            return ':1'
        return ''


def require_text(value: Optional[str], name: str) -> str:
    """
    Validate a required text argument.

    Raises:
        ValueError: if the value is None, empty or only white space
        TypeError: if the value is not a string
    """
    if value is None:
        raise ValueError(f"{name} is required, got None")
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValueError(f"{name} cannot be empty or white space")
    return value


def require_timeout(timeout: Optional[float], name: str = 'timeout') -> Optional[float]:
    """Validate an optional timeout in seconds."""
    if timeout is None:
        return None
    if timeout < 0:
        raise ValueError(f"{name} must be greater than or equal to 0, got {timeout}")
    return timeout


def _build_format_strings():
    """Build format strings for datetime and date objects."""
    return {
        'date': settings.get('date_format', '%Y-%m-%d'),
        'datetime': settings.get('datetime_format', '%Y-%m-%d %H:%M:%S'),
        'datetime_tz': settings.get('datetime_format', '%Y-%m-%d %H:%M:%S') +
                       settings.get('tz_suffix', '%z'),
        'timestamp': settings.get('timestamp_format', '%Y-%m-%d %H:%M:%S.%f'),
        'timestamp_tz': settings.get('timestamp_format', '%Y-%m-%d %H:%M:%S.%f') +
                        settings.get('tz_suffix', '%z'),
        'time': settings.get('time_format', '%H:%M:%S'),
        'time_micro': settings.get('time_format', '%H:%M:%S') + '.%f',
        'null': settings.get('null_string', ''),
    }


def reset_format_cache():
    """Clear format cache to force rebuilding on next call."""
    global _format_cache
    _format_cache = None


def _get_format_strings():
    global _format_cache
    if _format_cache is None:
        _format_cache = _build_format_strings()
    return _format_cache


def to_string(obj: Any) -> str:
    """
    Convert a database value to its text representation.

    Datetimes keep microseconds when they have them, midnight datetimes are
    written as dates and None becomes ``settings['null_string']``.
    """
    fmts = _get_format_strings()
    if obj is None:
        return fmts['null']
    elif isinstance(obj, dt.datetime):
        if obj.microsecond:
            return obj.strftime(fmts['timestamp_tz'] if obj.tzinfo else fmts['timestamp'])
        if obj.tzinfo:
            return obj.strftime(fmts['datetime_tz'])
        if obj.time() == MIDNIGHT:
            return obj.strftime(fmts['date'])
        return obj.strftime(fmts['datetime'])
    elif isinstance(obj, dt.date):
        return obj.strftime(fmts['date'])
    elif isinstance(obj, dt.time):
        return obj.strftime(fmts['time_micro'] if obj.microsecond else fmts['time'])
    elif isinstance(obj, bool):
        return to_bit(obj)
    elif isinstance(obj, str):
        return obj
    elif isinstance(obj, (bytes, bytearray)):
        return obj.hex()
    elif hasattr(obj, 'read'):
        # Handle LOB objects
        return str(obj.read())
    else:
        return str(obj)


def to_bit(value: Any) -> str:
    """Render a boolean as a SQL bit literal: '1' for True, '0' for False."""
    return '1' if value else '0'


def process_sql_parameters(sql: str, paramstyle: str) -> Tuple[str, Tuple[str, ...]]:
    """
    Process SQL parameters according to the specified paramstyle.
    Always extracts parameter names; converts SQL format if needed.

    Parameters:
        sql: The SQL query string containing named parameters in the format ':name'.
        paramstyle: The desired parameter style for the resulting SQL string.

    Returns:
        A tuple containing the processed SQL query string and a tuple of all named parameters
        extracted in the order in which they appear in the original query.

    Raises:
        ValueError: If the provided paramstyle is not supported.
    """
    param_names = tuple(_BIND_VAR_PATTERN.findall(sql))

    if paramstyle == ParamStyle.NAMED:
        return sql, param_names
    elif paramstyle == ParamStyle.PYFORMAT:
        return _BIND_VAR_PATTERN.sub(r'%(\1)s', sql), param_names
    elif paramstyle == ParamStyle.QMARK:
        return _BIND_VAR_PATTERN.sub('?', sql), param_names
    elif paramstyle == ParamStyle.FORMAT:
        return _BIND_VAR_PATTERN.sub('%s', sql), param_names
    elif paramstyle == ParamStyle.NUMERIC:
        counter = iter(range(1, len(param_names) + 1))
        return _BIND_VAR_PATTERN.sub(lambda m: f':{next(counter)}', sql), param_names
    else:
        raise ValueError(f"Unsupported paramstyle: {paramstyle}")
