# dbhelper/connection_string.py
"""
Build, parse and rewrite ``key=value;key=value`` connection strings.

Connection strings use the SQL Server client keywords (``Data Source``,
``Initial Catalog``, ``User ID``, ``Password``, ...). Keys are matched case
insensitively and the common synonyms (``Server``, ``Database``, ``UID``,
``PWD``) are understood. Values holding a ``;`` may be wrapped in single or
double quotes.

Example
-------
::

    from dbhelper.connection_string import build_connection_string, obfuscate_credentials

    cs = build_connection_string('db01', database_name='sales', user_name='etl', password='s3cret')
    # 'Data Source=db01;Initial Catalog=sales;Integrated Security=False;User ID=etl;Password=s3cret'
    obfuscate_credentials(cs)
    # 'Data Source=db01;Initial Catalog=sales;Integrated Security=False;User ID=*****;Password=*****'
"""

import re
import logging
from collections import OrderedDict
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from .utils import require_text, require_timeout

logger = logging.getLogger(__name__)

__all__ = ['build_connection_string', 'parse_connection_string', 'format_connection_string',
           'add_or_update_initial_catalog', 'obfuscate_credentials', 'connection_params']

OBFUSCATED = '*****'
DEFAULT_DATABASE = 'master'

DATA_SOURCE = 'Data Source'
INITIAL_CATALOG = 'Initial Catalog'
INTEGRATED_SECURITY = 'Integrated Security'
USER_ID = 'User ID'
PASSWORD = 'Password'
CONNECT_TIMEOUT = 'Connect Timeout'

# lower-cased keyword -> canonical keyword
_SYNONYMS = {
    'data source': DATA_SOURCE,
    'server': DATA_SOURCE,
    'address': DATA_SOURCE,
    'addr': DATA_SOURCE,
    'network address': DATA_SOURCE,
    'initial catalog': INITIAL_CATALOG,
    'database': INITIAL_CATALOG,
    'user id': USER_ID,
    'userid': USER_ID,
    'uid': USER_ID,
    'user': USER_ID,
    'password': PASSWORD,
    'pwd': PASSWORD,
    'integrated security': INTEGRATED_SECURITY,
    'trusted_connection': INTEGRATED_SECURITY,
    'connect timeout': CONNECT_TIMEOUT,
    'connection timeout': CONNECT_TIMEOUT,
    'timeout': CONNECT_TIMEOUT,
}

_PAIR_PATTERN = re.compile(r'''
    [^\S;]*(?P<key>[^=;]*?)[^\S;]*=[^\S;]*
    (?P<value>"(?:[^"]|"")*"|'(?:[^']|'')*'|[^;]*?)
    [^\S;]*(?:;|\Z)
''', re.VERBOSE)

_TRUE_VALUES = ('true', 'yes', 'sspi')


def canonical_key(key: str) -> str:
    """Return the canonical spelling for a connection string keyword."""
    normalized = ' '.join(key.lower().split())
    return _SYNONYMS.get(normalized, key.strip())


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        quote = value[0]
        return value[1:-1].replace(quote * 2, quote)
    return value


def _quote(value: Any) -> str:
    text = str(value)
    if ';' in text or text != text.strip() or text[:1] in ('"', "'"):
        return '"' + text.replace('"', '""') + '"'
    return text


def parse_connection_string(connection_string: str) -> 'OrderedDict[str, str]':
    """
    Parse a connection string into an ordered mapping.

    Keys keep the spelling used in the string; values are unquoted. When a
    key appears twice the last value wins.

    Raises:
        ValueError: if the string is blank or a segment is not ``key=value``
    """
    require_text(connection_string, 'connection_string')

    pairs = OrderedDict()
    pos = 0
    length = len(connection_string)
    while pos < length:
        # skip separators and white space between pairs
        while pos < length and (connection_string[pos] == ';' or connection_string[pos].isspace()):
            pos += 1
        if pos >= length:
            break
        match = _PAIR_PATTERN.match(connection_string, pos)
        if not match or not match.group('key'):
            raise ValueError(
                f"Format of the connection string does not conform to specification "
                f"starting at index {pos}: {connection_string[pos:pos + 20]!r}"
            )
        pairs[match.group('key')] = _unquote(match.group('value'))
        pos = match.end()
    return pairs


def format_connection_string(pairs: Union[Mapping[str, Any], Iterable[Tuple[str, Any]]]) -> str:
    """Join key/value pairs into a connection string, quoting values that need it."""
    items = pairs.items() if hasattr(pairs, 'items') else pairs
    return ';'.join(f"{key}={_quote(value)}" for key, value in items)


def _find_key(pairs: Mapping[str, str], canonical: str) -> Optional[str]:
    for key in pairs:
        if canonical_key(key) == canonical:
            return key
    return None


def build_connection_string(server_name: str,
                            port: Optional[int] = None,
                            instance_name: Optional[str] = None,
                            database_name: Optional[str] = None,
                            user_name: Optional[str] = None,
                            password: Optional[str] = None,
                            connection_timeout: Optional[int] = None) -> str:
    """
    Build a SQL Server connection string.

    Without a user name the connection uses integrated (Windows) security.

    Args:
        server_name: Host name or address of the server
        port: TCP port, 1 - 65535
        instance_name: Named instance on the server
        database_name: Initial catalog (default: 'master')
        user_name: SQL login; switches Integrated Security off
        password: Password for the SQL login
        connection_timeout: Seconds to wait while connecting

    Returns:
        Connection string

    Example:
        >>> build_connection_string('myserver.com', 414, 'InstanceName', 'my-database')
        'Data Source=myserver.com:414\\\\InstanceName;Initial Catalog=my-database;Integrated Security=True'
    """
    require_text(server_name, 'server_name')
    if port is not None and not (isinstance(port, int) and 1 <= port <= 65535):
        raise ValueError(f"{port} is not a valid port number")
    require_timeout(connection_timeout, 'connection_timeout')

    data_source = server_name
    if port is not None:
        data_source += f':{port}'
    if instance_name:
        data_source += f'\\{instance_name}'

    pairs = [
        (DATA_SOURCE, data_source),
        (INITIAL_CATALOG, database_name or DEFAULT_DATABASE),
    ]
    if user_name:
        pairs.append((INTEGRATED_SECURITY, 'False'))
        pairs.append((USER_ID, user_name))
        if password is not None:
            pairs.append((PASSWORD, password))
    else:
        pairs.append((INTEGRATED_SECURITY, 'True'))
    if connection_timeout is not None:
        pairs.append((CONNECT_TIMEOUT, connection_timeout))

    return format_connection_string(pairs)


def add_or_update_initial_catalog(connection_string: str, database_name: str) -> str:
    """
    Point a connection string at a different database.

    An existing ``Initial Catalog`` (or ``Database``) keeps its position and
    spelling; otherwise one is inserted right after ``Data Source``.
    """
    require_text(connection_string, 'connection_string')
    require_text(database_name, 'database_name')

    pairs = parse_connection_string(connection_string)
    catalog_key = _find_key(pairs, INITIAL_CATALOG)
    if catalog_key:
        pairs[catalog_key] = database_name
        return format_connection_string(pairs)

    items = list(pairs.items())
    source_key = _find_key(pairs, DATA_SOURCE)
    position = [key for key, _ in items].index(source_key) + 1 if source_key else 0
    items.insert(position, (INITIAL_CATALOG, database_name))
    return format_connection_string(items)


def obfuscate_credentials(connection_string: str, obfuscate_user_name: bool = True) -> str:
    """
    Mask the password, and optionally the user name, so the string can be logged.

    Connection strings without credentials are returned unchanged.
    """
    require_text(connection_string, 'connection_string')

    masked = {PASSWORD}
    if obfuscate_user_name:
        masked.add(USER_ID)

    pairs = parse_connection_string(connection_string)
    if not any(canonical_key(key) in masked for key in pairs):
        return connection_string
    return format_connection_string(
        (key, OBFUSCATED if canonical_key(key) in masked else value)
        for key, value in pairs.items()
    )


def _split_data_source(data_source: str) -> Dict[str, Any]:
    """Split 'host[:port|,port][\\instance]' into host and port parameters."""
    source = data_source.strip()
    if source.lower().startswith('tcp:'):
        source = source[4:]

    instance = None
    if '\\' in source:
        source, instance = source.split('\\', 1)

    port = None
    for separator in (',', ':'):
        host, sep, tail = source.rpartition(separator)
        if sep and tail.strip().isdigit():
            source, port = host, int(tail)
            break

    params = {'host': f'{source}\\{instance}' if instance else source}
    if port is not None:
        params['port'] = port
    return params


def connection_params(connection_string: str, db_type: str) -> Dict[str, Any]:
    """
    Translate a connection string into keyword arguments for Database.create().

    Args:
        connection_string: Connection string to translate
        db_type: 'sqlserver' or 'sqlite'

    Returns:
        Dict of connection parameters (host, port, database, user, password,
        timeout, trusted_connection). Unknown keys are passed through with
        lower case, underscore separated names.
    """
    params = {}
    for key, value in parse_connection_string(connection_string).items():
        canonical = canonical_key(key)
        if canonical == DATA_SOURCE:
            if db_type == 'sqlite':
                params['database'] = value
            else:
                params.update(_split_data_source(value))
        elif canonical == INITIAL_CATALOG:
            if db_type != 'sqlite':
                params['database'] = value
        elif canonical == USER_ID:
            params['user'] = value
        elif canonical == PASSWORD:
            params['password'] = value
        elif canonical == CONNECT_TIMEOUT:
            try:
                params['timeout'] = int(value)
            except ValueError:
                raise ValueError(f"Invalid value for '{key}': {value!r} is not a number of seconds")
        elif canonical == INTEGRATED_SECURITY:
            if value.strip().lower() in _TRUE_VALUES:
                params['trusted_connection'] = True
        else:
            params['_'.join(canonical.lower().split())] = value

    logger.debug(f"Parsed connection string: {obfuscate_credentials(connection_string)}")
    return params
