# dbhelper/database.py
"""
Database connection wrapper that provides a uniform interface
to different database adapters.
"""

import importlib
import importlib.util
import os
import logging
from typing import Any, Dict, List, Optional, Type, Union
from contextlib import contextmanager

from .connection_string import connection_params, obfuscate_credentials
from .cursors import Cursor, TupleCursor, DictCursor
from .defaults import settings
from .utils import ParamStyle, require_text

logger = logging.getLogger(__name__)

# users can define their own drivers in the config file
_user_drivers = {}


class CursorType:
    TUPLE = 'tuple'
    DICT = 'dict'
    LIST = 'list'

    @classmethod
    def values(cls):
        return [getattr(cls, attr) for attr in dir(cls)
                if not attr.startswith('_') and isinstance(getattr(cls, attr), str)]


DRIVERS = {
    # SQL Server Drivers
    'pyodbc_sqlserver': {
        'database_type': 'sqlserver',
        'module': 'pyodbc',
        'priority': 11,
        'param_map': {'host': 'SERVER', 'database': 'DATABASE', 'user': 'UID', 'password': 'PWD'},
        'required_params': [{'host', 'database', 'user'}, {'host', 'database', 'trusted_connection'}],
        'optional_params': {'password', 'port', 'driver', 'timeout', 'encrypt', 'trustservercertificate',
                            'application_name'},
        'connection_method': 'odbc_string',
        'odbc_driver_name': 'ODBC Driver 18 for SQL Server',
        'default_port': 1433
    },
    'pymssql': {
        'database_type': 'sqlserver',
        'module': 'pymssql',
        'priority': 12,
        'param_map': {'host': 'server'},
        'required_params': [{'host', 'database', 'user'}],
        'optional_params': {'password', 'port', 'timeout', 'login_timeout', 'charset', 'appname'},
        'connection_method': 'kwargs',
        'default_port': 1433
    },

    # SQLite Driver
    'sqlite3': {
        'database_type': 'sqlite',
        'module': 'sqlite3',
        'priority': 1,
        'param_map': {},
        'required_params': [{'database'}],
        'optional_params': {'timeout', 'detect_types', 'isolation_level', 'check_same_thread',
                            'cached_statements', 'uri'},
        'connection_method': 'kwargs'
    }
}


def register_user_drivers(drivers_config: dict) -> None:
    """Register drivers from config file."""
    _user_drivers.update(drivers_config)


def get_all_drivers() -> dict:
    """Get combined built-in and user drivers."""
    return {**DRIVERS, **_user_drivers}


def _module_name(driver_name: str) -> str:
    return get_all_drivers().get(driver_name, {}).get('module', driver_name)


def get_drivers_for_database(db_type: str, valid_only: bool = True) -> List[str]:
    """
    Gets a list of drivers available for the specified database type.

    Parameters:
        db_type (str): The type of database for which to retrieve drivers.
        valid_only (bool): Only include drivers whose module can be imported
            (default is True).

    Returns:
        List[str]: Driver names sorted by priority, user drivers winning ties.
    """
    all_drivers = get_all_drivers()
    available_drivers = []

    for driver_name, info in all_drivers.items():
        if info['database_type'] != db_type:
            continue
        if valid_only and importlib.util.find_spec(_module_name(driver_name)) is None:
            continue
        available_drivers.append(driver_name)

    def sort_key(driver_name):
        priority = all_drivers[driver_name]['priority']
        if driver_name in _user_drivers:
            priority -= 0.5
        return priority

    available_drivers.sort(key=sort_key)
    return available_drivers


def get_params_for_database(db_type: str, driver: str = None) -> set:
    """Get all valid parameters for a database type from DRIVERS metadata."""
    valid_params = set()
    for driver_name, driver_info in get_all_drivers().items():
        if driver_info['database_type'] != db_type:
            continue
        if driver and driver_name != driver:
            continue
        for param_set in driver_info['required_params']:
            valid_params.update(param_set)
        valid_params.update(driver_info.get('optional_params', set()))
    return valid_params


def get_supported_db_types() -> set:
    """Get all supported database types."""
    return {info['database_type'] for info in get_all_drivers().values()}


def validate_connection_params(driver_name: str, **params) -> dict:
    """
    Validate connection parameters against driver requirements.

    Args:
        driver_name: Name of the database driver
        **params: Connection parameters

    Returns:
        Dict of validated parameters with extras removed and names mapped
        to what the driver expects

    Raises:
        ValueError: If the driver is unknown or required parameters are missing
    """
    all_drivers = get_all_drivers()
    if driver_name not in all_drivers:
        raise ValueError(f"Unknown driver: {driver_name}")
    driver_info = all_drivers[driver_name]

    if 'port' not in params and driver_info.get('default_port'):
        params['port'] = driver_info['default_port']

    if not any(required.issubset(params.keys()) for required in driver_info['required_params']):
        raise ValueError(f"Missing required parameters. Need one of: {driver_info['required_params']}")

    all_valid_params = set(driver_info.get('optional_params', set()))
    for required in driver_info['required_params']:
        all_valid_params.update(required)

    ignored = set(params) - all_valid_params
    if ignored:
        logger.debug(f"Ignoring parameters not used by {driver_name}: {sorted(ignored)}")

    param_map = driver_info.get('param_map', {})
    return {param_map.get(key, key): value for key, value in params.items() if key in all_valid_params}


def get_odbc_connection_string(odbc_driver_name: Optional[str] = None, **kwargs) -> str:
    """
    Get connection string for ODBC from validated keyword arguments.

    Named instances (SERVER=host\\instance) are resolved by the SQL Browser,
    so the port is only added for default instances.
    """
    driver = kwargs.pop('driver', None) or odbc_driver_name
    server = kwargs.pop('SERVER', 'localhost')
    port = kwargs.pop('port', None)
    if port and '\\' not in server:
        server = f'{server},{port}'

    params = {'SERVER': server}
    if kwargs.pop('trusted_connection', False):
        params['Trusted_Connection'] = 'yes'
    for key, value in kwargs.items():
        params[key.upper() if key.isupper() else key.title()] = value

    parts = [f"DRIVER={{{driver}}}"] if driver else []
    parts.extend(f"{key}={value}" for key, value in params.items())
    return ';'.join(parts)


def _password_prompt(prompt: str = 'Enter password: ') -> str:
    """Prompt for a password without echoing it on the terminal."""
    import getpass
    return getpass.getpass(prompt)


class Transaction:
    """
    A unit of work on one Database.

    DB-API connections do not expose transaction objects, so dbhelper keeps
    one per connection to be able to tell which connection a transaction
    belongs to and whether it is still usable. Once committed or rolled back
    the transaction drops its connection and cannot be used again.

    Example
    -------
    ::

        tx = db.begin_transaction()
        try:
            execute_non_query(db, "UPDATE ...", transaction=tx)
            tx.commit()
        except Exception:
            tx.rollback()
            raise
    """

    def __init__(self, connection: 'Database'):
        self.connection = connection

    @property
    def active(self) -> bool:
        return self.connection is not None

    def _complete(self, action: str) -> None:
        if self.connection is None:
            raise RuntimeError(f"Cannot {action}: transaction has already been committed or rolled back.")
        database = self.connection
        try:
            getattr(database, action)()
        finally:
            self.connection = None
            if database._transaction is self:
                database._transaction = None
        logger.debug(f"Transaction {action} on {database}")

    def commit(self) -> None:
        """Commit the transaction."""
        self._complete('commit')

    def rollback(self) -> None:
        """Roll back the transaction."""
        self._complete('rollback')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.active:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()


class Database:
    """
    Database connection wrapper that provides uniform interface
    across different database adapters.
    """

    # Attributes stored locally, others delegated to _connection
    _local_attrs = [
        '_connection', 'server_type', 'database_name', 'interface',
        'name', 'placeholder', 'closed', '_transaction'
    ]

    # Cursor type mapping
    CURSOR_TYPES = {
        CursorType.TUPLE: TupleCursor,
        CursorType.DICT: DictCursor,
        CursorType.LIST: Cursor
    }

    def __init__(self, connection, interface, database_name: Optional[str] = None):
        """
        Initialize Database wrapper.

        Args:
            connection: Underlying database connection object
            interface: Database adapter module (sqlite3, pyodbc, pymssql, etc.)
            database_name: Name of the database
        """
        self._connection = connection
        self.interface = interface
        self.database_name = database_name
        self.name = None
        self.closed = False
        self._transaction = None

        paramstyle = getattr(interface, 'paramstyle', ParamStyle.DEFAULT)
        self.placeholder = ParamStyle.get_placeholder(paramstyle)

        interface_name = getattr(interface, '__name__', '')
        self.server_type = 'unknown'
        for info in get_all_drivers().values():
            if info.get('module') == interface_name:
                self.server_type = info['database_type']
                break

    def __getattr__(self, key: str) -> Any:
        """Delegate attribute access to underlying connection."""
        if key == '__name__':
            return self.name or self.database_name or 'unknown'
        try:
            connection = self.__dict__['_connection']
        except KeyError:
            raise AttributeError(key)
        return getattr(connection, key)

    def __setattr__(self, key: str, value: Any) -> None:
        """Set attributes locally or delegate to connection."""
        if key in self._local_attrs:
            self.__dict__[key] = value
        else:
            setattr(self._connection, key, value)

    def __dir__(self) -> list:
        """Return available attributes."""
        return list(set(
            dir(self._connection) +
            dir(self.__class__) +
            self._local_attrs
        ))

    def __str__(self) -> str:
        """String representation of the database connection."""
        if self.database_name:
            return f'Database({self.database_name}:{self.server_type})'
        else:
            return f'Database({self.server_type})'

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close connection."""
        self.close()

    @property
    def state(self) -> str:
        """'open' or 'closed'."""
        return 'closed' if self.closed else 'open'

    def close(self) -> None:
        """Close the underlying connection. Closing twice is a no-op."""
        if self.closed:
            return
        self._connection.close()
        self.closed = True
        if self._transaction is not None:
            # uncommitted work is discarded by the driver on close
            self._transaction.connection = None
            self._transaction = None
        logger.debug(f"Closed {self}")

    def cursor(self, cursor_type: Union[str, Type] = None, **kwargs) -> Cursor:
        """
        Create a cursor of the specified type.

        Args:
            cursor_type: Type of cursor ('tuple', 'dict', 'list')
                        or cursor class
            **kwargs: Additional arguments passed to cursor

        Returns:
            Cursor instance

        Examples:
            cursor = db.cursor()  # list rows by default
            cursor = db.cursor('dict')  # OrderedDict rows
            cursor = db.cursor(TupleCursor)  # Explicit class
        """
        if self.closed:
            raise ValueError(f"connection is in an invalid state: '{self.state}'. Must be open.")
        if cursor_type is None:
            cursor_type = settings.get('default_cursor_type', CursorType.LIST)
        if isinstance(cursor_type, str):
            if cursor_type not in CursorType.values():
                raise ValueError(
                    f"Invalid cursor type '{cursor_type}'. "
                    f"Must be one of: {CursorType.values()}"
                )
            cursor_class = self.CURSOR_TYPES[cursor_type]
        elif isinstance(cursor_type, type) and issubclass(cursor_type, Cursor):
            cursor_class = cursor_type
        else:
            raise ValueError(f"Invalid cursor type: {cursor_type}")

        return cursor_class(self, **kwargs)

    def begin_transaction(self) -> Transaction:
        """
        Start a transaction on this connection.

        DB-API drivers open a transaction implicitly on the first statement;
        the returned object marks the boundary and is what the query helpers
        validate against.

        Raises:
            RuntimeError: if a transaction is already active on this connection
        """
        if self.closed:
            raise ValueError(f"connection is in an invalid state: '{self.state}'. Must be open.")
        if self._transaction is not None and self._transaction.active:
            raise RuntimeError(f"{self} already has an active transaction.")
        self._transaction = Transaction(self)
        logger.debug(f"Transaction started on {self}")
        return self._transaction

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.

        Example:
            with db.transaction() as tx:
                execute_non_query(db, "INSERT ...", transaction=tx)
                execute_non_query(db, "UPDATE ...", transaction=tx)
                # Auto-commit on success, rollback on exception
        """
        tx = self.begin_transaction()
        try:
            yield tx
            if tx.active:
                tx.commit()
        except Exception:
            if tx.active:
                tx.rollback()
            raise

    @classmethod
    def create(cls, db_type: str, driver: str = None, **kwargs) -> 'Database':
        """
        Factory method to create database connections.

        Args:
            db_type: Database type ('sqlserver', 'sqlite')
            driver: Driver name from DRIVERS. The highest priority installed
                driver is used when omitted.
            **kwargs: Connection parameters

        Returns:
            Database instance
        """
        all_drivers = get_all_drivers()
        db_driver = None
        driver_name = None
        if driver:
            if driver not in all_drivers:
                raise ValueError(f"Unknown driver: {driver}")
            if all_drivers[driver]['database_type'] != db_type:
                raise ValueError(f"Driver '{driver}' is not compatible with database type '{db_type}'")
            try:
                db_driver = importlib.import_module(_module_name(driver))
                driver_name = driver
            except ImportError:
                logger.warning(f"Driver '{driver}' not available, falling back to default")

        if db_driver is None:
            for candidate in get_drivers_for_database(db_type):
                try:
                    db_driver = importlib.import_module(_module_name(candidate))
                    driver_name = candidate
                    break
                except ImportError:
                    pass

        if db_driver is None:
            raise ImportError(f"No database driver found for database type '{db_type}'")

        database_name = kwargs.get('database')
        params = validate_connection_params(driver_name, **kwargs)
        if not params:
            raise ValueError("The connection parameters were not valid.")

        driver_conf = all_drivers[driver_name]
        method = driver_conf['connection_method']
        if method == 'kwargs':
            connection = db_driver.connect(**params)
        elif method == 'odbc_string':
            login_timeout = params.pop('timeout', None)
            odbc_string = get_odbc_connection_string(driver_conf.get('odbc_driver_name'), **params)
            if login_timeout is not None:
                connection = db_driver.connect(odbc_string, timeout=login_timeout)
            else:
                connection = db_driver.connect(odbc_string)
        else:
            raise ValueError(f"Unsupported connection method '{method}' for driver '{driver_name}'")

        logger.debug(f"Connected to {db_type} database '{database_name}' using {driver_name}")
        return cls(connection, db_driver, database_name)

    @classmethod
    def from_connection_string(cls, connection_string: str, db_type: Optional[str] = None,
                               driver: Optional[str] = None) -> 'Database':
        """
        Open a connection described by a ``key=value;...`` connection string.

        Args:
            connection_string: e.g. 'Data Source=db01;Initial Catalog=sales;Integrated Security=True'
            db_type: 'sqlserver' or 'sqlite' (default: settings['default_db_type'])
            driver: Optional driver name from DRIVERS
        """
        require_text(connection_string, 'connection_string')
        db_type = db_type or settings.get('default_db_type', 'sqlserver')
        params = connection_params(connection_string, db_type)
        logger.info(f"Opening {db_type} connection: {obfuscate_credentials(connection_string)}")
        return cls.create(db_type, driver=driver, **params)


def open_connection(connection_string: str, db_type: Optional[str] = None,
                    driver: Optional[str] = None) -> Database:
    """
    Open a connection from a connection string.

    Raises:
        ValueError: if the connection string is None, blank or malformed
        ImportError: if no driver is installed for the database type
        interface.Error: connection failures are raised by the driver unchanged
    """
    return Database.from_connection_string(connection_string, db_type=db_type, driver=driver)


def sqlserver(user: Optional[str] = None, password: Optional[str] = None, database: str = 'master',
              host: str = 'localhost', port: int = 1433, driver: str = None, **kwargs) -> Database:
    """Create SQL Server connection. Omit the user for a trusted connection."""
    if user is None:
        kwargs.setdefault('trusted_connection', True)
    else:
        kwargs['user'] = user
        if password is None:
            password = _password_prompt(f'Password for {user}@{host}: ')
        kwargs['password'] = password
    return Database.create('sqlserver', driver=driver, database=database,
                           host=host, port=port, **kwargs)


def sqlite(database: str, **kwargs) -> Database:
    """Create SQLite connection."""
    import sqlite3

    connection = sqlite3.connect(database, **kwargs)
    return Database(connection, sqlite3, os.path.basename(database))
