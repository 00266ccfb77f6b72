# tests/conftest.py
"""
Shared test fixtures and configuration for pytest.
"""

import pytest
import os
from pathlib import Path
from unittest.mock import Mock, patch

from dbhelper.database import sqlite
from dbhelper.defaults import settings

TEST_KEY = '2YvTXI9DHQPy4d6-ZC9NxcypvLMsJ94OBdmoHyjmwbM='

QUOTES = [
    ('MSFT', 19.76, 20.02, 1000),
    ('AAPL', 27.10, 26.85, 2500),
    ('IBM', 95.40, 96.10, None),
]


# Set test config file and encryption key for all tests
@pytest.fixture(autouse=True)
def setup_test_config():
    """Automatically set test config file and encryption key for all tests."""
    from dbhelper.config import set_config_file

    test_config = Path(__file__).parent / 'test.yml'
    with patch.dict(settings):
        set_config_file(str(test_config))
        with patch.dict(os.environ, {'DBHELPER_ENCRYPTION_KEY': TEST_KEY}):
            yield


@pytest.fixture
def test_config_file():
    """Path to test config file."""
    return Path(__file__).parent / 'test.yml'


def _load_quotes(db):
    cursor = db.cursor()
    cursor.execute("""
                   CREATE TABLE quotes
                   (
                       symbol TEXT PRIMARY KEY,
                       open   REAL,
                       close  REAL,
                       volume INTEGER
                   )
                   """)
    cursor.executemany("INSERT INTO quotes (symbol, open, close, volume) VALUES (?, ?, ?, ?)", QUOTES)
    db.commit()
    cursor.close()


@pytest.fixture
def quotes_db():
    """In-memory SQLite database holding the quotes table."""
    db = sqlite(':memory:')
    _load_quotes(db)
    yield db
    db.close()


@pytest.fixture
def quotes_file_db(tmp_path):
    """File backed SQLite quotes database; yields its connection string."""
    path = tmp_path / 'quotes.db'
    db = sqlite(str(path))
    _load_quotes(db)
    db.close()
    with patch.dict(settings, {'default_db_type': 'sqlite'}):
        yield f'Data Source={path}'


@pytest.fixture
def count_quotes():
    """Count rows in the quotes table through a fresh connection."""
    def count(connection_string):
        db = sqlite(connection_string.split('=', 1)[1])
        try:
            cursor = db.cursor()
            cursor.execute("SELECT COUNT(*) FROM quotes")
            return cursor.fetchone()[0]
        finally:
            db.close()
    return count


@pytest.fixture
def mock_db_cursor():
    """Create a mock database cursor with standard test data."""
    cursor = Mock()
    cursor.description = [
        ('symbol', None, None, None, None, None, None),
        ('open', None, None, None, None, None, None),
        ('close', None, None, None, None, None, None)
    ]
    cursor.fetchone.return_value = ('MSFT', 19.76, 20.02)
    cursor.fetchall.return_value = [
        ('MSFT', 19.76, 20.02),
        ('AAPL', 27.10, 26.85)
    ]
    cursor.fetchmany.return_value = [('MSFT', 19.76, 20.02)]
    cursor.arraysize = 1
    cursor.rowcount = 1
    cursor.execute.return_value = None
    return cursor


@pytest.fixture
def mock_connection(mock_db_cursor):
    """Create a mock database connection whose driver uses qmark parameters."""
    connection = Mock()
    connection.interface.paramstyle = 'qmark'
    connection.placeholder = '?'
    connection._connection.cursor.return_value = mock_db_cursor
    connection.cursor.return_value = mock_db_cursor
    return connection
