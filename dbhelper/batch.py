# dbhelper/batch.py
"""
Split SQL scripts into individual statements.

Scripts written for SQL Server tooling separate their batches with a line that
holds nothing but ``GO``. The separator is a client-side convention, the server
never sees it, so a script has to be cut into statements before each one can be
handed to ``cursor.execute()``.

The split is purely textual. A line is a separator when, ignoring spaces and
tabs around it, it consists of the token ``GO`` in any letter case. The token
inside a longer line (``SELECT 'GO TEAM'``) is left alone. No attempt is made to
understand SQL, so a ``GO`` line inside a multi-line string literal or block
comment still ends the statement.

Example
-------
::

    from dbhelper.batch import split_batch

    script = "CREATE TABLE t (id INT)\\nGO\\nINSERT INTO t VALUES (1)\\nGO\\n"
    split_batch(script)
    # ['CREATE TABLE t (id INT)\\n', 'INSERT INTO t VALUES (1)\\n']
"""

import re
from typing import List

from .defaults import settings

__all__ = ['GO_SEPARATOR', 'split_batch', 'read_batch_file', 'split_batch_file']

# A whole line holding only GO, surrounded by horizontal white space. End of text
# also closes the line, so a trailing GO without a line break still separates.
GO_SEPARATOR = re.compile(
    r'^[^\S\r\n]*GO[^\S\r\n]*\r?(?:\n|\Z)',
    re.IGNORECASE | re.MULTILINE
)


def split_batch(batch_sql: str) -> List[str]:
    """
    Split a SQL batch on ``GO`` separator lines.

    Fragments are returned verbatim, including their own leading and trailing
    white space and line breaks. Fragments that are empty or only white space
    are dropped, which removes the gaps left by leading, trailing or repeated
    separators.

    Args:
        batch_sql: Text of the batch. May be empty.

    Returns:
        List of statement texts in the order they appear. Empty when the batch
        holds nothing but separators and white space.

    Example:
        >>> split_batch("Select 1\\r\\nGO\\r\\nSelect 2")
        ['Select 1\\r\\n', 'Select 2']
        >>> split_batch("\\r\\nGO\\r\\n\\r\\nGO")
        []
    """
    return [fragment for fragment in GO_SEPARATOR.split(batch_sql) if fragment.strip()]


def read_batch_file(filename: str, encoding: str = None) -> str:
    """
    Read a SQL script from disk without translating its line breaks.

    Args:
        filename: Path to the script (relative to CWD)
        encoding: File encoding (default: settings['batch_encoding'], 'utf-8-sig')
    """
    encoding = encoding or settings.get('batch_encoding', 'utf-8-sig')
    # newline='' keeps \r\n intact so fragments match the file byte for byte
    with open(filename, encoding=encoding, newline='') as f:
        return f.read()


def split_batch_file(filename: str, encoding: str = None) -> List[str]:
    """Read a SQL script with read_batch_file() and split it into statements."""
    return split_batch(read_batch_file(filename, encoding))
