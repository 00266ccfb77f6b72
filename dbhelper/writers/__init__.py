# dbhelper/writers/__init__.py
"""
Data export writers.

Writers take a cursor (or a list of rows) and write it out with a header line.
CSV is the supported format.

Example
-------
::
    import dbhelper.writers as writers

    cursor.execute("SELECT * FROM quotes")
    writers.to_csv(cursor, 'quotes.csv')
"""

from .base import BaseWriter
from .csv import to_csv, CSVWriter

__all__ = ['BaseWriter', 'to_csv', 'CSVWriter']
