# dbhelper/writers/base.py
"""
Base class for data writers with common file handling and data extraction patterns.
"""

import itertools
import logging
import sys
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple, Union

from ..utils import to_string

logger = logging.getLogger(__name__)

# rows shown when writing to stdout
PREVIEW_ROWS = 20


class BaseWriter(ABC):
    """
    Abstract base class for result set writers.

    Writers accept a cursor that has just executed a query, or an already
    materialized list of rows (dicts, namedtuples or lists), work out the
    column names and hand each row to the format-specific ``_write_data()``.

    Parameters
    ----------
    data
        Data to write. Accepts:

        * Cursor objects (from database queries)
        * List of dictionaries
        * List of namedtuples
        * List of lists (requires columns parameter)

    filename : str or Path, optional
        Output filename. If None, writes to stdout (limited to 20 rows for preview).
    columns : List[str], optional
        Column names for list-of-lists data. Ignored for other data types which
        have columns embedded.
    encoding : str, default 'utf-8'
        File encoding
    preserve_types : bool, default False
        If False, converts all values to strings with ``utils.to_string``.

    Notes
    -----
    A cursor whose query returned no rows still has columns, so writers can
    emit headers for an empty result. A cursor whose last statement was not a
    query has neither and is rejected.
    """

    def __init__(self,
                 data,
                 filename: Optional[Union[str, Path]] = None,
                 columns: Optional[List[str]] = None,
                 encoding: str = 'utf-8',
                 preserve_types: bool = False,
                 **kwargs):
        self.data = data
        self.filename = filename
        self.encoding = encoding
        self.preserve_types = preserve_types
        self._row_num = 0

        self.data_iterator, self.columns = self._get_data_iterator(data, columns)
        if self.data_iterator is None:
            raise ValueError("No data to export")

        if filename is None:
            self.data_iterator = itertools.islice(self.data_iterator, PREVIEW_ROWS)

    @property
    def row_count(self) -> int:
        """ Returns the number of rows written."""
        return self._row_num

    def _get_file_handle(self, mode='w'):
        """
        Get file handle, returning stdout if filename is None.

        Returns:
            Tuple of (file_obj, should_close)
        """
        if self.filename is None:
            return sys.stdout, False
        elif hasattr(self.filename, 'write'):
            return self.filename, False
        else:
            return open(self.filename, mode, encoding=self.encoding, newline=''), True

    def _get_data_iterator(self, data, columns: Optional[List[str]] = None) -> Tuple[Optional[Iterator], List[str]]:
        """
        Get data iterator and column names.

        Returns:
            Tuple of (iterator, column_names); (None, []) when there is nothing to write
        """
        if data is None:
            return None, []
        elif hasattr(data, 'fetchall'):  # Cursor
            if hasattr(data, 'columns'):
                data_columns = data.columns()
            elif getattr(data, 'description', None):
                data_columns = [col[0] for col in data.description]
            else:
                data_columns = []
            if not data_columns:
                raise RuntimeError("Cursor has no result set to export; the statement was not a query.")
            return iter(data), data_columns
        elif isinstance(data, (list, tuple)):
            if not data:
                return None, []
            if hasattr(data[0], 'keys'):
                data_columns = list(data[0].keys())
            elif hasattr(data[0], '_fields'):
                data_columns = list(data[0]._fields)
            else:
                if columns:
                    if len(columns) != len(data[0]):
                        raise ValueError(f"Column count ({len(columns)}) must match data width ({len(data[0])})")
                    data_columns = list(columns)
                else:
                    data_columns = [f'col_{x:03d}' for x in range(1, len(data[0]) + 1)]
            return iter(data), data_columns
        return None, []

    def to_string(self, obj: Any) -> str:
        """Convert a database value to string representation."""
        return to_string(obj)

    def _extract_row_values(self, record) -> List[Any]:
        """
        Extract values from record in column order, converting to text unless
        preserve_types is set.
        """
        if hasattr(record, 'keys'):
            values = [record[col] for col in self.columns]
        elif isinstance(record, (list, tuple)):
            values = list(record[:len(self.columns)])
        else:
            values = [getattr(record, col, None) for col in self.columns]

        if not self.preserve_types:
            values = [self.to_string(value) for value in values]
        return values

    @abstractmethod
    def _write_data(self, file_obj) -> None:
        """
        Write the actual data. Subclasses implement format-specific logic.

        Args:
            file_obj: File object to write to
        """
        pass

    def write(self) -> int:
        """
        Main entry point for writing data.

        Returns:
            Number of rows written
        """
        file_obj, should_close = self._get_file_handle()
        try:
            self._write_data(file_obj)
            logger.info(f"Wrote {self._row_num} rows to {self.filename or 'stdout'}")
            return self._row_num
        except Exception as e:
            logger.error(f"Error writing data: {e}")
            raise
        finally:
            if should_close:
                file_obj.close()
