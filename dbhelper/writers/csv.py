# dbhelper/writers/csv.py

import csv
import logging
from typing import Union, List, Optional, Any, TextIO
from pathlib import Path

from .base import BaseWriter
from ..defaults import settings
from ..utils import to_string

logger = logging.getLogger(__name__)


class CSVWriter(BaseWriter):
    """CSV writer: a header line followed by one line per row, quoted where needed."""

    def __init__(self,
                 data,
                 file: Optional[Union[str, Path, TextIO]] = None,
                 columns: Optional[List[str]] = None,
                 include_headers: bool = True,
                 null_string: str = None,
                 encoding: str = 'utf-8',
                 **csv_kwargs):
        """
        Initialize CSV writer.

        Args:
            data: Cursor object or list of records
            file: Output filename or open text file. If None, writes to stdout
            columns: Column names for list-of-lists data (optional for other types)
            include_headers: Whether to include column headers
            null_string: String representation for null values
            encoding: File encoding
            **csv_kwargs: Additional arguments passed to csv.writer
        """
        super().__init__(data, file, columns, encoding=encoding, preserve_types=False)
        self.include_headers = include_headers
        self.null_string = settings.get('null_string_csv', '') if null_string is None else null_string
        self._format_kwargs = csv_kwargs

    def to_string(self, obj: Any) -> str:
        """Convert object to string for CSV output.
           Change settings['null_string_csv'] to change null value representation."""
        if obj is None:
            return self.null_string
        return to_string(obj)

    def _write_data(self, file_obj) -> None:
        """Write CSV data to file object."""
        writer = csv.writer(file_obj, **self._format_kwargs)

        if self.include_headers:
            writer.writerow(self.columns)

        for record in self.data_iterator:
            writer.writerow(self._extract_row_values(record))
            self._row_num += 1


def to_csv(data,
           file: Optional[Union[str, Path, TextIO]] = None,
           include_headers: bool = True,
           null_string: str = None,
           **csv_kwargs) -> int:
    """
    Export cursor or result set to CSV file.

    Args:
        data: Cursor object or list of records
        file: Output filename. If None, writes to stdout
        include_headers: Whether to include column headers
        null_string: String representation for null values
        **csv_kwargs: Additional arguments passed to csv.writer

    Returns:
        Number of rows written

    Example:
        # Write to file
        to_csv(cursor, 'quotes.csv')

        # Write to stdout
        to_csv(cursor)

        # Custom delimiter
        to_csv(cursor, 'quotes.tsv', delimiter='\t')
    """
    writer = CSVWriter(
        data=data,
        file=file,
        include_headers=include_headers,
        null_string=null_string,
        **csv_kwargs
    )
    return writer.write()
