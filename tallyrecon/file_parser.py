"""
Turns uploaded GST portal and Tally exports (CSV or Excel) into records.

Every record carries every column seen in the file, with missing cells set to
the neutral zero and all cells passed through the value normalizer. Excel
cells formatted as dates arrive as datetimes and are written as YYYY-MM-DD;
bare serial numbers are left for the date pass of the reconciler.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import pandas as pd

from .error_handler import ConfigurationError, ErrorHandler, FileParseError
from .helpers import normalize_value

logger = logging.getLogger(__name__)

EXCEL_EXTENSIONS = ('.xlsx', '.xls')
CSV_EXTENSIONS = ('.csv',)


def _filename_of(path_or_buffer: Any, filename: Optional[str]) -> str:
    if filename:
        return filename
    if isinstance(path_or_buffer, (str, os.PathLike)):
        return os.path.basename(os.fspath(path_or_buffer))
    return getattr(path_or_buffer, 'name', 'unknown_file')


def get_columns(records: List[Dict[str, Any]]) -> List[str]:
    """Union of column names over all records, in first-seen order."""
    columns: Dict[str, None] = {}
    for record in records:
        for column in record:
            columns.setdefault(column, None)
    return list(columns)


def apply_header_row(records: List[Dict[str, Any]], header_row: int = 1) -> List[Dict[str, Any]]:
    """Drop the first header_row - 1 records; row 1 keeps everything."""
    if not isinstance(header_row, int) or isinstance(header_row, bool) or header_row < 1:
        raise ConfigurationError(f"Header row must be a positive integer, got {header_row!r}")
    return records[header_row - 1:]


def frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Normalize a parsed sheet into records sharing one set of columns."""
    df = df.dropna(how='all')
    columns = [str(c).strip() for c in df.columns]
    return [
        {column: normalize_value(value) for column, value in zip(columns, row)}
        for row in df.itertuples(index=False, name=None)
    ]


def parse_excel(path_or_buffer: Any, filename: Optional[str] = None, header_row: int = 1,
                error_handler: Optional[ErrorHandler] = None) -> List[Dict[str, Any]]:
    """Read the first worksheet of an Excel workbook."""
    filename = _filename_of(path_or_buffer, filename)
    engine = 'xlrd' if filename.lower().endswith('.xls') else 'openpyxl'
    try:
        df = pd.read_excel(path_or_buffer, sheet_name=0, dtype=object, engine=engine)
    except Exception as e:
        error_entry = (error_handler or ErrorHandler()).handle_file_error(e, filename, "read_excel")
        raise FileParseError(f"Failed to parse Excel file: {e}", filename, error_entry) from e

    records = apply_header_row(frame_to_records(df), header_row)
    logger.info(f"Parsed {len(records)} rows from Excel file '{filename}'")
    return records


def parse_csv(path_or_buffer: Any, filename: Optional[str] = None, header_row: int = 1,
              error_handler: Optional[ErrorHandler] = None) -> List[Dict[str, Any]]:
    """Read a CSV file with a header line; blank lines are skipped."""
    filename = _filename_of(path_or_buffer, filename)
    try:
        df = pd.read_csv(path_or_buffer, dtype=object, keep_default_na=False, skip_blank_lines=True,
                         encoding='utf-8')
    except Exception as e:
        error_entry = (error_handler or ErrorHandler()).handle_file_error(e, filename, "read_csv")
        raise FileParseError(f"Failed to parse CSV file: {e}", filename, error_entry) from e

    records = apply_header_row(frame_to_records(df), header_row)
    logger.info(f"Parsed {len(records)} rows from CSV file '{filename}'")
    return records


def parse_file(path_or_buffer: Any, filename: Optional[str] = None, header_row: int = 1,
               error_handler: Optional[ErrorHandler] = None) -> List[Dict[str, Any]]:
    """Parse an upload by its extension: .xlsx / .xls as Excel, .csv as CSV."""
    filename = _filename_of(path_or_buffer, filename)
    extension = os.path.splitext(filename)[1].lower()

    if extension in EXCEL_EXTENSIONS:
        return parse_excel(path_or_buffer, filename, header_row, error_handler)
    elif extension in CSV_EXTENSIONS:
        return parse_csv(path_or_buffer, filename, header_row, error_handler)

    error = ValueError(f"Unsupported file format: '{extension or filename}'")
    error_entry = (error_handler or ErrorHandler()).handle_file_error(error, filename, "parse_file")
    raise FileParseError(str(error), filename, error_entry)
