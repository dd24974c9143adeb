"""
Date detection and conversion for invoice-date columns.

Only a column whose name is exactly "Invoice Date" (case and spacing
ignored) is a candidate, and it is converted only when its sampled values
all look like dates. Everything else is left to normalize_value, which keeps
invoice numbers such as '25-26/0001' intact.

The accepted shapes are spreadsheet serials strictly between 30000 and 50000,
and three-part values with a four-digit year at the front (YYYY-MM-DD) or the
back (DD-MM-YYYY), separated by '-' or '/'. Day validation is 1-31 for every
month; this is a tolerance downstream storage relies on, not strict calendar
arithmetic.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pandas as pd

from .error_handler import ErrorHandler
from .helpers import NEUTRAL_ZERO, is_missing, normalize_value
from .models import ColumnMapping, DateConversionFailure, Record

logger = logging.getLogger(__name__)

SERIAL_MIN = 30000
SERIAL_MAX = 50000
DEFAULT_SAMPLE_SIZE = 10
DEFAULT_DATE_COLUMN_NAMES = ("invoice date",)

_SPREADSHEET_EPOCH = pd.Timestamp("1900-01-01")
_DATE_PATTERN = re.compile(r'^\d{1,4}[-/]\d{1,2}[-/]\d{1,4}$')
_SEPARATORS = re.compile(r'[-/]')


def _serial_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    if number != number:  # NaN
        return None
    return number


def _in_serial_range(number: Optional[float]) -> bool:
    return number is not None and SERIAL_MIN < number < SERIAL_MAX


def _is_blank(value: Any) -> bool:
    if is_missing(value):
        return True
    normalized = normalize_value(value)
    return normalized == NEUTRAL_ZERO and not isinstance(normalized, str)


def _split_date_parts(text: str) -> Optional[Tuple[str, str, str]]:
    """Return (year, month, day) strings, or None when no part is a four-digit year."""
    parts = _SEPARATORS.split(text)
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        return None
    if len(parts[0]) == 4:
        year, month, day = parts
    elif len(parts[2]) == 4:
        day, month, year = parts
    else:
        return None
    return year, month, day


def is_valid_date_parts(year: Any, month: Any, day: Any) -> bool:
    """Heuristic calendar check: month 1-12, day 1-31, year 1900-2100."""
    try:
        year, month, day = int(year), int(month), int(day)
    except (TypeError, ValueError):
        return False
    if month < 1 or month > 12:
        return False
    if day < 1 or day > 31:
        return False
    if year < 1900 or year > 2100:
        return False
    return True


def is_date_like(value: Any) -> bool:
    """True for spreadsheet serials in range and for valid D/M/YYYY or YYYY/M/D strings."""
    if _is_blank(value):
        return False
    if isinstance(value, (date, datetime)):
        return True

    text = str(value).strip()
    if _in_serial_range(_serial_number(value)):
        return True

    if not _DATE_PATTERN.match(text):
        return False
    parts = _split_date_parts(text)
    if parts is None:
        return False
    return is_valid_date_parts(*parts)


def serial_to_date(serial: Any) -> Optional[str]:
    """Convert a spreadsheet serial (day 1 = 1900-01-01) to 'YYYY-MM-DD'.

    Serials above 59 are shifted back by one day because the spreadsheet
    format counts a 29 February 1900 that never existed.
    """
    number = _serial_number(serial)
    if number is None or number < 0:
        return None
    if number > 59:
        number -= 1
    try:
        converted = _SPREADSHEET_EPOCH + pd.Timedelta(days=number - 1)
    except (OverflowError, ValueError):
        return None
    return converted.strftime("%Y-%m-%d")


def convert_to_standard_date(value: Any) -> Optional[str]:
    """Convert a date-like value to 'YYYY-MM-DD'; None when it does not validate."""
    if _is_blank(value):
        return None
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")

    number = _serial_number(value)
    if _in_serial_range(number):
        return serial_to_date(number)

    text = str(value).strip()
    if not _DATE_PATTERN.match(text):
        return None
    parts = _split_date_parts(text)
    if parts is None or not is_valid_date_parts(*parts):
        return None
    year, month, day = (int(part) for part in parts)
    return f"{year:04d}-{month:02d}-{day:02d}"


def is_invoice_date_column(column_name: Any, date_column_names: Iterable[str] = DEFAULT_DATE_COLUMN_NAMES) -> bool:
    """Whether a column name designates the invoice-date column."""
    if column_name is None:
        return False
    folded = " ".join(str(column_name).lower().split())
    return folded in {" ".join(name.lower().split()) for name in date_column_names}


def detect_date_column(sample_rows: Sequence[Record], column_name: str,
                       sample_size: int = DEFAULT_SAMPLE_SIZE) -> bool:
    """
    Decide whether a column holds dates by sampling its first rows.

    Every non-empty sampled value must be date-like and at least one must be
    present; an all-empty column is not a date column.
    """
    has_date = False
    for row in list(sample_rows)[:sample_size]:
        if not row:
            continue
        value = row.get(column_name)
        if _is_blank(value):
            continue
        if not is_date_like(value):
            return False
        has_date = True
    return has_date


def detect_date_columns(gst_rows: Sequence[Record], tally_rows: Sequence[Record], mapping: ColumnMapping,
                        date_column_names: Iterable[str] = DEFAULT_DATE_COLUMN_NAMES,
                        sample_size: int = DEFAULT_SAMPLE_SIZE) -> Tuple[Set[str], Set[str]]:
    """Return the GST and Tally columns of the mapping that should be converted to dates."""
    date_column_names = tuple(date_column_names)
    gst_date_columns: Set[str] = set()
    tally_date_columns: Set[str] = set()

    for pair in mapping:
        if is_invoice_date_column(pair.gst_column, date_column_names):
            if detect_date_column(gst_rows, pair.gst_column, sample_size):
                gst_date_columns.add(pair.gst_column)
                logger.info(f"GST column '{pair.gst_column}' detected as a date column")
            else:
                logger.info(f"GST column '{pair.gst_column}' is named like a date column but holds non-date values")

        if is_invoice_date_column(pair.tally_column, date_column_names):
            if detect_date_column(tally_rows, pair.tally_column, sample_size):
                tally_date_columns.add(pair.tally_column)
                logger.info(f"Tally column '{pair.tally_column}' detected as a date column")
            else:
                logger.info(f"Tally column '{pair.tally_column}' is named like a date column but holds non-date values")

    return gst_date_columns, tally_date_columns


def convert_date_columns(rows: Sequence[Record], columns: Iterable[str], source: str,
                         error_handler: Optional[ErrorHandler] = None
                         ) -> Tuple[List[Record], List[DateConversionFailure]]:
    """
    Rewrite the given columns of every row into 'YYYY-MM-DD'.

    Rows are copied, never mutated. A value that fails conversion is kept
    as-is and reported as a DateConversionFailure.
    """
    columns = list(columns)
    if not columns:
        return list(rows), []

    converted_rows: List[Record] = []
    failures: List[DateConversionFailure] = []

    for row_index, row in enumerate(rows):
        new_row: Dict[str, Any] = dict(row)
        for column in columns:
            raw = new_row.get(column)
            if _is_blank(raw):
                continue
            converted = convert_to_standard_date(raw)
            if converted is None:
                failures.append(DateConversionFailure(source, row_index, column, raw))
                if error_handler is not None:
                    error_handler.record_date_failure(source, row_index, column, raw)
                continue
            new_row[column] = converted
        converted_rows.append(new_row)

    if failures:
        logger.warning(f"{len(failures)} {source} values could not be converted to dates")
    return converted_rows, failures
