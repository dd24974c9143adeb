"""
Error types and the per-session error log for reconciliation runs
"""

import traceback
import logging
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """Base class for all reconciliation failures."""


class ConfigurationError(ReconciliationError):
    """Raised when a run cannot start because its configuration is unusable."""


class FileParseError(ReconciliationError):
    """Raised when an uploaded GST or Tally file cannot be turned into records."""

    def __init__(self, message: str, filename: Optional[str] = None, error_entry: Optional[Dict] = None):
        super().__init__(message)
        self.filename = filename
        self.error_entry = error_entry or {}


class ErrorHandler:
    """Collects errors, warnings and info messages raised during one session."""

    def __init__(self):
        self.error_log = []
        self.warning_log = []
        self.info_log = []
        self.session_id = datetime.now().strftime("%Y%m%d_%H%M%S")

    def log_error(self, error_type: str, message: str, details: Optional[Dict] = None,
                  file_context: Optional[str] = None, recoverable: bool = False) -> Dict[str, Any]:
        """Log an error with detailed context."""
        error_entry = {
            'timestamp': datetime.now().isoformat(),
            'session_id': self.session_id,
            'type': 'ERROR',
            'error_type': error_type,
            'message': message,
            'details': details or {},
            'file_context': file_context,
            'recoverable': recoverable,
            'traceback': traceback.format_exc() if logger.isEnabledFor(logging.DEBUG) else None
        }

        self.error_log.append(error_entry)
        logger.error(f"[{error_type}] {message}")

        return error_entry

    def log_warning(self, warning_type: str, message: str, details: Optional[Dict] = None,
                    file_context: Optional[str] = None, suggestion: Optional[str] = None) -> Dict[str, Any]:
        """Log a warning with context and suggestions."""
        warning_entry = {
            'timestamp': datetime.now().isoformat(),
            'session_id': self.session_id,
            'type': 'WARNING',
            'warning_type': warning_type,
            'message': message,
            'details': details or {},
            'file_context': file_context,
            'suggestion': suggestion
        }

        self.warning_log.append(warning_entry)
        logger.warning(f"[{warning_type}] {message}")

        return warning_entry

    def log_info(self, info_type: str, message: str, details: Optional[Dict] = None) -> Dict[str, Any]:
        """Log informational messages."""
        info_entry = {
            'timestamp': datetime.now().isoformat(),
            'session_id': self.session_id,
            'type': 'INFO',
            'info_type': info_type,
            'message': message,
            'details': details or {}
        }

        self.info_log.append(info_entry)
        logger.info(f"[{info_type}] {message}")

        return info_entry

    def handle_file_error(self, error: Exception, filename: str, operation: str) -> Dict[str, Any]:
        """Record a file-related error under a specific error type."""
        error_type = type(error).__name__

        if "Permission denied" in str(error) or isinstance(error, PermissionError):
            return self.log_error(
                "FILE_PERMISSION_ERROR",
                f"Cannot access file '{filename}': Permission denied",
                {'filename': filename, 'operation': operation},
                file_context=filename,
                recoverable=True
            )

        elif isinstance(error, FileNotFoundError):
            return self.log_error(
                "FILE_NOT_FOUND_ERROR",
                f"File '{filename}' not found",
                {'filename': filename, 'operation': operation},
                file_context=filename,
                recoverable=True
            )

        elif "Unsupported file format" in str(error):
            return self.log_error(
                "UNSUPPORTED_FILE_FORMAT",
                f"File '{filename}' is not a CSV or Excel file",
                {'filename': filename, 'operation': operation},
                file_context=filename,
                recoverable=True
            )

        elif "BadZipFile" in error_type or "InvalidFileException" in error_type:
            return self.log_error(
                "INVALID_FILE_FORMAT",
                f"File '{filename}' is not a valid Excel file",
                {'filename': filename, 'operation': operation},
                file_context=filename,
                recoverable=True
            )

        elif "EmptyDataError" in error_type:
            return self.log_error(
                "EMPTY_FILE_ERROR",
                f"File '{filename}' is empty or has no data",
                {'filename': filename, 'operation': operation},
                file_context=filename,
                recoverable=True
            )

        else:
            return self.log_error(
                "UNKNOWN_FILE_ERROR",
                f"Unexpected error processing file '{filename}': {str(error)}",
                {'filename': filename, 'operation': operation, 'error_type': error_type},
                file_context=filename,
                recoverable=False
            )

    def record_dropped_mapping(self, index: int, gst_column: Any, tally_column: Any) -> Dict[str, Any]:
        """Record a mapping pair that was excluded because one side is empty."""
        return self.log_warning(
            "INVALID_MAPPING_PAIR",
            f"Mapping pair {index} ('{gst_column}' -> '{tally_column}') has an empty side and was skipped",
            {'index': index, 'gst_column': gst_column, 'tally_column': tally_column},
            suggestion="Select both a GST and a Tally column for every mapped feature"
        )

    def record_date_failure(self, source: str, row_index: int, column: str, value: Any) -> Dict[str, Any]:
        """Record a value in a date column that could not be converted."""
        return self.log_warning(
            "DATE_CONVERSION_ERROR",
            f"{source} row {row_index}: could not convert '{value}' in '{column}' to a date",
            {'source': source, 'row_index': row_index, 'column': column, 'value': str(value)},
            file_context=source,
            suggestion="Check the date format (DD/MM/YYYY, YYYY-MM-DD or a spreadsheet serial)"
        )

    def get_error_suggestions(self, error_entry: Dict[str, Any]) -> List[str]:
        """Get recovery suggestions for an error."""
        suggestions = []

        if error_entry['error_type'] == 'FILE_PERMISSION_ERROR':
            suggestions.extend([
                "Check if the file is open in another application",
                "Verify you have read permissions for the file"
            ])

        elif error_entry['error_type'] == 'FILE_NOT_FOUND_ERROR':
            suggestions.extend([
                "Verify the file path is correct",
                "Check if the file was moved or deleted"
            ])

        elif error_entry['error_type'] in ('INVALID_FILE_FORMAT', 'UNSUPPORTED_FILE_FORMAT'):
            suggestions.extend([
                "Upload the GST portal export as .xlsx, .xls or .csv",
                "Try opening the file in Excel and saving it again"
            ])

        elif error_entry['error_type'] == 'EMPTY_FILE_ERROR':
            suggestions.extend([
                "Check if the file contains data",
                "Verify the header row setting points at the column titles"
            ])

        return suggestions

    def get_session_summary(self) -> Dict[str, Any]:
        """Get a summary of all logged messages for the session."""
        return {
            'session_id': self.session_id,
            'total_errors': len(self.error_log),
            'total_warnings': len(self.warning_log),
            'total_info': len(self.info_log),
            'recoverable_errors': len([e for e in self.error_log if e.get('recoverable', False)]),
            'critical_errors': len([e for e in self.error_log if not e.get('recoverable', False)]),
            'date_conversion_failures': len([w for w in self.warning_log
                                             if w['warning_type'] == 'DATE_CONVERSION_ERROR']),
            'session_start': self.session_id,
            'session_end': datetime.now().isoformat()
        }

    def get_error_report(self) -> Dict[str, Any]:
        """Session summary plus every logged entry, grouped by how the UI presents them."""
        warnings_by_type: Dict[str, List[Dict[str, Any]]] = {}
        for entry in self.warning_log:
            warnings_by_type.setdefault(entry['warning_type'], []).append(entry)
        return {
            'summary': self.get_session_summary(),
            'file_errors': [e for e in self.error_log if e.get('file_context')],
            'errors': list(self.error_log),
            'dropped_mappings': warnings_by_type.get('INVALID_MAPPING_PAIR', []),
            'date_failures': warnings_by_type.get('DATE_CONVERSION_ERROR', []),
            'runs': [i for i in self.info_log if i['info_type'] == 'RECONCILIATION_COMPLETE'],
        }

    def clear_logs(self):
        """Start a fresh session, e.g. after new GST or Tally files are uploaded."""
        self.error_log = []
        self.warning_log = []
        self.info_log = []
        self.session_id = datetime.now().strftime("%Y%m%d_%H%M%S")
        logger.info(f"Started error log session {self.session_id}")
