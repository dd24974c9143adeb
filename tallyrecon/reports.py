import io
import logging
from typing import Any, Dict

import pandas as pd
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from .helpers import format_indian_currency, format_percentage
from .models import ReconciliationReport

logger = logging.getLogger(__name__)

# bucket key -> sheet name
BUCKETS = {
    'exact': 'Exact Matches',
    'partial_minor': 'Partial Minor',
    'partial_major': 'Partial Major',
    'gst_only': 'GST Only',
    'tally_only': 'Tally Only',
}

SHEET_COLORS = {
    'Exact Matches': '43a047',
    'Partial Minor': 'fbc02d',
    'Partial Major': 'fb8c00',
    'GST Only': 'e53935',
    'Tally Only': '1976d2',
    'Summary': '757575',
}

DIFF_FILL = PatternFill(start_color='ffe0b2', end_color='ffe0b2', fill_type='solid')


def _pair_row(report: ReconciliationReport, match) -> Dict[str, Any]:
    row = {'GST Row': match.gst_index, 'Tally Row': match.tally_index}
    for pair in report.mapping:
        row[f'GST {pair.gst_column}'] = match.gst.get(pair.gst_column)
        row[f'Tally {pair.tally_column}'] = match.tally.get(pair.tally_column)
    return row


def _partial_frame(report: ReconciliationReport, matches) -> pd.DataFrame:
    rows = []
    for match in matches:
        row = _pair_row(report, match)
        row['Discrepancies'] = match.discrepancies
        row['Discrepancy Columns'] = ', '.join(d.gst_column for d in match.discrepancy_columns)
        row['Max Monetary Difference'] = match.max_discrepancy
        row['Severity'] = match.severity.title()
        rows.append(row)
    return pd.DataFrame(rows)


def _only_frame(entries) -> pd.DataFrame:
    rows = [dict({'Row': entry.index}, **dict(entry.record)) for entry in entries]
    return pd.DataFrame(rows)


def _summary_frame(report: ReconciliationReport) -> pd.DataFrame:
    summary = get_report_summary(report)
    data = [
        {'Metric': 'Total GST Records', 'Value': summary['total_gst_records']},
        {'Metric': 'Total Tally Records', 'Value': summary['total_tally_records']},
        {'Metric': 'Exact Matches', 'Value': summary['exact_matches']},
        {'Metric': 'Partial Matches (Minor)', 'Value': summary['partial_minor']},
        {'Metric': 'Partial Matches (Major)', 'Value': summary['partial_major']},
        {'Metric': 'GST Only', 'Value': summary['gst_only']},
        {'Metric': 'Tally Only', 'Value': summary['tally_only']},
        {'Metric': 'GST Match Rate', 'Value': summary['gst_match_rate']},
        {'Metric': 'Largest Monetary Difference', 'Value': summary['largest_monetary_difference']},
        {'Metric': 'Date Conversion Failures', 'Value': summary['date_conversion_failures']},
    ]
    return pd.DataFrame(data)


def report_to_frames(report: ReconciliationReport) -> Dict[str, pd.DataFrame]:
    """One DataFrame per sheet: the summary followed by the five result buckets."""
    return {
        'Summary': _summary_frame(report),
        'Exact Matches': pd.DataFrame([_pair_row(report, m) for m in report.exact_matches]),
        'Partial Minor': _partial_frame(report, report.partial_minor),
        'Partial Major': _partial_frame(report, report.partial_major),
        'GST Only': _only_frame(report.gst_only),
        'Tally Only': _only_frame(report.tally_only),
    }


def _style_sheet(ws, sheet_name: str):
    color = SHEET_COLORS.get(sheet_name, '757575')
    header_fill = PatternFill(start_color=color, end_color=color, fill_type='solid')
    for cell in next(ws.iter_rows(min_row=1, max_row=1)):
        cell.fill = header_fill
        cell.font = Font(bold=True, color='ffffff')

    for idx, column in enumerate(ws.iter_cols(min_row=1, max_row=min(ws.max_row, 200)), start=1):
        width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[get_column_letter(idx)].width = min(max(width + 2, 10), 50)


def _highlight_discrepancies(ws, matches):
    """Fill the GST and Tally cells of every mismatched mapped column."""
    header = [cell.value for cell in next(ws.iter_rows(min_row=1, max_row=1))]
    for row_offset, match in enumerate(matches, start=2):
        for disc in match.discrepancy_columns:
            for title in (f'GST {disc.gst_column}', f'Tally {disc.tally_column}'):
                if title in header:
                    ws.cell(row=row_offset, column=header.index(title) + 1).fill = DIFF_FILL


def export_report_to_excel(report: ReconciliationReport) -> bytes:
    """Write the summary and every bucket to an .xlsx workbook and return its bytes."""
    frames = report_to_frames(report)
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        for sheet_name, df in frames.items():
            df.to_excel(writer, sheet_name=sheet_name, index=False)

        workbook = writer.book
        for sheet_name, df in frames.items():
            if df.empty:
                continue
            _style_sheet(workbook[sheet_name], sheet_name)
        if report.partial_minor:
            _highlight_discrepancies(workbook['Partial Minor'], report.partial_minor)
        if report.partial_major:
            _highlight_discrepancies(workbook['Partial Major'], report.partial_major)

    logger.info(f"Exported reconciliation report with {len(frames)} sheets")
    return output.getvalue()


def export_bucket_to_csv(report: ReconciliationReport, bucket: str) -> str:
    """CSV text of one bucket: exact, partial_minor, partial_major, gst_only or tally_only."""
    if bucket not in BUCKETS:
        raise ValueError(f"Unknown bucket '{bucket}'. Expected one of: {', '.join(BUCKETS)}")
    return report_to_frames(report)[BUCKETS[bucket]].to_csv(index=False)


def get_report_summary(report: ReconciliationReport) -> Dict[str, Any]:
    """
    Get summary statistics for a reconciliation report.

    Args:
        report: Result of a reconciliation run

    Returns:
        Dictionary with bucket counts, match rates and formatted amounts
    """
    counts = report.counts
    matched_gst = counts['exact_matches'] + counts['partial_matches']
    gst_rate = (matched_gst / report.total_gst * 100) if report.total_gst else 0.0
    tally_rate = (matched_gst / report.total_tally * 100) if report.total_tally else 0.0
    largest = max((m.max_discrepancy for m in report.partial_matches), default=0.0)

    summary: Dict[str, Any] = dict(counts)
    summary.update({
        'gst_match_rate': format_percentage(gst_rate),
        'tally_match_rate': format_percentage(tally_rate),
        'largest_monetary_difference': format_indian_currency(largest),
        'gst_date_columns': list(report.gst_date_columns),
        'tally_date_columns': list(report.tally_date_columns),
    })
    return summary
