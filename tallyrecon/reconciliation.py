import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd

from .date_detector import convert_date_columns, detect_date_columns
from .error_handler import ErrorHandler, ReconciliationError
from .helpers import normalize_value, parse_monetary
from .matching import (
    ExactMatchOutcome, PartialMatchOutcome, build_key, is_monetary_column, match_exact, match_partial
)
from .models import ColumnMapping, GstOnly, ReconciliationReport, Record, TallyOnly
from .progress_tracker import ReconciliationProgressTracker
from .settings import resolve_settings

logger = logging.getLogger(__name__)

MappingLike = Union[ColumnMapping, Iterable[Tuple[Any, Any]]]

normalize = normalize_value


def coerce_mapping(mapping: MappingLike, error_handler: Optional[ErrorHandler] = None) -> ColumnMapping:
    """Accept a ColumnMapping or raw (gst, tally) pairs; raw pairs are filtered and validated."""
    if isinstance(mapping, ColumnMapping):
        return mapping
    return ColumnMapping.from_pairs(mapping, error_handler)


def assemble_report(mapping: ColumnMapping, total_gst: int, total_tally: int,
                    exact_outcome: ExactMatchOutcome, partial_outcome: PartialMatchOutcome,
                    gst_date_columns: Iterable[str] = (), tally_date_columns: Iterable[str] = (),
                    date_failures: Sequence = ()) -> ReconciliationReport:
    """Label whatever neither matching stage consumed as source-only and build the four-way report."""
    report = ReconciliationReport(
        mapping=mapping,
        total_gst=total_gst,
        total_tally=total_tally,
        exact_matches=list(exact_outcome.exact),
        partial_matches=list(partial_outcome.partial),
        gst_only=[GstOnly(row.record, row.index) for row in partial_outcome.gst_only],
        tally_only=[TallyOnly(row.record, row.index) for row in partial_outcome.tally_only],
        gst_date_columns=sorted(gst_date_columns),
        tally_date_columns=sorted(tally_date_columns),
        date_failures=list(date_failures),
    )

    if not report.is_total():
        counts = report.counts
        logger.error(f"Record count mismatch after reconciliation: {counts}")
        raise ReconciliationError(
            f"Reconciliation lost records: {total_gst} GST + {total_tally} Tally in, {counts} out"
        )
    return report


class GSTTallyReconciliation:
    """
    One reconciliation run of a GST portal export against a Tally ledger export.

    The run is a fixed pipeline: date detection and conversion on the
    invoice-date columns, exact matching on the full mapped key, budgeted
    partial matching on the remainder, and finally the GST-only and
    Tally-only residue. All state lives on the instance, so independent runs
    can proceed side by side.
    """

    def __init__(self, gst_records: Iterable[Record], tally_records: Iterable[Record], mapping: MappingLike,
                 settings: Optional[Dict[str, Any]] = None, error_handler: Optional[ErrorHandler] = None,
                 progress_tracker: Optional[ReconciliationProgressTracker] = None):
        self.settings = resolve_settings(settings)
        self.error_handler = error_handler or ErrorHandler()
        self.progress_tracker = progress_tracker or ReconciliationProgressTracker()

        self.mapping = coerce_mapping(mapping, self.error_handler)

        self.gst_records: List[Record] = list(gst_records)
        self.tally_records: List[Record] = list(tally_records)

        # Filled in by run()
        self.gst_converted: List[Record] = self.gst_records
        self.tally_converted: List[Record] = self.tally_records
        self.gst_date_columns = set()
        self.tally_date_columns = set()
        self.date_failures = []
        self.report: Optional[ReconciliationReport] = None

        logger.info(f"Prepared reconciliation of {len(self.gst_records)} GST and "
                    f"{len(self.tally_records)} Tally records over {len(self.mapping)} mapped columns")

    def run(self) -> ReconciliationReport:
        """Execute the pipeline and return the report."""
        tracker = self.progress_tracker
        tracker.start_reconciliation(len(self.gst_records), len(self.tally_records))
        try:
            tracker.start_stage(0)
            self._convert_dates()

            tracker.start_stage(1)
            exact_outcome = self._match_exact()

            tracker.start_stage(2)
            partial_outcome = match_partial(
                exact_outcome.remaining_gst,
                exact_outcome.remaining_tally,
                self.mapping,
                budget=self.settings['discrepancy_budget'],
                monetary_fragments=self.settings['monetary_fragments'],
                minor_tolerance=self.settings['minor_tolerance'],
                show_progress=self.settings['show_progress'],
            )

            tracker.start_stage(3)
            self.report = assemble_report(
                self.mapping,
                len(self.gst_records),
                len(self.tally_records),
                exact_outcome,
                partial_outcome,
                self.gst_date_columns,
                self.tally_date_columns,
                self.date_failures,
            )
        except ReconciliationError as e:
            tracker.fail_operation(str(e))
            raise

        tracker.complete_reconciliation(self.report.counts)
        self.error_handler.log_info(
            "RECONCILIATION_COMPLETE",
            f"Reconciled {len(self.gst_records)} GST and {len(self.tally_records)} Tally records",
            self.report.counts
        )
        return self.report

    def _convert_dates(self):
        """Detect invoice-date columns on both sides and rewrite them as YYYY-MM-DD."""
        self.gst_date_columns, self.tally_date_columns = detect_date_columns(
            self.gst_records,
            self.tally_records,
            self.mapping,
            date_column_names=self.settings['date_column_names'],
            sample_size=self.settings['date_sample_size'],
        )

        self.gst_converted, gst_failures = convert_date_columns(
            self.gst_records, self.gst_date_columns, 'GST', self.error_handler)
        self.tally_converted, tally_failures = convert_date_columns(
            self.tally_records, self.tally_date_columns, 'Tally', self.error_handler)
        self.date_failures = gst_failures + tally_failures

    def _match_exact(self) -> ExactMatchOutcome:
        return match_exact(self.gst_converted, self.tally_converted, self.mapping)

    def get_results(self) -> Dict[str, Any]:
        """Return the report as plain, JSON-serialisable data."""
        if self.report is None:
            self.run()
        results = self.report.to_dict()
        results['session'] = self.error_handler.get_session_summary()
        return results

    def get_summaries(self) -> Dict[str, pd.DataFrame]:
        """Get all summary information."""
        if self.report is None:
            self.run()
        return {
            'recon_summary': self._generate_recon_summary(),
            'integrity_checks': self._perform_integrity_checks(),
        }

    @staticmethod
    def _monetary_total(records: Iterable[Record], columns: Sequence[str]) -> float:
        return sum(parse_monetary(record.get(c)) for record in records for c in columns)

    def _generate_recon_summary(self) -> pd.DataFrame:
        """Generate a summary of reconciliation results."""
        report = self.report
        # a pair is monetary when its GST column is
        fragments = self.settings['monetary_fragments']
        monetary_pairs = [p for p in self.mapping if is_monetary_column(p.gst_column, fragments)]
        gst_columns = [p.gst_column for p in monetary_pairs]
        tally_columns = [p.tally_column for p in monetary_pairs]

        buckets = [
            ('Exact Matches', [m.gst for m in report.exact_matches], [m.tally for m in report.exact_matches]),
            ('Partial Matches (Minor)', [m.gst for m in report.partial_minor], [m.tally for m in report.partial_minor]),
            ('Partial Matches (Major)', [m.gst for m in report.partial_major], [m.tally for m in report.partial_major]),
            ('GST Only', [r.record for r in report.gst_only], []),
            ('Tally Only', [], [r.record for r in report.tally_only]),
        ]

        data = []
        for match_type, gst_side, tally_side in buckets:
            data.append({
                'Match Type': match_type,
                'GST Count': len(gst_side),
                'Tally Count': len(tally_side),
                'GST Monetary Total': round(self._monetary_total(gst_side, gst_columns), 2),
                'Tally Monetary Total': round(self._monetary_total(tally_side, tally_columns), 2),
            })

        data.append({
            'Match Type': 'Total',
            'GST Count': report.total_gst,
            'Tally Count': report.total_tally,
            'GST Monetary Total': round(self._monetary_total(self.gst_converted, gst_columns), 2),
            'Tally Monetary Total': round(self._monetary_total(self.tally_converted, tally_columns), 2),
        })
        return pd.DataFrame(data)

    def _perform_integrity_checks(self) -> pd.DataFrame:
        """Perform data integrity checks and summarize issues."""
        integrity_issues = []

        for source, records, columns in (('GST', self.gst_converted, self.mapping.gst_columns),
                                         ('Tally', self.tally_converted, self.mapping.tally_columns)):
            # Mapped columns that no record carries compare as the neutral zero everywhere
            missing = [c for c in columns if records and not any(c in record for record in records)]
            if missing:
                integrity_issues.append({
                    'Check': f'Mapped Columns Missing ({source})',
                    'Status': 'Error',
                    'Details': f"Columns not present in any {source} record: {', '.join(missing)}"
                })

            key_counts = Counter(build_key(record, columns) for record in records)
            duplicates = sum(count for count in key_counts.values() if count > 1)
            if duplicates:
                integrity_issues.append({
                    'Check': f'Duplicate Mapped Keys ({source})',
                    'Status': 'Warning',
                    'Details': f"{duplicates} {source} records share their mapped key with another record."
                })

        if self.date_failures:
            by_source = Counter(f.source for f in self.date_failures)
            integrity_issues.append({
                'Check': 'Date Conversion Failures',
                'Status': 'Warning',
                'Details': ", ".join(f"{count} in {source}" for source, count in sorted(by_source.items()))
            })

        if not integrity_issues:
            integrity_issues.append({
                'Check': 'All checks passed',
                'Status': 'Success',
                'Details': 'No data integrity issues found.'
            })

        return pd.DataFrame(integrity_issues)


def reconcile(gst_records: Iterable[Record], tally_records: Iterable[Record], mapping: MappingLike,
              settings: Optional[Dict[str, Any]] = None,
              error_handler: Optional[ErrorHandler] = None) -> ReconciliationReport:
    """Reconcile GST records against Tally records under a column mapping."""
    return GSTTallyReconciliation(gst_records, tally_records, mapping, settings, error_handler).run()
