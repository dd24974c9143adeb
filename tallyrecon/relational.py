"""
Set-operation formulation of the reconciler over pandas DataFrames.

Each side is projected onto ``feature1..featureN`` (the comparable values of
the mapped columns, in mapping order) plus a ``row_id`` pointing back at the
input position. Exact matching becomes a join on every feature; partial
candidates are rows whose identifying prefix joins while the full tuples
differ. The occurrence-numbered join pairs duplicate keys exactly the way the
in-memory matcher does, so both formulations produce the same exact pairs.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .error_handler import ErrorHandler
from .matching import ExactMatchOutcome, SourceRow, comparable_row, as_source_rows
from .models import ColumnMapping, ExactMatch, ReconciliationReport, Record
from .reconciliation import GSTTallyReconciliation, MappingLike, coerce_mapping
from .settings import resolve_settings

logger = logging.getLogger(__name__)

ROW_ID = 'row_id'
OCCURRENCE = '_occurrence'


def feature_columns(width: int) -> List[str]:
    return [f'feature{i + 1}' for i in range(width)]


def _features_of(frame: pd.DataFrame) -> List[str]:
    return [c for c in frame.columns if c.startswith('feature')]


def build_feature_frame(records: Iterable[Any], columns: Sequence[str]) -> pd.DataFrame:
    """Project records onto their comparable mapped values, one row per record."""
    features = feature_columns(len(columns))
    rows = as_source_rows(records)
    data = [(row.index,) + comparable_row(row.record, columns) for row in rows]
    return pd.DataFrame(data, columns=[ROW_ID] + features).astype(object)


def relational_exact_keys(gst_frame: pd.DataFrame, tally_frame: pd.DataFrame) -> pd.DataFrame:
    """Distinct feature tuples present on both sides (INTERSECT)."""
    features = _features_of(gst_frame)
    keys = pd.merge(
        gst_frame[features].drop_duplicates(),
        tally_frame[features].drop_duplicates(),
        on=features,
        how='inner'
    )
    return keys.reset_index(drop=True)


def _with_occurrence(frame: pd.DataFrame, features: List[str]) -> pd.DataFrame:
    numbered = frame.copy()
    if numbered.empty:
        numbered[OCCURRENCE] = pd.Series(dtype='int64')
    else:
        numbered[OCCURRENCE] = numbered.groupby(features, sort=False).cumcount()
    return numbered


def relational_exact_pairs(gst_frame: pd.DataFrame, tally_frame: pd.DataFrame) -> pd.DataFrame:
    """
    Pair rows with identical feature tuples, 1:1.

    The n-th GST row carrying a tuple pairs with the n-th Tally row carrying
    the same tuple, so surplus duplicates stay unpaired. Returns
    ``gst_row_id`` / ``tally_row_id`` ordered by GST input order.
    """
    features = _features_of(gst_frame)
    merged = pd.merge(
        _with_occurrence(gst_frame, features),
        _with_occurrence(tally_frame, features),
        on=features + [OCCURRENCE],
        how='inner',
        suffixes=('_gst', '_tally')
    )
    pairs = merged[[f'{ROW_ID}_gst', f'{ROW_ID}_tally']].rename(
        columns={f'{ROW_ID}_gst': 'gst_row_id', f'{ROW_ID}_tally': 'tally_row_id'}
    )
    return pairs.sort_values('gst_row_id', kind='stable').reset_index(drop=True)


def _prefix(features: List[str], prefix: int) -> List[str]:
    if prefix < 1:
        raise ValueError("Identifying prefix must cover at least one column")
    return features[:prefix]


def relational_partial_candidates(gst_frame: pd.DataFrame, tally_frame: pd.DataFrame,
                                  prefix: int = 2) -> pd.DataFrame:
    """Row pairs whose identifying prefix agrees but whose full feature tuples differ."""
    features = _features_of(gst_frame)
    on = _prefix(features, prefix)
    merged = pd.merge(gst_frame, tally_frame, on=on, how='inner', suffixes=('_gst', '_tally'))

    rest = [f for f in features if f not in on]
    if not rest:
        # prefix covers the whole tuple
        merged = merged.iloc[0:0]
    elif not merged.empty:
        differs = pd.Series(False, index=merged.index)
        for feature in rest:
            differs |= merged[f"{feature}_gst"] != merged[f"{feature}_tally"]
        merged = merged[differs]

    candidates = merged.rename(columns={f'{ROW_ID}_gst': 'gst_row_id', f'{ROW_ID}_tally': 'tally_row_id'})
    return candidates.reset_index(drop=True)


def relational_source_only(frame: pd.DataFrame, other_frame: pd.DataFrame, prefix: int = 2) -> pd.DataFrame:
    """Rows of ``frame`` whose identifying prefix appears nowhere in ``other_frame`` (anti-join)."""
    on = _prefix(_features_of(frame), prefix)
    merged = pd.merge(frame, other_frame[on].drop_duplicates(), on=on, how='left', indicator=True)
    only = merged[merged['_merge'] == 'left_only'].drop(columns=['_merge'])
    return only.reset_index(drop=True)


class _RelationalRun(GSTTallyReconciliation):
    """Pipeline run whose exact stage is computed with joins instead of a hash map."""

    def _match_exact(self) -> ExactMatchOutcome:
        gst_frame = build_feature_frame(self.gst_converted, self.mapping.gst_columns)
        tally_frame = build_feature_frame(self.tally_converted, self.mapping.tally_columns)
        pairs = relational_exact_pairs(gst_frame, tally_frame)

        exact = [
            ExactMatch(self.gst_converted[g], self.tally_converted[t], g, t)
            for g, t in zip(pairs['gst_row_id'].astype(int), pairs['tally_row_id'].astype(int))
        ]
        paired_gst = set(pairs['gst_row_id'].astype(int))
        paired_tally = set(pairs['tally_row_id'].astype(int))
        remaining_gst = [SourceRow(i, r) for i, r in enumerate(self.gst_converted) if i not in paired_gst]
        remaining_tally = [SourceRow(i, r) for i, r in enumerate(self.tally_converted) if i not in paired_tally]

        logger.info(f"Relational exact join paired {len(exact)} records; "
                    f"{len(remaining_gst)} GST and {len(remaining_tally)} Tally records remain")
        return ExactMatchOutcome(exact, remaining_gst, remaining_tally)


class RelationalReconciler:
    """
    Reconciler for callers that push matching into a query engine.

    Exact matches come from the occurrence-numbered join; the budgeted partial
    stage runs over the residue exactly as in the in-memory pipeline, so the
    report is identical to ``reconcile`` for the same inputs.
    """

    def __init__(self, mapping: MappingLike, settings: Optional[Dict[str, Any]] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.settings = resolve_settings(settings)
        self.error_handler = error_handler or ErrorHandler()
        self.mapping: ColumnMapping = coerce_mapping(mapping, self.error_handler)
        self.last_run: Optional[GSTTallyReconciliation] = None

    def reconcile(self, gst_records: Iterable[Record], tally_records: Iterable[Record]) -> ReconciliationReport:
        run = _RelationalRun(gst_records, tally_records, self.mapping, self.settings, self.error_handler)
        self.last_run = run
        return run.run()

    def partial_candidates(self, gst_records: Iterable[Record], tally_records: Iterable[Record]) -> pd.DataFrame:
        """Candidate pairs on the identifying prefix, after the date pass, for inspection ahead of a full run."""
        run = GSTTallyReconciliation(gst_records, tally_records, self.mapping, self.settings, self.error_handler)
        run._convert_dates()
        gst_frame = build_feature_frame(run.gst_converted, self.mapping.gst_columns)
        tally_frame = build_feature_frame(run.tally_converted, self.mapping.tally_columns)
        prefix = min(self.settings['identifying_prefix_columns'], len(self.mapping))
        return relational_partial_candidates(gst_frame, tally_frame, prefix)
