"""
Key building, exact hash-join matching and budgeted partial matching.
"""

import logging
from collections import deque
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple

from tqdm import tqdm

from .helpers import comparable_value, parse_monetary, sanitize_column_name
from .models import ColumnMapping, Discrepancy, ExactMatch, PartialMatch, Record

logger = logging.getLogger(__name__)

# Unit separator: cannot come out of a trimmed spreadsheet cell.
KEY_SEPARATOR = "\x1f"

DEFAULT_DISCREPANCY_BUDGET = 3
DEFAULT_MINOR_TOLERANCE = 1.0
DEFAULT_MONETARY_FRAGMENTS = (
    'taxable_value', 'igst', 'cgst', 'sgst',
    'integrated_tax', 'central_tax', 'state_ut_tax',
)


class SourceRow(NamedTuple):
    """A record together with its position in the original input."""
    index: int
    record: Record


class ExactMatchOutcome(NamedTuple):
    exact: List[ExactMatch]
    remaining_gst: List[SourceRow]
    remaining_tally: List[SourceRow]


class PartialMatchOutcome(NamedTuple):
    partial: List[PartialMatch]
    gst_only: List[SourceRow]
    tally_only: List[SourceRow]


def as_source_rows(records: Iterable[Any]) -> List[SourceRow]:
    """Wrap plain records with their position; SourceRow inputs keep their original index."""
    rows = []
    for position, item in enumerate(records):
        if isinstance(item, SourceRow):
            rows.append(item)
        else:
            rows.append(SourceRow(position, item))
    return rows


def comparable_row(record: Record, columns: Sequence[str]) -> Tuple[str, ...]:
    return tuple(comparable_value(record.get(column)) for column in columns)


def build_key(record: Record, columns: Sequence[str]) -> str:
    """Fingerprint of a record over the given columns; equal keys mean every mapped field is equal."""
    return KEY_SEPARATOR.join(comparable_row(record, columns))


def find_discrepancies(gst_record: Record, tally_record: Record, mapping: ColumnMapping,
                       limit: Optional[int] = None) -> List[Discrepancy]:
    """
    List the mapped columns on which two records disagree.

    When limit is given, scanning stops as soon as more than limit
    discrepancies are found, so the result length only tells the caller
    that the pair is over budget.
    """
    discrepancies = []
    for pair in mapping:
        gst_value = gst_record.get(pair.gst_column)
        tally_value = tally_record.get(pair.tally_column)
        if comparable_value(gst_value) != comparable_value(tally_value):
            discrepancies.append(Discrepancy(pair.index, pair.gst_column, pair.tally_column,
                                             gst_value, tally_value))
            if limit is not None and len(discrepancies) > limit:
                break
    return discrepancies


def is_monetary_column(column_name: Any, fragments: Iterable[str] = DEFAULT_MONETARY_FRAGMENTS) -> bool:
    """True when the storage-safe form of a column name contains a tax/amount fragment."""
    sanitized = sanitize_column_name(column_name)
    return any(sanitize_column_name(fragment) in sanitized for fragment in fragments)


def classify_monetary(discrepancies: Sequence[Discrepancy],
                      fragments: Iterable[str] = DEFAULT_MONETARY_FRAGMENTS,
                      tolerance: float = DEFAULT_MINOR_TOLERANCE) -> Tuple[float, bool]:
    """
    Return (max_discrepancy, is_minor) over the monetary columns of a partial match.

    A delta at or above tolerance makes the match major. A match is minor only
    when some monetary delta is nonzero and all of them are below tolerance.
    """
    fragments = tuple(fragments)
    max_discrepancy = 0.0
    has_large_discrepancy = False

    for disc in discrepancies:
        if not is_monetary_column(disc.gst_column, fragments):
            continue
        diff = abs(parse_monetary(disc.gst_value) - parse_monetary(disc.tally_value))
        max_discrepancy = max(max_discrepancy, diff)
        if diff >= tolerance:
            has_large_discrepancy = True

    return max_discrepancy, (not has_large_discrepancy and max_discrepancy > 0)


def match_exact(gst_records: Iterable[Any], tally_records: Iterable[Any],
                mapping: ColumnMapping) -> ExactMatchOutcome:
    """
    Hash-join GST and Tally records on the full mapped-column key.

    Tally rows sharing a key queue up in input order; each GST row takes the
    first one still available, so duplicate keys pair off 1:1 and surplus
    rows on either side fall through to partial matching.
    """
    gst_rows = as_source_rows(gst_records)
    tally_rows = as_source_rows(tally_records)
    gst_columns = mapping.gst_columns
    tally_columns = mapping.tally_columns

    tally_map: Dict[str, deque] = {}
    for position, row in enumerate(tally_rows):
        tally_map.setdefault(build_key(row.record, tally_columns), deque()).append(position)

    exact: List[ExactMatch] = []
    remaining_gst: List[SourceRow] = []
    tally_consumed = [False] * len(tally_rows)

    for gst_row in gst_rows:
        candidates = tally_map.get(build_key(gst_row.record, gst_columns))
        if candidates:
            position = candidates.popleft()
            tally_consumed[position] = True
            tally_row = tally_rows[position]
            exact.append(ExactMatch(gst_row.record, tally_row.record, gst_row.index, tally_row.index))
        else:
            remaining_gst.append(gst_row)

    remaining_tally = [row for position, row in enumerate(tally_rows) if not tally_consumed[position]]

    logger.info(f"Exact matching paired {len(exact)} records; "
                f"{len(remaining_gst)} GST and {len(remaining_tally)} Tally records remain")
    return ExactMatchOutcome(exact, remaining_gst, remaining_tally)


def match_partial(remaining_gst: Iterable[Any], remaining_tally: Iterable[Any], mapping: ColumnMapping,
                  budget: int = DEFAULT_DISCREPANCY_BUDGET,
                  monetary_fragments: Iterable[str] = DEFAULT_MONETARY_FRAGMENTS,
                  minor_tolerance: float = DEFAULT_MINOR_TOLERANCE,
                  show_progress: bool = False) -> PartialMatchOutcome:
    """
    Pair each leftover GST record with its closest unconsumed Tally record.

    A candidate must differ on 1..budget mapped columns. The first candidate
    reaching a strictly lower count wins; later ties do not replace it. GST
    records are visited in input order and every pairing consumes both sides.
    """
    gst_rows = as_source_rows(remaining_gst)
    tally_rows = as_source_rows(remaining_tally)
    monetary_fragments = tuple(monetary_fragments)
    gst_columns = mapping.gst_columns
    tally_columns = mapping.tally_columns
    width = len(mapping)

    tally_values = [comparable_row(row.record, tally_columns) for row in tally_rows]
    tally_consumed = [False] * len(tally_rows)

    partial: List[PartialMatch] = []
    gst_only: List[SourceRow] = []

    for gst_row in tqdm(gst_rows, desc="Partial matching", disable=not show_progress):
        gst_values = comparable_row(gst_row.record, gst_columns)
        best_position = None
        best_count = budget + 1

        for position, values in enumerate(tally_values):
            if tally_consumed[position]:
                continue
            limit = best_count - 1
            count = 0
            for column in range(width):
                if gst_values[column] != values[column]:
                    count += 1
                    if count > limit:
                        break
            if 1 <= count <= limit:
                best_position = position
                best_count = count
                if best_count == 1:
                    break

        if best_position is None:
            gst_only.append(gst_row)
            continue

        tally_consumed[best_position] = True
        tally_row = tally_rows[best_position]
        discrepancies = find_discrepancies(gst_row.record, tally_row.record, mapping)
        max_discrepancy, is_minor = classify_monetary(discrepancies, monetary_fragments, minor_tolerance)
        partial.append(PartialMatch(gst_row.record, tally_row.record, gst_row.index, tally_row.index,
                                    discrepancies, max_discrepancy, is_minor))

    tally_only = [row for position, row in enumerate(tally_rows) if not tally_consumed[position]]

    logger.info(f"Partial matching paired {len(partial)} records "
                f"({sum(1 for m in partial if m.is_minor)} minor); "
                f"{len(gst_only)} GST-only and {len(tally_only)} Tally-only remain")
    return PartialMatchOutcome(partial, gst_only, tally_only)
