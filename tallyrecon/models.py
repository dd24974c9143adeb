"""
Value types exchanged between the reconciliation stages.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from .error_handler import ConfigurationError, ErrorHandler
from .helpers import json_safe, json_safe_record

logger = logging.getLogger(__name__)

# One parsed source row: column name -> raw cell value.
Record = Mapping[str, Any]


def _is_blank_column(name: Any) -> bool:
    return name is None or str(name).strip() == ''


@dataclass(frozen=True)
class ColumnPair:
    """A GST column declared equivalent to a Tally column."""
    gst_column: str
    tally_column: str
    index: int = 0


class ColumnMapping:
    """Ordered, validated (GST column, Tally column) pairs. Its length is the number of features compared."""

    def __init__(self, pairs: Sequence[ColumnPair]):
        if not pairs:
            raise ConfigurationError("No valid column mappings found")
        self._pairs: Tuple[ColumnPair, ...] = tuple(pairs)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[Any, Any]],
                   error_handler: Optional[ErrorHandler] = None) -> "ColumnMapping":
        """Build a mapping, silently excluding pairs with an empty side."""
        valid: List[ColumnPair] = []
        for position, (gst_column, tally_column) in enumerate(pairs):
            if _is_blank_column(gst_column) or _is_blank_column(tally_column):
                if error_handler is not None:
                    error_handler.record_dropped_mapping(position, gst_column, tally_column)
                else:
                    logger.warning(f"Skipping mapping pair {position}: '{gst_column}' -> '{tally_column}'")
                continue
            valid.append(ColumnPair(str(gst_column), str(tally_column), len(valid)))
        return cls(valid)

    @classmethod
    def from_lists(cls, gst_columns: Sequence[Any], tally_columns: Sequence[Any],
                   error_handler: Optional[ErrorHandler] = None) -> "ColumnMapping":
        """Pair two parallel column lists; the shorter list pads with empty entries."""
        length = max(len(gst_columns), len(tally_columns))
        padded_gst = list(gst_columns) + [None] * (length - len(gst_columns))
        padded_tally = list(tally_columns) + [None] * (length - len(tally_columns))
        return cls.from_pairs(zip(padded_gst, padded_tally), error_handler)

    @property
    def gst_columns(self) -> List[str]:
        return [pair.gst_column for pair in self._pairs]

    @property
    def tally_columns(self) -> List[str]:
        return [pair.tally_column for pair in self._pairs]

    def __len__(self) -> int:
        return len(self._pairs)

    def __iter__(self) -> Iterator[ColumnPair]:
        return iter(self._pairs)

    def __getitem__(self, item: int) -> ColumnPair:
        return self._pairs[item]

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ColumnMapping) and self._pairs == other._pairs

    def __repr__(self) -> str:
        inner = ", ".join(f"{p.gst_column!r}->{p.tally_column!r}" for p in self._pairs)
        return f"ColumnMapping([{inner}])"

    def to_dict(self) -> Dict[str, List[str]]:
        return {'gst_columns': self.gst_columns, 'tally_columns': self.tally_columns}


@dataclass(frozen=True)
class Discrepancy:
    """One mapped column on which a GST/Tally pair disagrees."""
    field_index: int
    gst_column: str
    tally_column: str
    gst_value: Any
    tally_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {
            'column_index': self.field_index,
            'gst_column': self.gst_column,
            'tally_column': self.tally_column,
            'gst_value': json_safe(self.gst_value),
            'tally_value': json_safe(self.tally_value),
        }


@dataclass(frozen=True)
class DateConversionFailure:
    """A value in a detected date column that did not convert to YYYY-MM-DD."""
    source: str
    row_index: int
    column: str
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {'source': self.source, 'row_index': self.row_index,
                'column': self.column, 'value': json_safe(self.value)}


@dataclass
class ExactMatch:
    gst: Record
    tally: Record
    gst_index: int
    tally_index: int
    match_type: str = field(default='exact', init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'match_type': self.match_type, 'gst_index': self.gst_index, 'tally_index': self.tally_index,
                'gst': json_safe_record(self.gst), 'tally': json_safe_record(self.tally)}


@dataclass
class PartialMatch:
    gst: Record
    tally: Record
    gst_index: int
    tally_index: int
    discrepancy_columns: List[Discrepancy]
    max_discrepancy: float = 0.0
    is_minor: bool = False
    match_type: str = field(default='partial', init=False)

    @property
    def discrepancies(self) -> int:
        """Number of mismatched mapped columns."""
        return len(self.discrepancy_columns)

    @property
    def severity(self) -> str:
        return 'minor' if self.is_minor else 'major'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'match_type': self.match_type,
            'gst_index': self.gst_index,
            'tally_index': self.tally_index,
            'gst': json_safe_record(self.gst),
            'tally': json_safe_record(self.tally),
            'discrepancies': self.discrepancies,
            'discrepancy_columns': [d.to_dict() for d in self.discrepancy_columns],
            'max_discrepancy': self.max_discrepancy,
            'is_minor': self.is_minor,
        }


@dataclass
class GstOnly:
    record: Record
    index: int
    match_type: str = field(default='gst_only', init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'match_type': self.match_type, 'index': self.index, 'record': json_safe_record(self.record),
                'source': 'GST', 'type': 'missing_in_tally'}


@dataclass
class TallyOnly:
    record: Record
    index: int
    match_type: str = field(default='tally_only', init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {'match_type': self.match_type, 'index': self.index, 'record': json_safe_record(self.record),
                'source': 'Tally', 'type': 'missing_in_gst'}


@dataclass
class ReconciliationReport:
    """The four result buckets of one run plus what the date pass did."""
    mapping: ColumnMapping
    total_gst: int
    total_tally: int
    exact_matches: List[ExactMatch] = field(default_factory=list)
    partial_matches: List[PartialMatch] = field(default_factory=list)
    gst_only: List[GstOnly] = field(default_factory=list)
    tally_only: List[TallyOnly] = field(default_factory=list)
    gst_date_columns: List[str] = field(default_factory=list)
    tally_date_columns: List[str] = field(default_factory=list)
    date_failures: List[DateConversionFailure] = field(default_factory=list)

    @property
    def partial_minor(self) -> List[PartialMatch]:
        return [m for m in self.partial_matches if m.is_minor]

    @property
    def partial_major(self) -> List[PartialMatch]:
        return [m for m in self.partial_matches if not m.is_minor]

    @property
    def counts(self) -> Dict[str, int]:
        return {
            'total_gst_records': self.total_gst,
            'total_tally_records': self.total_tally,
            'exact_matches': len(self.exact_matches),
            'partial_matches': len(self.partial_matches),
            'partial_minor': len(self.partial_minor),
            'partial_major': len(self.partial_major),
            'gst_only': len(self.gst_only),
            'tally_only': len(self.tally_only),
            'date_conversion_failures': len(self.date_failures),
        }

    def is_total(self) -> bool:
        """Every input record landed in exactly one bucket."""
        accounted = (2 * len(self.exact_matches) + 2 * len(self.partial_matches)
                     + len(self.gst_only) + len(self.tally_only))
        return accounted == self.total_gst + self.total_tally

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mapping': self.mapping.to_dict(),
            'summary': self.counts,
            'gst_date_columns': list(self.gst_date_columns),
            'tally_date_columns': list(self.tally_date_columns),
            'details': {
                'exact': [m.to_dict() for m in self.exact_matches],
                'partial': [m.to_dict() for m in self.partial_matches],
                'gst_only': [r.to_dict() for r in self.gst_only],
                'tally_only': [r.to_dict() for r in self.tally_only],
            },
            'date_failures': [f.to_dict() for f in self.date_failures],
        }
