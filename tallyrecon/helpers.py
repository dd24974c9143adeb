from typing import Any, Dict, Union
from datetime import date, datetime
import numbers
import pandas as pd
import re

# Canonical stand-in for empty cells, None and the '-' placeholder.
NEUTRAL_ZERO = 0

_PLACEHOLDERS = ('', '-')
_ISO_TIMESTAMP = re.compile(r'^\d{4}-\d{2}-\d{2}t', re.IGNORECASE)
_NON_NUMERIC = re.compile(r'[^0-9.\-]')
_LEADING_NUMBER = re.compile(r'-?(?:\d+(?:\.\d*)?|\.\d+)')


def is_missing(value: Any) -> bool:
    """True for None, NaN, NaT and other scalar null markers."""
    if value is None:
        return True
    if not pd.api.types.is_scalar(value):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def normalize_value(value: Any) -> Union[str, int]:
    """
    Canonicalize a raw cell value into its comparable form.

    None, NaN, empty strings and a lone '-' become NEUTRAL_ZERO. Everything
    else becomes a trimmed string. Separators inside the value are left alone,
    so invoice numbers such as '25-26/0001' survive untouched.
    """
    if is_missing(value):
        return NEUTRAL_ZERO

    if isinstance(value, bool):
        return str(value)

    if isinstance(value, numbers.Number):
        if value == 0:
            return NEUTRAL_ZERO
        if isinstance(value, numbers.Integral):
            return str(int(value))
        value = float(value)
        if value.is_integer():
            return str(int(value))
        return str(value)

    if isinstance(value, (datetime, pd.Timestamp)):
        if (value.hour, value.minute, value.second, value.microsecond) == (0, 0, 0, 0):
            return value.strftime("%Y-%m-%d")
        return value.isoformat()

    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")

    str_value = str(value).strip()
    if str_value in _PLACEHOLDERS:
        return NEUTRAL_ZERO
    return str_value


def json_safe(value: Any) -> Any:
    """Plain str, int, float and bool pass through; any other cell goes through normalize_value."""
    if value is None or isinstance(value, (str, bool)):
        return value
    if type(value) in (int, float) and not is_missing(value):
        return value
    return normalize_value(value)


def json_safe_record(record: Any) -> Dict[str, Any]:
    return {str(column): json_safe(value) for column, value in dict(record).items()}


def comparable_value(value: Any) -> str:
    """Normalized, trimmed, lower-cased text used for equality between GST and Tally cells.

    ISO timestamps collapse to their date part so a DATE column never differs
    from a TIMESTAMP column holding the same day.
    """
    text = str(normalize_value(value)).strip().lower()
    if _ISO_TIMESTAMP.match(text):
        text = text.split('t', 1)[0]
    return text


def parse_monetary(value: Any) -> float:
    """Parse an amount by keeping only digits, '.' and '-'. Unparseable text counts as 0."""
    if is_missing(value):
        return 0.0
    cleaned = _NON_NUMERIC.sub('', str(value))
    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return 0.0
    return float(match.group(0))


def sanitize_column_name(name: Any) -> str:
    """Storage-safe column name: lower case, [a-z0-9_] only, 'col_' before a leading digit."""
    sanitized = re.sub(r'[^a-z0-9_]', '_', str(name or '').lower())
    sanitized = re.sub(r'_+', '_', sanitized).strip('_')
    if not sanitized:
        return 'col'
    if sanitized[0].isdigit():
        sanitized = 'col_' + sanitized
    return sanitized


def format_percentage(value: float) -> str:
    """Format percentage value"""
    return f"{value:.1f}%"


def format_indian_currency(amount: float) -> str:
    """
    Format amount in Indian currency format with lakhs/crores notation.

    Args:
        amount: Amount to format

    Returns:
        Formatted string with Indian currency notation
    """
    if is_missing(amount) or amount == 0:
        return "₹0"

    abs_amount = abs(amount)

    if abs_amount >= 10000000:  # 1 crore
        crores = abs_amount / 10000000
        if float(crores).is_integer():
            formatted = f"₹{int(crores):,} crore"
        else:
            formatted = f"₹{crores:.2f} crore"
    elif abs_amount >= 100000:  # 1 lakh
        lakhs = abs_amount / 100000
        if float(lakhs).is_integer():
            formatted = f"₹{int(lakhs):,} lakh"
        else:
            formatted = f"₹{lakhs:.2f} lakh"
    else:
        formatted = f"₹{abs_amount:,.2f}"

    if amount < 0:
        formatted = f"-{formatted}"

    return formatted
