"""
Field normalizers: ambiguous source values -> canonical typed values.

ZERO I/O. Every function is total over its input: it returns the typed value
or ``None`` for "unparseable", and never raises. The classifier turns a
``None`` for a required field into a skip; nothing here guesses.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, Pattern, Sequence

from openpyxl.utils.datetime import from_excel

from charity_config.schema import ClassificationRuleDef, CurrencyAliasDef

CANONICAL_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_CURRENCY_LENGTH = 32

_MAX_SERIAL = 2958466  # 9999-12-31

_TIME = r"(\d{1,2}):(\d{2})(?::(\d{2}))?"
_RE_TIME = re.compile(rf"^{_TIME}$")
_RE_DOTTED_DATE = re.compile(r"^(\d{2})\.(\d{2})\.(\d{4})$")
_RE_DOTTED_DATETIME = re.compile(rf"^(\d{{2}})\.(\d{{2}})\.(\d{{4}})\s+{_TIME}$")
_RE_SLASHED = re.compile(rf"^(\d{{1,2}})/(\d{{1,2}})/(\d{{4}}|\d{{2}})(?:,?\s+{_TIME})?$")
_RE_ISO = re.compile(rf"^(\d{{4}})-(\d{{2}})-(\d{{2}})(?:[T ]{_TIME}(?:\.\d+)?)?$")

_CENT = Decimal("0.01")


# -----------------------------------------------------------------------------
# Date-time
# -----------------------------------------------------------------------------


def _build(year: int, month: int, day: int, clock: time) -> datetime | None:
    try:
        return datetime.combine(date(year, month, day), clock)
    except ValueError:
        return None


def _time_from_groups(hh: str | None, mm: str | None, ss: str | None) -> time | None:
    if hh is None:
        return time(0, 0, 0)
    try:
        return time(int(hh), int(mm), int(ss) if ss is not None else 0)
    except ValueError:
        return None


def _parse_time(raw: Any) -> time | None:
    """Time of day from a separate column. Absent -> midnight; invalid -> None."""
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return time(0, 0, 0)
    if isinstance(raw, datetime):
        return raw.time().replace(microsecond=0)
    if isinstance(raw, time):
        return raw.replace(microsecond=0)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)) and 0 <= raw < 1:
        seconds = round(raw * 86400)
        if seconds >= 86400:
            return None
        return time(seconds // 3600, seconds % 3600 // 60, seconds % 60)
    if isinstance(raw, str):
        m = _RE_TIME.match(raw.strip())
        if m:
            return _time_from_groups(*m.groups())
    return None


def _from_serial(serial: float) -> datetime | None:
    # 1900 date system. openpyxl shifts serials below 60 by a day; serial 60
    # is the nonexistent 1900-02-29 and is rejected.
    if not math.isfinite(serial) or serial < 1 or serial >= _MAX_SERIAL:
        return None
    if 60 <= serial < 61:
        return None
    try:
        value = from_excel(serial) + timedelta(microseconds=500_000)
    except OverflowError:
        return None
    return value.replace(microsecond=0)


def _with_time(day: date, time_raw: Any) -> datetime | None:
    clock = _parse_time(time_raw)
    return datetime.combine(day, clock) if clock is not None else None


def parse_datetime(date_raw: Any, time_raw: Any = None) -> datetime | None:
    """
    Normalize a date (and optional separate time) to a naive datetime.

    Accepted, in priority order:
        (a) ``DD.MM.YYYY HH:MM[:SS]`` in one field
        (b) ``DD.MM.YYYY`` plus a separate ``HH:MM[:SS]`` field
        (c) a spreadsheet serial number (1900 system), fraction = time of day
        (d) ``M/D/YY`` or ``M/D/YYYY`` with optional time
    plus ``datetime``/``date`` cells and ISO ``YYYY-MM-DD[ HH:MM[:SS]]``
    (the canonical output form). A date value at midnight, including an
    integral serial, takes its time from ``time_raw``. Missing time means
    00:00:00; an unparseable ``time_raw`` makes the whole value None.
    """
    if date_raw is None or isinstance(date_raw, bool):
        return None

    # A date-only cell or integral serial arrives at midnight; the separate
    # time column then supplies the time of day.
    if isinstance(date_raw, datetime):
        value = date_raw.replace(tzinfo=None, microsecond=0)
        if value.time() == time(0, 0, 0):
            return _with_time(value.date(), time_raw)
        return value
    if isinstance(date_raw, date):
        return _with_time(date_raw, time_raw)

    if isinstance(date_raw, (int, float, Decimal)):
        serial = float(date_raw)
        value = _from_serial(serial)
        if value is not None and serial.is_integer():
            return _with_time(value.date(), time_raw)
        return value

    if not isinstance(date_raw, str):
        return None
    s = date_raw.strip()
    if not s:
        return None

    m = _RE_DOTTED_DATETIME.match(s)
    if m:
        dd, mm, yyyy, hh, mi, ss = m.groups()
        clock = _time_from_groups(hh, mi, ss)
        return _build(int(yyyy), int(mm), int(dd), clock) if clock else None

    m = _RE_DOTTED_DATE.match(s)
    if m:
        dd, mm, yyyy = m.groups()
        clock = _parse_time(time_raw)
        return _build(int(yyyy), int(mm), int(dd), clock) if clock else None

    m = _RE_SLASHED.match(s)
    if m:
        month, day, year, hh, mi, ss = m.groups()
        clock = _time_from_groups(hh, mi, ss) if hh is not None else _parse_time(time_raw)
        if clock is None:
            return None
        y = int(year)
        if len(year) == 2:
            y += 2000 if y < 69 else 1900
        return _build(y, int(month), int(day), clock)

    m = _RE_ISO.match(s)
    if m:
        yyyy, mm, dd, hh, mi, ss = m.groups()
        clock = _time_from_groups(hh, mi, ss) if hh is not None else _parse_time(time_raw)
        return _build(int(yyyy), int(mm), int(dd), clock) if clock else None

    return None


def format_datetime(value: datetime) -> str:
    """Canonical text form, stable under ``parse_datetime``."""
    return value.strftime(CANONICAL_DATETIME_FORMAT)


# -----------------------------------------------------------------------------
# Amounts
# -----------------------------------------------------------------------------


def parse_amount(raw: Any) -> Decimal | None:
    """
    Normalize a monetary amount or quantity.

    Text has all whitespace removed (thousands separators, NBSP) and decimal
    commas turned into points. Anything left that is not a finite number is
    unparseable.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else None
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        return Decimal(repr(raw)) if math.isfinite(raw) else None
    if not isinstance(raw, str):
        return None

    s = re.sub(r"\s+", "", raw).replace(",", ".")
    if not s:
        return None
    try:
        value = Decimal(s)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


# -----------------------------------------------------------------------------
# Currency
# -----------------------------------------------------------------------------


def normalize_currency(
    raw: Any,
    aliases: Sequence[CurrencyAliasDef],
    default: str,
) -> str:
    """
    Map a free-text currency label to a currency code.

    Empty -> ``default``. Unrecognized text passes through uppercased with
    runs of whitespace collapsed, cut to ``MAX_CURRENCY_LENGTH`` characters.
    """
    if raw is None:
        return default
    s = " ".join(str(raw).split()).upper()
    if not s:
        return default
    for alias in aliases:
        if any(token in s for token in alias.aliases):
            return alias.code
    return s[:MAX_CURRENCY_LENGTH]


# -----------------------------------------------------------------------------
# Categorical remapping
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Classification:
    """Result of the receiver-group lookup."""

    allowed: bool
    label: str | None = None


def _fold(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split()).casefold()


def remap_classification(
    classification: Any,
    group: Any,
    rules: Sequence[ClassificationRuleDef],
) -> Classification:
    """
    Look up (classification, group) in the rule table.

    Exact classification rules win over group-only rules. Combinations absent
    from the table are not allowed for import.
    """
    source_label = " ".join(str(classification).split()) if classification is not None else ""
    group_key = _fold(group)
    class_key = _fold(classification)

    fallback: ClassificationRuleDef | None = None
    for rule in rules:
        if _fold(rule.group) != group_key:
            continue
        if rule.classification is not None:
            if _fold(rule.classification) == class_key:
                return Classification(allowed=True, label=rule.label or source_label or None)
        elif fallback is None:
            fallback = rule

    if fallback is None:
        return Classification(allowed=False)
    return Classification(allowed=True, label=fallback.label or source_label or None)


# -----------------------------------------------------------------------------
# Text
# -----------------------------------------------------------------------------


def clean_text(raw: Any) -> str | None:
    """Stripped string, or None for missing/blank."""
    if raw is None:
        return None
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    s = str(raw).strip()
    return s or None


def compile_patterns(patterns: Iterable[str]) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


def matches_any(text: Any, patterns: Sequence[Pattern[str]]) -> bool:
    if text is None:
        return False
    s = str(text)
    return any(p.search(s) for p in patterns)


def to_json_safe(obj: Any) -> Any:
    """Convert raw cell values to JSON-serializable form (Decimal -> str, etc.)."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {str(k): to_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_safe(v) for v in obj]
    if isinstance(obj, (date, datetime, time)):
        return obj.isoformat()
    if isinstance(obj, float) and not math.isfinite(obj):
        return str(obj)
    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj
    return str(obj)
