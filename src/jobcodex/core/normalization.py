"""Rule-driven normalization of free-text record values.

Grammars
--------
DATE_ISO -> ``YYYY-MM-DD``
    ``2025-03-01``, ``2025/03/01``, ``2025-03`` (day 01), ``March 2025``,
    ``Mar 3, 2025``, ``3 March 2025``, ``Q2 2025`` (first day of quarter),
    ``early Q2 2025`` / ``late Q2 2025`` (first / last month of quarter),
    ``ASAP`` / ``immediately`` / ``now`` (today), ``next month`` (first of next
    month). Calendar-invalid dates fail.

CURRENCY_RANGE -> ``{"min", "max", "currency", "unit"}``
    The first two numbers are the bounds (one number means min == max).
    Numbers accept ``,`` separators, decimals and a ``k`` suffix (x1000); a
    ``k`` on the upper bound only also scales a lower bound below 1000.
    Currency comes from ``$ € £ ¥`` or an ISO-4217 code; unit from ``/h``,
    ``per day``, ``monthly``, ``annual``, ``p.a.`` and similar. Currency and
    unit may be ``None``. ``format_currency_range`` writes
    ``"<min>-<max> <CUR> per <unit>"`` which parses back to the same tuple.

HOURS_PER_WEEK -> int in 1..80
    ``40 hours/week``, ``35h per week``, ``32 hrs a week``, ``80%`` (of 40),
    ``full-time`` (40), ``part-time`` / ``half-time`` (20).

DURATION_DAYS -> int
    ``6 months`` (x30), ``2 years`` (x365), ``10 weeks`` (x7), ``90 days``.

ALIAS_MAP -> canonical string
    Case-insensitive: exact alias, then exact canonical value, then the
    longest alias found as a whole token inside the value.

Output paths
------------
Without ``output_path`` the normalized value replaces the raw one in place.
With it, the raw value is kept and the result is written to ``output_path``
(dict results as ``<output_path>_<key>`` siblings). ``output_path`` is only
allowed on a target without ``*``; rules that combine the two are rejected
when the codex is validated.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from jobcodex.core.field_paths import iter_matches, set_value
from jobcodex.errors import NormalizationFailure
from jobcodex.types import NormalizationRule, StructuredRecord

logger = logging.getLogger(__name__)

MONTHS = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}
_MONTH_WORD = (
    r"(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?"
)

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_SLASH_DATE_RE = re.compile(r"\b(\d{4})/(\d{1,2})/(\d{1,2})\b")
_YEAR_MONTH_RE = re.compile(r"\b(\d{4})-(\d{1,2})\b")
_EARLY_LATE_QUARTER_RE = re.compile(r"\b(early|late)\s+q([1-4])[\s/-]+(\d{4})\b")
_QUARTER_RE = re.compile(r"\bq([1-4])[\s/-]+(\d{4})\b")
_MONTH_FIRST_RE = re.compile(rf"\b{_MONTH_WORD}\s+(?:(\d{{1,2}})(?:st|nd|rd|th)?,?\s+)?(\d{{4}})\b")
_DAY_FIRST_RE = re.compile(rf"\b(\d{{1,2}})(?:st|nd|rd|th)?\s+{_MONTH_WORD},?\s+(\d{{4}})\b")
_IMMEDIATE_RE = re.compile(r"\b(asap|immediate(?:ly)?)\b")

CURRENCY_SYMBOLS = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}
CURRENCY_CODES = ("USD", "EUR", "GBP", "JPY", "DKK", "SEK", "NOK", "CHF", "CAD", "AUD", "INR")
_CURRENCY_CODE_RE = re.compile(rf"\b({'|'.join(CURRENCY_CODES)})\b", re.IGNORECASE)
_NUMBER_RE = re.compile(r"(\d[\d,]*(?:\.\d+)?)(?:\s?([kK])(?![a-zA-Z]))?")
RATE_UNITS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("hour", re.compile(r"/\s*(?:hour|hr|h)\b|\bper\s+hour\b|\bhourly\b|\ban\s+hour\b")),
    ("day", re.compile(r"/\s*day\b|\bper\s+day\b|\bdaily\b|\ba\s+day\b")),
    ("week", re.compile(r"/\s*(?:week|wk)\b|\bper\s+week\b|\bweekly\b|\ba\s+week\b")),
    ("month", re.compile(r"/\s*(?:month|mo)\b|\bper\s+month\b|\bmonthly\b|\ba\s+month\b")),
    ("year", re.compile(r"/\s*(?:year|yr)\b|\bper\s+(?:year|annum)\b|\bannual(?:ly)?\b|\byearly\b|\ba\s+year\b|\bp\.a\.?")),
)

_HOURS_WEEK_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:hours?|hrs?|h)?\s*(?:/|per|a|each)?\s*(?:week|wk)\b")
_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:hours?|hrs?)\b")
_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_FULL_TIME_RE = re.compile(r"\bfull[\s-]?time\b")
_PART_TIME_RE = re.compile(r"\b(?:part|half)[\s-]?time\b")
MAX_HOURS_PER_WEEK = 80
FULL_TIME_HOURS = 40

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(days?|weeks?|wks?|months?|mos?|years?|yrs?)\b")
DURATION_MULTIPLIERS = {"d": 1, "w": 7, "m": 30, "y": 365}


@dataclass(slots=True, frozen=True)
class CurrencyRange:
    min: float
    max: float
    currency: str | None = None
    unit: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"min": self.min, "max": self.max, "currency": self.currency, "unit": self.unit}


@dataclass(slots=True)
class NormalizationReport:
    applied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def _half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _build_date(raw: str, year: int, month: int, day: int = 1) -> str:
    try:
        return date(year, month, day).isoformat()
    except ValueError as exc:
        raise NormalizationFailure(raw, "DATE_ISO", "not a calendar date") from exc


def parse_date_iso(raw: str, *, today: date | None = None) -> str:
    text = raw.strip().lower()
    today = today or date.today()

    for pattern in (_ISO_DATE_RE, _SLASH_DATE_RE):
        match = pattern.search(text)
        if match:
            year, month, day = (int(part) for part in match.groups())
            return _build_date(raw, year, month, day)

    match = _EARLY_LATE_QUARTER_RE.search(text)
    if match:
        timing, quarter, year = match.group(1), int(match.group(2)), int(match.group(3))
        month = (quarter - 1) * 3 + 1 + (2 if timing == "late" else 0)
        return _build_date(raw, year, month)

    match = _QUARTER_RE.search(text)
    if match:
        quarter, year = int(match.group(1)), int(match.group(2))
        return _build_date(raw, year, (quarter - 1) * 3 + 1)

    match = _DAY_FIRST_RE.search(text)
    if match:
        day, month_word, year = match.groups()
        return _build_date(raw, int(year), MONTHS[month_word[:3]], int(day))

    match = _MONTH_FIRST_RE.search(text)
    if match:
        month_word, day, year = match.groups()
        return _build_date(raw, int(year), MONTHS[month_word[:3]], int(day) if day else 1)

    match = _YEAR_MONTH_RE.search(text)
    if match:
        return _build_date(raw, int(match.group(1)), int(match.group(2)))

    if _IMMEDIATE_RE.search(text) or text == "now":
        return today.isoformat()

    if "next month" in text:
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        return _build_date(raw, year, month)

    raise NormalizationFailure(raw, "DATE_ISO")


def _number(token: str, suffix: str | None) -> float:
    value = float(token.replace(",", ""))
    return value * 1000 if suffix else value


def parse_currency_range(raw: str) -> CurrencyRange:
    numbers = _NUMBER_RE.findall(raw)
    if not numbers:
        raise NormalizationFailure(raw, "CURRENCY_RANGE", "no amount")

    (low_token, low_suffix), *rest = numbers
    low = _number(low_token, low_suffix)
    if rest:
        high_token, high_suffix = rest[0]
        high = _number(high_token, high_suffix)
        if high_suffix and not low_suffix and low < 1000:
            low *= 1000
    else:
        high = low
    if low > high:
        low, high = high, low

    currency = None
    for symbol, code in CURRENCY_SYMBOLS.items():
        if symbol in raw:
            currency = code
            break
    if currency is None:
        code_match = _CURRENCY_CODE_RE.search(raw)
        if code_match:
            currency = code_match.group(1).upper()

    lowered = raw.lower()
    unit = next((name for name, pattern in RATE_UNITS if pattern.search(lowered)), None)
    return CurrencyRange(min=low, max=high, currency=currency, unit=unit)


def _format_amount(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def format_currency_range(value: CurrencyRange | dict[str, Any]) -> str:
    if isinstance(value, dict):
        value = CurrencyRange(**value)
    text = f"{_format_amount(value.min)}-{_format_amount(value.max)}"
    if value.currency:
        text += f" {value.currency}"
    if value.unit:
        text += f" per {value.unit}"
    return text


def parse_hours_per_week(raw: str) -> int:
    text = raw.strip().lower()

    hours: float | None = None
    match = _HOURS_WEEK_RE.search(text) or _HOURS_RE.search(text)
    if match:
        hours = float(match.group(1))
    else:
        percent = _PERCENT_RE.search(text)
        if percent:
            hours = float(percent.group(1)) / 100 * FULL_TIME_HOURS
        elif _FULL_TIME_RE.search(text):
            hours = FULL_TIME_HOURS
        elif _PART_TIME_RE.search(text):
            hours = FULL_TIME_HOURS / 2

    if hours is None:
        raise NormalizationFailure(raw, "HOURS_PER_WEEK")

    rounded = _half_up(hours)
    if not 1 <= rounded <= MAX_HOURS_PER_WEEK:
        raise NormalizationFailure(raw, "HOURS_PER_WEEK", f"{rounded} is outside 1..{MAX_HOURS_PER_WEEK}")
    return rounded


def parse_duration_days(raw: str) -> int:
    match = _DURATION_RE.search(raw.strip().lower())
    if not match:
        raise NormalizationFailure(raw, "DURATION_DAYS")
    amount, unit = float(match.group(1)), match.group(2)
    days = _half_up(amount * DURATION_MULTIPLIERS[unit[0]])
    if days < 1:
        raise NormalizationFailure(raw, "DURATION_DAYS", "duration must be positive")
    return days


def _token_pattern(alias: str) -> re.Pattern[str]:
    return re.compile(rf"(?<![a-z0-9]){re.escape(alias)}(?![a-z0-9])")


def lookup_alias(raw: str, aliases: dict[str, str]) -> str:
    text = raw.strip().lower()
    table = {alias.strip().lower(): canonical for alias, canonical in aliases.items() if alias.strip()}

    if text in table:
        return table[text]
    for canonical in table.values():
        if canonical.lower() == text:
            return canonical
    for alias in sorted(table, key=len, reverse=True):
        if _token_pattern(alias).search(text):
            return table[alias]
    raise NormalizationFailure(raw, "ALIAS_MAP", "no alias matched")


_PARSERS: dict[str, Callable[..., Any]] = {
    "DATE_ISO": lambda raw, aliases, today: parse_date_iso(raw, today=today),
    "CURRENCY_RANGE": lambda raw, aliases, today: parse_currency_range(raw).as_dict(),
    "HOURS_PER_WEEK": lambda raw, aliases, today: parse_hours_per_week(raw),
    "DURATION_DAYS": lambda raw, aliases, today: parse_duration_days(raw),
    "ALIAS_MAP": lambda raw, aliases, today: lookup_alias(raw, aliases or {}),
}


def normalize(
    raw_value: Any,
    rule_kind: str,
    *,
    aliases: dict[str, str] | None = None,
    today: date | None = None,
) -> Any:
    parser = _PARSERS.get(rule_kind)
    if parser is None:
        raise NormalizationFailure(raw_value, rule_kind, "unknown rule kind")
    if not isinstance(raw_value, str) or not raw_value.strip():
        raise NormalizationFailure(raw_value, rule_kind, "expected non-empty text")
    return parser(raw_value, aliases, today)


def _normalize_list(values: list[Any], rule: NormalizationRule) -> list[Any]:
    mapped: list[Any] = []
    for item in values:
        if isinstance(item, str):
            try:
                item = normalize(item, rule.rule_kind, aliases=rule.aliases)
            except NormalizationFailure:
                pass
        if isinstance(item, str) and item in mapped:
            continue
        mapped.append(item)
    return mapped


def normalize_record(
    record: StructuredRecord,
    rules: list[NormalizationRule],
    *,
    today: date | None = None,
) -> NormalizationReport:
    report = NormalizationReport()
    data = record.data

    for rule in rules:
        fixed_destination = rule.output_path
        for path, value in list(iter_matches(data, rule.target_path)):
            destination = fixed_destination or path

            if isinstance(value, list) and rule.rule_kind == "ALIAS_MAP":
                set_value(data, destination, _normalize_list(value, rule))
                report.applied.append(destination)
                continue
            if not isinstance(value, str):
                continue

            try:
                result = normalize(value, rule.rule_kind, aliases=rule.aliases, today=today)
            except NormalizationFailure as exc:
                logger.debug("Normalization kept raw value path=%s reason=%s", path, exc)
                report.failed.append(path)
                continue

            if isinstance(result, dict) and fixed_destination:
                for key, part in result.items():
                    if part is not None:
                        set_value(data, f"{fixed_destination}_{key}", part)
            else:
                set_value(data, destination, result)
            report.applied.append(destination)

    return report
