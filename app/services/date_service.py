"""Portuguese date parsing and formatting for scheduling messages.

Dates are resolved by ``dateparser``. The regexes here only find the part
of a chat message that names a day, and keep hour numbers ("às 15",
"15h") from being read as days of the month.
"""

import calendar
import re
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

import dateparser

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("date_service")

LOCAL_TZ = timezone(timedelta(hours=settings.utc_offset_hours))

MONTH_NAMES = [
    "janeiro", "fevereiro", "março", "abril", "maio", "junho",
    "julho", "agosto", "setembro", "outubro", "novembro", "dezembro",
]
MONTH_WORDS = set(MONTH_NAMES) | {name[:3] for name in MONTH_NAMES} | {"marco"}

# Python weekday order (Monday == 0)
WEEKDAY_NAMES = [
    "segunda-feira", "terça-feira", "quarta-feira", "quinta-feira",
    "sexta-feira", "sábado", "domingo",
]

_WEEKDAY_ALT = "segunda|terça|terca|quarta|quinta|sexta|sábado|sabado|domingo"

MONTH_NAME_RE = re.compile(r"\b(\d{1,2})\s+(?:de\s+)?([a-zç]+)(?:\s+(?:de\s+)?(\d{2,4}))?\b")
NUMERIC_DATE_RE = re.compile(r"\b\d{1,2}[/\-.]\d{1,2}(?:[/\-.]\d{2,4})?\b")
DAY_WORD_RE = re.compile(r"\bdia\s+(\d{1,2})\b")
NEXT_WEEKDAY_RE = re.compile(rf"\b(?:próxima|proxima|próximo|proximo)\s+((?:{_WEEKDAY_ALT})(?:-feira)?)")
WEEKDAY_RE = re.compile(rf"\b(?:{_WEEKDAY_ALT})(?:-feira)?\b")
# a number that is really an hour: "às 15", "15h", "15hs", "15 horas", "15:00"
BARE_DAY_RE = re.compile(r"(?<![\d:])(?<!às )(?<!as )(?<!@ )(?<!@)\b(\d{1,2})\b(?!\s*(?:h\b|hs\b|horas?\b|:|\d))")

# (phrase in the message, expression dateparser resolves, reference shown to the model)
DAY_PHRASES = [
    (re.compile(r"depois de amanh[ãa]"), "em 2 dias", "depois de amanhã"),
    (re.compile(r"amanh[ãa]"), "amanhã", "amanhã"),
    (re.compile(r"\bhoje\b"), "hoje", "hoje"),
]
WEEK_PHRASES = [
    (re.compile(r"pr[óo]xima semana|semana que vem"), "próxima semana", "próxima semana"),
    (re.compile(r"fim de semana|final de semana|\bfds\b"), "sábado", "fim de semana"),
]


@dataclass
class ExtractedDate:
    date: str | None = None  # YYYY-MM-DD
    reference: str | None = None
    day: int | None = None


@dataclass
class DayPeriod:
    date: str
    period: str  # morning | afternoon | any
    reference: str


def local_now(clock=time.time) -> datetime:
    return datetime.fromtimestamp(clock(), LOCAL_TZ)


def local_today(clock=time.time) -> date:
    return local_now(clock).date()


def parse_date(expression: str, today: date, prefer: str = "current_period") -> date | None:
    """Resolve a Portuguese date expression relative to ``today``.

    ``prefer="future"`` makes a bare weekday mean the next one, never today.
    """
    base = datetime(today.year, today.month, today.day, 12, 0)
    parsed = dateparser.parse(
        expression,
        languages=["pt"],
        settings={"RELATIVE_BASE": base, "PREFER_DATES_FROM": prefer, "DATE_ORDER": "DMY"},
    )
    if parsed is None:
        logger.debug(f"dateparser found no date in {expression!r}")
        return None
    return parsed.date()


def _clamped(year: int, month: int, day: int) -> date:
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last))


def _resolve_day_number(day: int, today: date) -> date:
    """Day of the current month, or next month when it already passed."""
    if day < today.day:
        year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        return _clamped(year, month, day)
    return _clamped(today.year, today.month, day)


def _from_month_name(text: str, today: date) -> ExtractedDate | None:
    for match in MONTH_NAME_RE.finditer(text):
        if match.group(2) not in MONTH_WORDS:
            continue
        found = parse_date(match.group(0), today)
        if found is None:
            continue
        return ExtractedDate(found.isoformat(), f"dia {found.day} de {match.group(2)}", found.day)
    return None


def _from_numeric(text: str, today: date) -> ExtractedDate | None:
    match = NUMERIC_DATE_RE.search(text)
    if not match:
        return None
    found = parse_date(match.group(0), today)
    if found is None:
        return None
    return ExtractedDate(found.isoformat(), f"dia {found.day}/{found.month}", found.day)


def _from_day_number(day: int, today: date) -> ExtractedDate | None:
    if not 1 <= day <= 31:
        return None
    return ExtractedDate(_resolve_day_number(day, today).isoformat(), f"dia {day}", day)


def _from_phrases(text: str, today: date, phrases) -> tuple[date, str] | None:
    for pattern, expression, reference in phrases:
        if pattern.search(text):
            found = parse_date(expression, today, prefer="future")
            if found is not None:
                return found, reference
    return None


def _next_weekday(text: str, today: date) -> date | None:
    match = WEEKDAY_RE.search(text)
    if not match:
        return None
    return parse_date(match.group(0), today, prefer="future")


def extract_date_from_message(text: str | None, today: date) -> ExtractedDate:
    """Find the first date a Portuguese message refers to.

    Checked in order: "27 de maio", "27/05", "dia 27", relative words
    (depois de amanhã, amanhã, hoje, próxima semana, fim de semana),
    "próxima sexta", a bare weekday, and finally a bare day number that is
    not an hour.
    """
    lower = (text or "").lower().strip()
    if not lower:
        return ExtractedDate()

    for finder in (_from_month_name, _from_numeric):
        found = finder(lower, today)
        if found:
            return found

    match = DAY_WORD_RE.search(lower)
    if match:
        found = _from_day_number(int(match.group(1)), today)
        if found:
            return found

    relative = _from_phrases(lower, today, DAY_PHRASES + WEEK_PHRASES)
    if relative:
        return ExtractedDate(relative[0].isoformat(), relative[1])

    match = NEXT_WEEKDAY_RE.search(lower)
    if match:
        upcoming = parse_date(match.group(1), today, prefer="future")
        if upcoming is not None:
            # "próxima sexta" skips the one coming up this week
            if (upcoming - today).days < 7:
                upcoming += timedelta(days=7)
            return ExtractedDate(upcoming.isoformat(), WEEKDAY_NAMES[upcoming.weekday()])

    upcoming = _next_weekday(lower, today)
    if upcoming is not None:
        return ExtractedDate(upcoming.isoformat(), WEEKDAY_NAMES[upcoming.weekday()])

    match = BARE_DAY_RE.search(lower)
    if match:
        found = _from_day_number(int(match.group(1)), today)
        if found:
            return found

    return ExtractedDate()


def parse_iso_date(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def format_date_human_readable(value: str | date) -> str:
    """'2025-05-27' -> 'terça-feira dia 27 de maio'. Unparseable input is returned as is."""
    parsed = value if isinstance(value, date) else parse_iso_date(value)
    if parsed is None:
        return str(value)
    return f"{WEEKDAY_NAMES[parsed.weekday()]} dia {parsed.day} de {MONTH_NAMES[parsed.month - 1]}"


def _local(value):
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(LOCAL_TZ)
    return value


def format_date_br(value: date | datetime) -> str:
    return _local(value).strftime("%d/%m/%Y")


def format_time(value: datetime) -> str:
    return _local(value).strftime("%H:%M")


def _weekday_reference(weekday: int) -> str:
    article = "no" if weekday in (5, 6) else "na"
    return f"{article} {WEEKDAY_NAMES[weekday]}"


def _parse_day(lower: str, today: date) -> tuple[date, str] | None:
    relative = _from_phrases(lower, today, DAY_PHRASES)
    if relative:
        return relative
    upcoming = _next_weekday(lower, today)
    if upcoming is not None:
        return upcoming, _weekday_reference(upcoming.weekday())
    return None


def _parse_period(lower: str) -> str | None:
    if "manhã" in lower or "manha" in lower:
        return "morning"
    if "tarde" in lower:
        return "afternoon"
    return None


def parse_day_period(text: str | None, today: date, hint: str | None = None) -> DayPeriod:
    """Day and period for a flexible availability question.

    The user's own words win; ``hint`` (the marker payload) fills the gaps.
    Without any day the answer is tomorrow.
    """
    lower = (text or "").lower()
    lower_hint = (hint or "").lower()

    day = _parse_day(lower, today) or _parse_day(lower_hint, today)
    if day is None:
        day = (today + timedelta(days=1), "amanhã")
    period = _parse_period(lower) or _parse_period(lower_hint) or "any"

    target, reference = day
    return DayPeriod(date=target.isoformat(), period=period, reference=reference)


def local_datetime(day: str, hhmm: str) -> datetime:
    """'2025-05-27', '15:00' -> 2025-05-27T15:00:00-03:00"""
    return datetime.fromisoformat(f"{day}T{hhmm}:00").replace(tzinfo=LOCAL_TZ)


def day_bounds(day: str) -> tuple[datetime, datetime]:
    start = local_datetime(day, "00:00")
    return start, start.replace(hour=23, minute=59, second=59)
