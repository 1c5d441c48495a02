"""Action markers the reply model embeds in its answers.

A reply carries at most one marker. ``parse_marker`` turns it into a typed
variant; payload fields are ``None`` when the model wrote the marker without a
usable payload, and ``remainder`` is always the reply with the marker removed.
"""

import re
from dataclasses import dataclass
from enum import Enum


class MarkerKind(str, Enum):
    NONE = "none"
    CREATE = "create"
    MODIFY = "modify"
    CANCEL = "cancel"
    LIST = "list"
    FLEXIBLE = "flexible"
    FOLLOWUP = "followup"


CREATE_TOKEN = "<AGENDAMENTO_SOLICITADO>"
MODIFY_TOKEN = "<AGENDAMENTO_MODIFICAR>"
CANCEL_TOKEN = "<AGENDAMENTO_CANCELAR>"
LIST_TOKEN = "<AGENDAMENTO_LISTAR>"
FLEXIBLE_TOKEN = "<AGENDAMENTO_FLEXIVEL>"
FOLLOWUP_TOKEN = "<AGENDAMENTO_FOLLOWUP>"

_DATE = r"(\d{4}-\d{2}-\d{2})"
_TIME = r"(\d{2}:\d{2})"
_SEP = r"\s*(?:às|as|@)?\s*"

CREATE_RE = re.compile(_DATE + _SEP + _TIME, re.IGNORECASE)
CREATE_DATE_FIELD_RE = re.compile(r"Data:\s*" + _DATE, re.IGNORECASE)
CREATE_TIME_FIELD_RE = re.compile(r"Hora:\s*" + _TIME, re.IGNORECASE)
MODIFY_RE = re.compile(
    re.escape(MODIFY_TOKEN) + r"\s*Antigo:\s*" + _DATE + _SEP + _TIME + r"\s*Novo:\s*" + _DATE + _SEP + _TIME,
    re.IGNORECASE,
)
CANCEL_RE = re.compile(re.escape(CANCEL_TOKEN) + r"\s*" + _DATE + _SEP + _TIME, re.IGNORECASE)
FOLLOWUP_RE = re.compile(re.escape(FOLLOWUP_TOKEN) + r"\s*" + _TIME + r"\s*" + _DATE + r"\s*(.*)", re.IGNORECASE)
FLEXIBLE_RE = re.compile(re.escape(FLEXIBLE_TOKEN) + r"[ \t]*(.*)", re.IGNORECASE)


def _token_re(token: str) -> re.Pattern:
    return re.compile(re.escape(token), re.IGNORECASE)


def _line_re(token: str) -> re.Pattern:
    return re.compile(re.escape(token) + r"[^\n]*", re.IGNORECASE)


def _strip(pattern: re.Pattern, text: str) -> str:
    return pattern.sub("", text).strip()


@dataclass
class NoMarker:
    remainder: str
    kind: MarkerKind = MarkerKind.NONE


@dataclass
class CreateMarker:
    date: str | None
    time: str | None
    remainder: str
    kind: MarkerKind = MarkerKind.CREATE

    @property
    def is_complete(self) -> bool:
        return bool(self.date and self.time)


@dataclass
class ModifyMarker:
    old_date: str | None
    old_time: str | None
    new_date: str | None
    new_time: str | None
    remainder: str
    kind: MarkerKind = MarkerKind.MODIFY

    @property
    def is_complete(self) -> bool:
        return bool(self.old_date and self.old_time and self.new_date and self.new_time)


@dataclass
class CancelMarker:
    date: str | None
    time: str | None
    remainder: str
    kind: MarkerKind = MarkerKind.CANCEL

    @property
    def is_complete(self) -> bool:
        return bool(self.date and self.time)


@dataclass
class ListMarker:
    remainder: str
    kind: MarkerKind = MarkerKind.LIST


@dataclass
class FlexibleMarker:
    hint: str
    remainder: str
    kind: MarkerKind = MarkerKind.FLEXIBLE


@dataclass
class FollowupMarker:
    time: str | None
    date: str | None
    feedback: str | None
    remainder: str
    kind: MarkerKind = MarkerKind.FOLLOWUP

    @property
    def is_complete(self) -> bool:
        return bool(self.time and self.date)


Marker = NoMarker | CreateMarker | ModifyMarker | CancelMarker | ListMarker | FlexibleMarker | FollowupMarker


def _has(token: str, text: str) -> bool:
    return token.lower() in text.lower()


def _parse_create(text: str) -> CreateMarker:
    remainder = _strip(_token_re(CREATE_TOKEN), text)
    match = CREATE_RE.search(text)
    if match:
        return CreateMarker(date=match.group(1), time=match.group(2), remainder=remainder)
    date_field = CREATE_DATE_FIELD_RE.search(text)
    time_field = CREATE_TIME_FIELD_RE.search(text)
    return CreateMarker(
        date=date_field.group(1) if date_field else None,
        time=time_field.group(1) if time_field else None,
        remainder=remainder,
    )


def _parse_modify(text: str) -> ModifyMarker:
    remainder = _strip(_line_re(MODIFY_TOKEN), text)
    match = MODIFY_RE.search(text)
    if not match:
        return ModifyMarker(None, None, None, None, remainder=remainder)
    return ModifyMarker(*match.groups(), remainder=remainder)


def _parse_cancel(text: str) -> CancelMarker:
    remainder = _strip(_line_re(CANCEL_TOKEN), text)
    match = CANCEL_RE.search(text)
    if not match:
        return CancelMarker(None, None, remainder=remainder)
    return CancelMarker(match.group(1), match.group(2), remainder=remainder)


def _parse_followup(text: str) -> FollowupMarker:
    remainder = _strip(_line_re(FOLLOWUP_TOKEN), text)
    match = FOLLOWUP_RE.search(text)
    if not match:
        return FollowupMarker(None, None, None, remainder=remainder)
    feedback = match.group(3).strip() or None
    return FollowupMarker(match.group(1), match.group(2), feedback, remainder=remainder)


def _parse_flexible(text: str) -> FlexibleMarker:
    match = FLEXIBLE_RE.search(text)
    hint = match.group(1).strip() if match else ""
    return FlexibleMarker(hint=hint, remainder=_strip(_line_re(FLEXIBLE_TOKEN), text))


def parse_marker(text: str | None) -> Marker:
    """Detect the highest-priority marker in a reply.

    Priority: CREATE > MODIFY > CANCEL > LIST > FLEXIBLE > FOLLOWUP.
    """
    text = text or ""
    if _has(CREATE_TOKEN, text):
        return _parse_create(text)
    if _has(MODIFY_TOKEN, text):
        return _parse_modify(text)
    if _has(CANCEL_TOKEN, text):
        return _parse_cancel(text)
    if _has(LIST_TOKEN, text):
        return ListMarker(remainder=_strip(_token_re(LIST_TOKEN), text))
    if _has(FLEXIBLE_TOKEN, text):
        return _parse_flexible(text)
    if _has(FOLLOWUP_TOKEN, text):
        return _parse_followup(text)
    return NoMarker(remainder=text.strip())
