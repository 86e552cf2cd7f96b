"""Field type taxonomy: one table row per dynamic field type.

Every other component asks this table what "empty" means for a type, how a
raw value becomes canonical, and what a required value must look like. New
types are added here only.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict

from fieldkit.dates import is_iso_date, to_iso_date, to_time_string


class FieldType(str, Enum):
    TEXT = "TEXT"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    ADDRESS = "ADDRESS"
    LINK = "LINK"
    NUMBER = "NUMBER"
    MONEY = "MONEY"
    DATE = "DATE"
    TIME = "TIME"
    SELECT = "SELECT"
    MULTI_SELECT = "MULTI_SELECT"
    CHECKBOX = "CHECKBOX"
    IMAGE = "IMAGE"
    FILE = "FILE"


@dataclass
class UnknownFieldType(Exception):
    tag: Any

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"Unknown field type: {self.tag!r}"


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MONEY_STRIP_RE = re.compile(r"[\s,₪$€£]")
_TRUE_WORDS = {"true", "1", "yes", "y", "on", "v", "x", "✓", "כן"}
_FALSE_WORDS = {"false", "0", "no", "n", "off", "לא"}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _empty_text(value: Any) -> bool:
    return _is_blank(value)


def _empty_checkbox(value: Any) -> bool:
    return value is None or value is False


def _empty_sequence(value: Any) -> bool:
    if _is_blank(value):
        return True
    return isinstance(value, (list, tuple, set)) and len(value) == 0


def _coerce_text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _parse_number(text: str) -> int | float | None:
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _coerce_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, str):
        return value
    text = value.strip()
    if not text:
        return ""
    parsed = _parse_number(text)
    return value if parsed is None else parsed


def _coerce_money(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    text = _MONEY_STRIP_RE.sub("", value)
    if not text:
        return "" if not value.strip() else value
    parsed = _parse_number(text)
    return value if parsed is None else parsed


def _coerce_date(value: Any) -> Any:
    if _is_blank(value):
        return ""
    iso = to_iso_date(value)
    return iso if iso else value


def _coerce_time(value: Any) -> Any:
    if _is_blank(value):
        return ""
    normalized = to_time_string(value)
    return normalized if normalized else value


def _coerce_select(value: Any) -> Any:
    value = _coerce_text(value)
    return value.strip() if isinstance(value, str) else value


def _coerce_multi_select(value: Any) -> Any:
    if _is_blank(value):
        return []
    if isinstance(value, (list, tuple, set)):
        items = []
        for item in value:
            item = _coerce_select(item)
            if isinstance(item, str) and not item:
                continue
            items.append(item)
        return items
    return [_coerce_select(value)]


def _coerce_checkbox(value: Any) -> Any:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word == "":
            return False
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return value


def _required_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def _choices_check(value: Any, definition: Any) -> str | None:
    choices = tuple(getattr(definition, "choices", None) or ())
    if not isinstance(value, str):
        return "TYPE_MISMATCH"
    if choices and value not in choices:
        return "INVALID_CHOICE"
    return None


def _multi_choices_check(value: Any, definition: Any) -> str | None:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        return "TYPE_MISMATCH"
    choices = tuple(getattr(definition, "choices", None) or ())
    if choices and any(item not in choices for item in value):
        return "INVALID_CHOICE"
    return None


def _text_check(value: Any, definition: Any) -> str | None:
    return None if isinstance(value, str) else "TYPE_MISMATCH"


def _email_check(value: Any, definition: Any) -> str | None:
    if not isinstance(value, str):
        return "TYPE_MISMATCH"
    return None if _EMAIL_RE.match(value.strip()) else "INVALID_EMAIL"


def _date_check(value: Any, definition: Any) -> str | None:
    return None if is_iso_date(value) else "INVALID_DATE"


def _time_check(value: Any, definition: Any) -> str | None:
    return None if isinstance(value, str) and to_time_string(value) == value else "INVALID_TIME"


def _checkbox_check(value: Any, definition: Any) -> str | None:
    return None if isinstance(value, bool) else "TYPE_MISMATCH"


@dataclass(frozen=True)
class FieldTypeSpec:
    tag: FieldType
    column_kind: str
    is_empty: Callable[[Any], bool]
    coerce: Callable[[Any], Any]
    check: Callable[[Any, Any], "str | None"]
    required_check: Callable[[Any], bool] | None = None
    floor: float | None = None
    empty_seed: Any = ""
    is_array: bool = False
    is_date: bool = False
    is_time: bool = False
    is_money: bool = False
    is_asset: bool = False
    has_choices: bool = False

    def empty_value(self) -> Any:
        return list(self.empty_seed) if isinstance(self.empty_seed, list) else self.empty_seed

    def satisfies_floor(self, value: Any) -> bool:
        return self.floor is None or value >= self.floor

    def satisfies_required(self, value: Any) -> bool:
        if self.required_check is not None:
            return self.required_check(value)
        return _required_text(value)

    def validate_value(self, value: Any, definition: Any = None) -> str | None:
        """Error code for a non-empty value, ``None`` when it is acceptable."""
        code = self.check(value, definition)
        if code is None and self.floor is not None and not self.satisfies_floor(value):
            return "OUT_OF_RANGE"
        return code


def _number_check(value: Any, definition: Any) -> str | None:
    return None if is_number(value) else "TYPE_MISMATCH"


def _number_spec(tag: FieldType, column_kind: str, coerce: Callable[[Any], Any], floor: float | None, is_money: bool) -> FieldTypeSpec:
    def required(value: Any) -> bool:
        return is_number(value) and (floor is None or value >= floor)

    return FieldTypeSpec(
        tag=tag,
        column_kind=column_kind,
        is_empty=_empty_text,
        coerce=coerce,
        check=_number_check,
        required_check=required,
        floor=floor,
        is_money=is_money,
    )


TYPE_TABLE: Dict[FieldType, FieldTypeSpec] = {
    FieldType.TEXT: FieldTypeSpec(FieldType.TEXT, "text", _empty_text, _coerce_text, _text_check),
    FieldType.EMAIL: FieldTypeSpec(FieldType.EMAIL, "email", _empty_text, _coerce_select, _email_check),
    FieldType.PHONE: FieldTypeSpec(FieldType.PHONE, "phone", _empty_text, _coerce_select, _text_check),
    FieldType.ADDRESS: FieldTypeSpec(FieldType.ADDRESS, "address", _empty_text, _coerce_text, _text_check),
    FieldType.LINK: FieldTypeSpec(FieldType.LINK, "link", _empty_text, _coerce_select, _text_check),
    FieldType.NUMBER: _number_spec(FieldType.NUMBER, "number", _coerce_number, None, False),
    FieldType.MONEY: _number_spec(FieldType.MONEY, "money", _coerce_money, 0, True),
    FieldType.DATE: FieldTypeSpec(FieldType.DATE, "date", _empty_text, _coerce_date, _date_check, is_date=True),
    FieldType.TIME: FieldTypeSpec(FieldType.TIME, "time", _empty_text, _coerce_time, _time_check, is_time=True),
    FieldType.SELECT: FieldTypeSpec(
        FieldType.SELECT, "select", _empty_text, _coerce_select, _choices_check, has_choices=True
    ),
    FieldType.MULTI_SELECT: FieldTypeSpec(
        FieldType.MULTI_SELECT,
        "multi_select",
        _empty_sequence,
        _coerce_multi_select,
        _multi_choices_check,
        required_check=lambda value: isinstance(value, list) and len(value) > 0,
        empty_seed=[],
        is_array=True,
        has_choices=True,
    ),
    FieldType.CHECKBOX: FieldTypeSpec(
        FieldType.CHECKBOX,
        "checkbox",
        _empty_checkbox,
        _coerce_checkbox,
        _checkbox_check,
        required_check=lambda value: value is True,
        empty_seed=False,
    ),
    FieldType.IMAGE: FieldTypeSpec(FieldType.IMAGE, "image", _empty_text, _coerce_select, _text_check, is_asset=True),
    FieldType.FILE: FieldTypeSpec(FieldType.FILE, "file", _empty_text, _coerce_select, _text_check, is_asset=True),
}


def parse_field_type(tag: Any) -> FieldType:
    if isinstance(tag, FieldType):
        return tag
    if isinstance(tag, str):
        try:
            return FieldType(tag.strip().upper())
        except ValueError:
            pass
    raise UnknownFieldType(tag)


def get_type_spec(tag: Any) -> FieldTypeSpec:
    return TYPE_TABLE[parse_field_type(tag)]
