"""Per-record validators generated from an ordered list of field definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

from fieldkit.accessor_path import DYNAMIC_ROOT, try_parse_dynamic_accessor
from field_schema import FieldDefinition


Issue = Dict[str, Any]

_MESSAGES = {
    "REQUIRED_FIELD": "{label} is required",
    "TYPE_MISMATCH": "{label} has an invalid value",
    "OUT_OF_RANGE": "{label} must be at least {floor}",
    "INVALID_CHOICE": "{label} must be one of: {choices}",
    "INVALID_DATE": "{label} must be a date",
    "INVALID_TIME": "{label} must be a time (HH:MM)",
    "INVALID_EMAIL": "{label} must be an email address",
}

_TYPE_MESSAGES = {
    "NUMBER": "{label} must be a number",
    "MONEY": "{label} must be a number",
    "CHECKBOX": "{label} must be checked or unchecked",
    "MULTI_SELECT": "{label} must be a list of choices",
}


def _field_issue(definition: FieldDefinition, code: str) -> Issue:
    template = _MESSAGES.get(code, "{label} is invalid")
    if code == "TYPE_MISMATCH":
        template = _TYPE_MESSAGES.get(definition.type.value, template)
    message = template.format(
        label=definition.label,
        floor=definition.spec.floor,
        choices=", ".join(definition.choices),
    )
    return {
        "code": code,
        "message": message,
        "path": definition.name,
        "detail": {"label": definition.label, "type": definition.type.value},
    }


@dataclass(frozen=True)
class FieldRule:
    definition: FieldDefinition

    @property
    def name(self) -> str:
        return self.definition.name

    def apply(self, present: bool, raw: Any) -> tuple[Any, Issue | None]:
        """Return ``(coerced value, issue or None)`` for one field."""
        spec = self.definition.spec
        value = spec.coerce(raw) if present else spec.empty_value()
        if self.definition.required:
            if spec.is_empty(value) or not spec.satisfies_required(value):
                code = "REQUIRED_FIELD"
                # a typed value that is merely malformed deserves the specific message
                if not spec.is_empty(value):
                    code = spec.validate_value(value, self.definition) or "REQUIRED_FIELD"
                return value, _field_issue(self.definition, code)
        elif spec.is_empty(value):
            return value, None
        code = spec.validate_value(value, self.definition)
        if code:
            return value, _field_issue(self.definition, code)
        return value, None


@dataclass
class ValidationResult:
    ok: bool
    values: Dict[str, Any]
    errors: List[Issue] = field(default_factory=list)

    def errors_by_field(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for issue in self.errors:
            out.setdefault(issue["path"], issue["message"])
        return out


@dataclass
class ValidationError(Exception):
    result: ValidationResult

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return "; ".join(issue["message"] for issue in self.result.errors)


class RecordValidator:
    def __init__(self, rules: Iterable[FieldRule]) -> None:
        self._rules = list(rules)

    @property
    def rules(self) -> List[FieldRule]:
        return list(self._rules)

    def validate(self, values: Mapping[str, Any] | None) -> ValidationResult:
        """Validate values keyed by field name; every failing field is reported."""
        source = dict(values or {})
        if not self._rules:
            return ValidationResult(ok=True, values=source)
        out = dict(source)
        errors: List[Issue] = []
        for rule in self._rules:
            present = rule.name in source
            value, issue = rule.apply(present, source.get(rule.name))
            if present or rule.definition.required:
                out[rule.name] = value
            if issue:
                errors.append(issue)
        return ValidationResult(ok=not errors, values=out, errors=errors)

    def validate_dynamic_values(self, values: Mapping[str, Any] | None) -> ValidationResult:
        """Validate form values whose dynamic keys are accessor paths."""
        return self.validate(extract_dynamic_values(values))

    def check(self, values: Mapping[str, Any] | None) -> Dict[str, Any]:
        result = self.validate(values)
        if not result.ok:
            raise ValidationError(result)
        return result.values


def extract_dynamic_values(values: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Collect ``dynamicFields.<name>`` keys and a nested ``dynamicFields`` map."""
    out: Dict[str, Any] = {}
    if not values:
        return out
    nested = values.get(DYNAMIC_ROOT)
    if isinstance(nested, Mapping):
        out.update(nested)
    for key, value in values.items():
        name = try_parse_dynamic_accessor(key)
        if name is not None:
            out[name] = value
    return out


def build_validator(definitions: Iterable[FieldDefinition]) -> RecordValidator:
    return RecordValidator(FieldRule(d) for d in definitions)
