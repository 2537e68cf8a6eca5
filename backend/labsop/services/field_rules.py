"""Kind-specific handling of field defaults and validation rules."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Sequence

from .errors import InvalidConfiguration

# purpose: keep default values and validation rules consistent with the declared field kind
# status: pilot

FIELD_TYPES = ("text", "number", "date", "file", "select", "textarea", "checkbox")
_PATTERN_TYPES = {"text", "textarea"}

_NUMBER = r"-?\d+(?:\.\d+)?"
_COMPARISON_RE = re.compile(rf"^(>=|<=|>|<|=)\s*({_NUMBER})$")
_RANGE_RE = re.compile(rf"^({_NUMBER})\s*-\s*({_NUMBER})$")


@dataclass(frozen=True)
class NumericRule:
    """Closed or half-open numeric interval parsed from a rule such as ``>0`` or ``1.8-2.2``."""

    lower: float | None = None
    lower_inclusive: bool = True
    upper: float | None = None
    upper_inclusive: bool = True

    def contains(self, value: float) -> bool:
        if self.lower is not None:
            if value < self.lower or (value == self.lower and not self.lower_inclusive):
                return False
        if self.upper is not None:
            if value > self.upper or (value == self.upper and not self.upper_inclusive):
                return False
        return True


def parse_numeric_rule(rule: str) -> NumericRule:
    text = rule.strip()
    match = _COMPARISON_RE.match(text)
    if match:
        operator, raw = match.groups()
        bound = float(raw)
        if operator == ">":
            return NumericRule(lower=bound, lower_inclusive=False)
        if operator == ">=":
            return NumericRule(lower=bound)
        if operator == "<":
            return NumericRule(upper=bound, upper_inclusive=False)
        if operator == "<=":
            return NumericRule(upper=bound)
        return NumericRule(lower=bound, upper=bound)
    match = _RANGE_RE.match(text)
    if match:
        lower, upper = (float(part) for part in match.groups())
        if lower > upper:
            raise InvalidConfiguration(f"range rule '{rule}' has its lower bound above its upper bound")
        return NumericRule(lower=lower, upper=upper)
    raise InvalidConfiguration(f"'{rule}' is not a numeric rule (expected e.g. '>0' or '1.8-2.2')")


def normalize_rule(field_type: str, rule: str | None) -> str | None:
    """Return the stored form of a validation rule or raise when it does not fit the field kind."""

    if rule is None or not rule.strip():
        return None
    rule = rule.strip()
    if field_type == "number":
        parse_numeric_rule(rule)
        return rule
    if field_type in _PATTERN_TYPES:
        try:
            re.compile(rule)
        except re.error as exc:
            raise InvalidConfiguration(f"invalid pattern rule '{rule}': {exc}") from exc
        return rule
    raise InvalidConfiguration(f"validation rules are not supported for {field_type} fields")


def _coerce_number(value: Any) -> int | float:
    if isinstance(value, bool):
        raise InvalidConfiguration("number fields require a numeric default value")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError as exc:
            raise InvalidConfiguration(f"'{value}' is not a numeric default value") from exc
        return int(number) if number.is_integer() else number
    raise InvalidConfiguration("number fields require a numeric default value")


def normalize_default(field_type: str, value: Any, options: Sequence[str] = ()) -> Any:
    """Coerce a default value to the representation stored for the field kind."""

    if value is None or value == "":
        return None
    if field_type == "number":
        return _coerce_number(value)
    if field_type == "checkbox":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in {"true", "false"}:
            return value.lower() == "true"
        raise InvalidConfiguration("checkbox fields require a boolean default value")
    if field_type == "date":
        try:
            return date.fromisoformat(str(value)).isoformat()
        except ValueError as exc:
            raise InvalidConfiguration(f"'{value}' is not an ISO date") from exc
    if field_type == "select":
        if value not in options:
            raise InvalidConfiguration(f"default value '{value}' is not one of the field options")
        return value
    if field_type == "file":
        raise InvalidConfiguration("file fields cannot carry a default value")
    if not isinstance(value, str):
        raise InvalidConfiguration(f"{field_type} fields require a text default value")
    return value


def value_satisfies(field_type: str, rule: str | None, value: Any) -> bool:
    """Evaluate a captured value against a field's validation rule."""

    if rule is None or value is None:
        return True
    if field_type == "number":
        try:
            number = _coerce_number(value)
        except InvalidConfiguration:
            return False
        return parse_numeric_rule(rule).contains(float(number))
    if field_type in _PATTERN_TYPES:
        return re.fullmatch(rule, str(value)) is not None
    return True
