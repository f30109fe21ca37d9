"""Metadata predicates evaluated against a fragment's attribute bag.

A filter spec maps a field path (dot-delimited for nested mappings, e.g.
`author.name`) to one predicate. Predicates are built up front by
`parse_filters` so evaluation never has to guess what a raw object means:

    {"category": "guide"}                 -> Equality("guide")
    {"wordCount": {"min": 100}}           -> Range(min=100)
    {"tags": {"contains": "python"}}      -> Contains("python")
    {"title": {"regex": "^Intro"}}        -> Regex("^Intro")

Evaluation is conservative: a missing path or a field of the wrong shape is
a non-match, never an exception.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

from knowledge_engine.errors import InvalidFilterError

_MISSING = object()


@dataclass(frozen=True, slots=True)
class Equality:
    value: Any

    def test(self, field_value: Any) -> bool:
        return field_value is not _MISSING and field_value == self.value


@dataclass(frozen=True, slots=True)
class Range:
    """Inclusive numeric range; either bound may be omitted."""

    min: float | None = None
    max: float | None = None

    def test(self, field_value: Any) -> bool:
        if not _is_number(field_value):
            return False
        if self.min is not None and field_value < self.min:
            return False
        if self.max is not None and field_value > self.max:
            return False
        return True


@dataclass(frozen=True, slots=True)
class Contains:
    value: Any

    def test(self, field_value: Any) -> bool:
        if not isinstance(field_value, (list, tuple, set, frozenset)):
            return False
        # Equality scan; set membership would hash an unhashable value.
        return any(item == self.value for item in field_value)


@dataclass(frozen=True, slots=True)
class Regex:
    pattern: re.Pattern[str]

    @classmethod
    def compile(cls, pattern: str) -> "Regex":
        try:
            return cls(re.compile(pattern))
        except re.error as exc:
            raise InvalidFilterError(f"Invalid regex filter {pattern!r}: {exc}") from exc

    def test(self, field_value: Any) -> bool:
        if not isinstance(field_value, str):
            return False
        return self.pattern.search(field_value) is not None


Predicate = Union[Equality, Range, Contains, Regex]
FilterSpec = dict[str, Predicate]


def parse_predicate(raw: Any) -> Predicate:
    """Turn a raw filter value into a typed predicate.

    Mappings carrying `min`/`max`, `contains` or `regex` become the matching
    structured predicate; every other value (including other mappings) is
    compared by equality.
    """

    if isinstance(raw, (Equality, Range, Contains, Regex)):
        return raw
    if isinstance(raw, Mapping):
        if "min" in raw or "max" in raw:
            low, high = raw.get("min"), raw.get("max")
            for bound in (low, high):
                if bound is not None and not _is_number(bound):
                    raise InvalidFilterError(f"Range bounds must be numeric, got {bound!r}")
            return Range(min=low, max=high)
        if "contains" in raw:
            return Contains(raw["contains"])
        if "regex" in raw:
            pattern = raw["regex"]
            if not isinstance(pattern, str):
                raise InvalidFilterError(f"Regex pattern must be a string, got {pattern!r}")
            return Regex.compile(pattern)
    return Equality(raw)


def parse_filters(raw: Mapping[str, Any] | None) -> FilterSpec:
    if not raw:
        return {}
    return {str(path): parse_predicate(value) for path, value in raw.items()}


def resolve_path(metadata: Mapping[str, Any], path: str) -> Any:
    """Walk a dot-delimited path; returns a sentinel when any segment is absent."""

    current: Any = metadata
    for segment in path.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def matches(metadata: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    """Return True when every filter predicate holds for `metadata`.

    `filters` may be a parsed `FilterSpec` or a raw mapping.
    """

    if not filters:
        return True
    for path, raw in filters.items():
        predicate = parse_predicate(raw)
        if not predicate.test(resolve_path(metadata, path)):
            return False
    return True


def available_filters() -> list[dict[str, str]]:
    """Fields commonly present on ingested fragments, with their value types."""

    return [
        {"field": "documentType", "type": "string"},
        {"field": "created", "type": "date"},
        {"field": "title", "type": "string"},
        {"field": "author", "type": "string"},
        {"field": "tags", "type": "array"},
        {"field": "category", "type": "string"},
        {"field": "wordCount", "type": "number"},
    ]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
