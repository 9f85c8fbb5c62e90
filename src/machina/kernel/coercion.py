"""
Coercion/Validation Engine.

Walks a value alongside its exemplar and produces a value of the right
shape. Problems are accumulated rather than raised at the first mismatch,
so one run reports every bad field.

Strict mode (inputs) turns problems into a ValidationFault. Base fallback
mode (exits) replaces each offending value with the exemplar's base value
and never fails.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from datetime import date
from pprint import pformat
from typing import Any, List, Optional, Set, Tuple, Union

from .errors import ValidationFault
from .exemplar import base_value, display_type, with_article
from .schema import Exemplar, ExemplarKind, ValidationProblem, render_hops


class _Missing:
    """Marker for an absent value (distinct from None, which is JSON null)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()

# Values that cannot survive JSON serialization are dropped from containers.
_STRIPPED = object()

_NUMERIC = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?\s*$")
_INTEGRAL = re.compile(r"^\s*[-+]?\d+\s*$")

Hops = List[Union[str, int]]


def _is_finite(value: Union[int, float]) -> bool:
    # math.isfinite() converts to float and overflows on very large ints.
    return not isinstance(value, float) or math.isfinite(value)


def describe_value(value: Any) -> str:
    """Type label for a runtime value, for use in messages."""
    if value is MISSING:
        return "nothing"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "a boolean"
    if isinstance(value, (int, float)):
        return "a number" if _is_finite(value) else f"{value!r}"
    if isinstance(value, str):
        return "a string"
    if isinstance(value, Mapping):
        return "a dictionary"
    if isinstance(value, (list, tuple)):
        return "an array"
    if callable(value):
        return "a function"
    return with_article(type(value).__name__)


def _problem_message(
    exemplar: Exemplar,
    value: Any,
    input_name: Optional[str],
    hops: Hops,
    reason: Optional[str],
) -> str:
    expected = display_type(exemplar, article=True)
    path_hops: Hops = ([input_name] if input_name else []) + list(hops)
    prefix = f"@ `{render_hops(path_hops)}`: " if path_hops else ""
    if reason:
        return f"{prefix}{reason}"
    if value is MISSING and hops:
        return f"{prefix}Missing property (expecting {expected})."
    return f"{prefix}Expecting {expected}, but got {describe_value(value)}."


class _Coercion:
    def __init__(self, allow_base_fallback: bool, input_name: Optional[str]) -> None:
        self.allow_base_fallback = allow_base_fallback
        self.input_name = input_name
        self.problems: List[ValidationProblem] = []

    def fail(self, exemplar: Exemplar, value: Any, hops: Hops, reason: Optional[str] = None) -> Any:
        if not self.allow_base_fallback:
            self.problems.append(
                ValidationProblem(
                    input=self.input_name,
                    hops=list(hops),
                    expected=display_type(exemplar),
                    actual=None if value is MISSING else value,
                    message=_problem_message(exemplar, value, self.input_name, hops, reason),
                )
            )
        return base_value(exemplar)

    def run(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        kind = exemplar.kind
        if kind is ExemplarKind.PASSTHROUGH:
            return value
        if kind is ExemplarKind.STRING:
            return self._string(value, exemplar, hops)
        if kind is ExemplarKind.NUMBER:
            return self._number(value, exemplar, hops)
        if kind is ExemplarKind.BOOLEAN:
            return self._boolean(value, exemplar, hops)
        if kind is ExemplarKind.DICTIONARY:
            return self._dictionary(value, exemplar, hops)
        if kind is ExemplarKind.LIST:
            return self._list(value, exemplar, hops)
        if kind is ExemplarKind.WILDCARD:
            return self._wildcard(value, exemplar, hops)
        if kind is ExemplarKind.CALLABLE:
            if callable(value):
                return value
            return self.fail(exemplar, value, hops)
        raise ValueError(f"Unknown exemplar kind: {kind}")

    def _string(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)) and _is_finite(value):
            try:
                return str(value)
            except ValueError:
                # int too long for str() under the interpreter's digit limit
                return self.fail(exemplar, value, hops)
        if isinstance(value, date):
            return value.isoformat()
        return self.fail(exemplar, value, hops)

    def _number(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        if isinstance(value, bool):
            return 1 if value else 0
        if isinstance(value, (int, float)):
            if _is_finite(value):
                return value
            return self.fail(exemplar, value, hops)
        if isinstance(value, str) and _NUMERIC.match(value):
            if _INTEGRAL.match(value):
                try:
                    return int(value)
                except ValueError:
                    return self.fail(exemplar, value, hops)
            parsed = float(value)
            if not math.isfinite(parsed):
                return self.fail(exemplar, value, hops)
            return int(parsed) if parsed.is_integer() else parsed
        return self.fail(exemplar, value, hops)

    def _boolean(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in ("true", "1"):
                return True
            if lowered in ("false", "0"):
                return False
        elif isinstance(value, (int, float)) and value in (0, 1):
            return value == 1
        return self.fail(exemplar, value, hops)

    def _dictionary(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        if not isinstance(value, Mapping):
            return self.fail(exemplar, value, hops)
        if not exemplar.fields:
            return self._dehydrate_root(value, exemplar, hops)
        result = {}
        for key, sub in exemplar.fields.items():
            item = value.get(key, MISSING)
            if item is MISSING and sub.kind is ExemplarKind.PASSTHROUGH:
                continue
            result[key] = self.run(item, sub, hops + [key])
        return result

    def _list(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        if not isinstance(value, (list, tuple)):
            return self.fail(exemplar, value, hops)
        if exemplar.pattern is None:
            return self._dehydrate_root(value, exemplar, hops)
        return [self.run(item, exemplar.pattern, hops + [index]) for index, item in enumerate(value)]

    def _wildcard(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        if value is MISSING:
            return self.fail(exemplar, value, hops)
        return self._dehydrate_root(value, exemplar, hops)

    def _dehydrate_root(self, value: Any, exemplar: Exemplar, hops: Hops) -> Any:
        try:
            result = _dehydrate(value, set())
        except _CircularReference:
            return self.fail(exemplar, value, hops, reason="Circular reference detected.")
        if result is _STRIPPED:
            return self.fail(exemplar, value, hops)
        return result


class _CircularReference(Exception):
    pass


def _dehydrate(value: Any, ancestors: Set[int]) -> Any:
    """Deep-copy value into plain JSON data."""
    if value is None or isinstance(value, (str, bool)):
        return value
    if isinstance(value, (int, float)):
        return value if _is_finite(value) else None
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (Mapping, list, tuple)):
        if id(value) in ancestors:
            raise _CircularReference()
        ancestors = ancestors | {id(value)}
        if isinstance(value, Mapping):
            copied = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    continue
                dehydrated = _dehydrate(item, ancestors)
                if dehydrated is not _STRIPPED:
                    copied[key] = dehydrated
            return copied
        items = (_dehydrate(item, ancestors) for item in value)
        return [item for item in items if item is not _STRIPPED]
    return _STRIPPED


def coerce_with_problems(
    value: Any,
    exemplar: Exemplar,
    allow_base_fallback: bool = False,
    input_name: Optional[str] = None,
) -> Tuple[Any, List[ValidationProblem]]:
    """Coerce value, returning the result together with every problem found."""
    coercion = _Coercion(allow_base_fallback, input_name)
    result = coercion.run(value, exemplar, [])
    return result, coercion.problems


def coerce(value: Any, exemplar: Exemplar, allow_base_fallback: bool = False) -> Any:
    """Coerce value to match exemplar, or raise ValidationFault."""
    result, problems = coerce_with_problems(value, exemplar, allow_base_fallback)
    if problems:
        raise ValidationFault(format_problems(problems), errors=problems)
    return result


def is_valid(value: Any, exemplar: Exemplar) -> bool:
    return not coerce_with_problems(value, exemplar)[1]


def format_problems(problems: List[ValidationProblem], headline: Optional[str] = None) -> str:
    count = len(problems)
    noun = "error" if count == 1 else "errors"
    head = headline or f"{count} validation {noun}"
    bullets = "\n".join(f"  • {problem.message}" for problem in problems)
    return f"{head}:\n{bullets}"


def preview(value: Any) -> str:
    """Short, multi-line rendering of a value for fault messages."""
    return pformat(value, width=60, compact=True)
