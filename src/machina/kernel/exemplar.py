"""
Exemplar Model: structural types inferred from example values.

An example like ``{"name": "Ada", "tags": ["x"]}`` stands for "a dictionary
with a string `name` and a list of strings `tags`". Three string sentinels
carry special meaning::

    "*"    any JSON-compatible value      (WILDCARD)
    "==="  any value, passed by reference (PASSTHROUGH)
    "->"   a function with a contract     (CALLABLE)
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import date
from typing import Any, Dict, List, Optional, Set, Union

from .errors import IncompatibleExemplarsError, InvalidExemplarError
from .schema import ContractDef, Exemplar, ExemplarKind, ExitDef, InputDef, render_hops

WILDCARD_SENTINEL = "*"
PASSTHROUGH_SENTINEL = "==="
LAMBDA_SENTINEL = "->"

STRING = Exemplar(kind=ExemplarKind.STRING)
NUMBER = Exemplar(kind=ExemplarKind.NUMBER)
BOOLEAN = Exemplar(kind=ExemplarKind.BOOLEAN)
WILDCARD = Exemplar(kind=ExemplarKind.WILDCARD)
PASSTHROUGH = Exemplar(kind=ExemplarKind.PASSTHROUGH)


def dictionary(fields: Optional[Dict[str, Exemplar]] = None) -> Exemplar:
    return Exemplar(kind=ExemplarKind.DICTIONARY, fields=dict(fields or {}))


def list_of(pattern: Optional[Exemplar] = None) -> Exemplar:
    return Exemplar(kind=ExemplarKind.LIST, pattern=pattern)


def callable_of(contract: Optional[ContractDef] = None) -> Exemplar:
    return Exemplar(kind=ExemplarKind.CALLABLE, contract=contract or ContractDef())


TYPECLASSES = {
    "*": WILDCARD,
    "dictionary": dictionary(),
    "array": list_of(None),
    "ref": PASSTHROUGH,
}


def from_typeclass(name: str) -> Exemplar:
    try:
        return TYPECLASSES[name]
    except KeyError:
        known = ", ".join(f"`{key}`" for key in TYPECLASSES)
        raise InvalidExemplarError(
            f"Unrecognized typeclass `{name}` (expected one of {known})."
        ) from None


def infer(example: Any, contract: Optional[ContractDef] = None) -> Exemplar:
    """Derive an exemplar from a definition-time example value."""
    return _infer(example, contract, [], set())


def _infer(
    example: Any,
    contract: Optional[ContractDef],
    hops: List[Union[str, int]],
    ancestors: Set[int],
) -> Exemplar:
    where = f" at `{render_hops(hops)}`" if hops else ""

    if isinstance(example, str):
        if example == PASSTHROUGH_SENTINEL:
            return PASSTHROUGH
        if example == WILDCARD_SENTINEL:
            return WILDCARD
        if example == LAMBDA_SENTINEL:
            return callable_of(contract if not hops else None)
        return STRING

    # bool is a subclass of int
    if isinstance(example, bool):
        return BOOLEAN

    if isinstance(example, (int, float)):
        if isinstance(example, float) and not math.isfinite(example):
            raise InvalidExemplarError(f"Non-finite number{where} cannot be used as an example.")
        return NUMBER

    if isinstance(example, (Mapping, list, tuple)):
        if id(example) in ancestors:
            raise InvalidExemplarError(f"Circular reference{where} in example.")
        ancestors = ancestors | {id(example)}

    if isinstance(example, Mapping):
        fields: Dict[str, Exemplar] = {}
        for key, value in example.items():
            if not isinstance(key, str):
                raise InvalidExemplarError(f"Dictionary keys{where} must be strings, got {key!r}.")
            fields[key] = _infer(value, None, hops + [key], ancestors)
        return dictionary(fields)

    if isinstance(example, (list, tuple)):
        if not example:
            return list_of(None)
        if len(example) > 1:
            raise InvalidExemplarError(
                f"Ambiguous list example{where}: use exactly one item to describe the pattern "
                f"(got {len(example)})."
            )
        return list_of(_infer(example[0], None, hops + [0], ancestors))

    if example is None:
        raise InvalidExemplarError(f"`None`{where} cannot be used as an example.")

    raise InvalidExemplarError(
        f"A {type(example).__name__}{where} cannot be used as an example."
    )


def infer_from_value(value: Any) -> Exemplar:
    """Derive an exemplar from a runtime value.

    Unlike infer(), sentinel strings are plain strings here, None widens
    to WILDCARD, and anything that is not JSON-shaped becomes PASSTHROUGH.
    """
    return _infer_from_value(value, set())


def _infer_from_value(value: Any, ancestors: Set[int]) -> Exemplar:
    if value is None:
        return WILDCARD
    if isinstance(value, (str, date)):
        return STRING
    if isinstance(value, bool):
        return BOOLEAN
    if isinstance(value, (int, float)):
        return NUMBER
    if isinstance(value, (Mapping, list, tuple)):
        if id(value) in ancestors:
            return PASSTHROUGH
        ancestors = ancestors | {id(value)}
        if isinstance(value, Mapping):
            return dictionary(
                {
                    key: _infer_from_value(item, ancestors)
                    for key, item in value.items()
                    if isinstance(key, str)
                }
            )
        if not value:
            return list_of(None)
        return list_of(_infer_from_value(value[0], ancestors))
    return PASSTHROUGH


def intersect(a: Exemplar, b: Exemplar) -> Exemplar:
    """The narrowest exemplar that satisfies both a and b."""
    return _intersect(a, b, [])


def _intersect(a: Exemplar, b: Exemplar, hops: List[Union[str, int]]) -> Exemplar:
    if a == b:
        return a
    if a.kind is ExemplarKind.PASSTHROUGH:
        return b
    if b.kind is ExemplarKind.PASSTHROUGH:
        return a
    if a.kind is ExemplarKind.WILDCARD and b.kind is not ExemplarKind.CALLABLE:
        return b
    if b.kind is ExemplarKind.WILDCARD and a.kind is not ExemplarKind.CALLABLE:
        return a

    if a.kind is not b.kind:
        where = f" at `{render_hops(hops)}`" if hops else ""
        raise IncompatibleExemplarsError(
            f"Cannot intersect {display_type(a, article=True)} with "
            f"{display_type(b, article=True)}{where}.",
            hops=hops,
        )

    if a.kind is ExemplarKind.DICTIONARY:
        if not a.fields:
            return b
        if not b.fields:
            return a
        merged: Dict[str, Exemplar] = {}
        for key, left in a.fields.items():
            right = b.fields.get(key)
            merged[key] = left if right is None else _intersect(left, right, hops + [key])
        for key, right in b.fields.items():
            if key not in merged:
                merged[key] = right
        return dictionary(merged)

    if a.kind is ExemplarKind.LIST:
        if a.pattern is None:
            return b
        if b.pattern is None:
            return a
        return list_of(_intersect(a.pattern, b.pattern, hops + [0]))

    # Same primitive kind, or two callables: the left side wins.
    return a


def base_value(exemplar: Exemplar) -> Any:
    """Default-for-type value used when coercion falls back."""
    kind = exemplar.kind
    if kind is ExemplarKind.STRING:
        return ""
    if kind is ExemplarKind.NUMBER:
        return 0
    if kind is ExemplarKind.BOOLEAN:
        return False
    if kind is ExemplarKind.DICTIONARY:
        return {key: base_value(sub) for key, sub in (exemplar.fields or {}).items()}
    if kind is ExemplarKind.LIST:
        return []
    return None


_DISPLAY = {
    ExemplarKind.STRING: "string",
    ExemplarKind.NUMBER: "number",
    ExemplarKind.BOOLEAN: "boolean",
    ExemplarKind.DICTIONARY: "dictionary",
    ExemplarKind.LIST: "array",
    ExemplarKind.WILDCARD: "JSON-compatible value",
    ExemplarKind.PASSTHROUGH: "reference",
    ExemplarKind.CALLABLE: "function",
}


def display_type(exemplar: Exemplar, article: bool = False) -> str:
    label = _DISPLAY[exemplar.kind]
    return with_article(label) if article else label


def with_article(label: str) -> str:
    return f"an {label}" if label[0] in "aeiou" else f"a {label}"


def declared_exemplar(definition: Union[InputDef, ExitDef]) -> Optional[Exemplar]:
    """Exemplar stated outright by an input/exit definition, if any.

    Returns None when the exemplar is only known at run time (get_example,
    like, item_of) or not at all.
    """
    if definition.exemplar is not None:
        return definition.exemplar
    if definition.example is not None:
        contract = getattr(definition, "contract", None)
        return infer(definition.example, contract)
    typeclass = getattr(definition, "typeclass", None)
    if typeclass is not None:
        return from_typeclass(typeclass)
    return None
