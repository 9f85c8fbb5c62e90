"""
Exit Multiplexer.

A machine's fn reports its outcome by calling exactly one of its exits::

    exits.success(result)
    exits["not_found"]()
    exits(err, result)        # error-first shorthand
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, Type

from .errors import UsageFault

Trigger = Callable[..., None]


def build_exit_enum(identity: str, exit_names: Iterable[str]) -> Type[Enum]:
    """Generate the str-valued Enum naming every exit of one machine."""
    words = [word for word in re.split(r"[^0-9a-zA-Z]+", identity) if word]
    class_name = "".join(word[:1].upper() + word[1:] for word in words) or "Machine"
    if class_name[0].isdigit():
        class_name = f"M{class_name}"
    return Enum(f"{class_name}Exit", [(name, name) for name in exit_names], type=str)


class Exits:
    """The object a fn receives as its second argument."""

    def __init__(self, triggers: Dict[str, Trigger]) -> None:
        self._triggers = triggers

    def __getattr__(self, name: str) -> Trigger:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._triggers[name]
        except KeyError:
            raise AttributeError(f"No exit named `{name}`.") from None

    def __getitem__(self, name: str) -> Trigger:
        return self._triggers[name]

    def __contains__(self, name: object) -> bool:
        return name in self._triggers

    def __iter__(self) -> Iterator[str]:
        return iter(self._triggers)

    def __call__(self, err: Any = None, result: Any = None) -> None:
        if err is not None:
            self._triggers["error"](err)
        else:
            self._triggers["success"](result)

    def __repr__(self) -> str:
        return f"Exits({', '.join(self._triggers)})"


def normalize_callbacks(
    callbacks: Any,
    exit_names: Iterable[str],
    identity: str = "machine",
) -> Dict[str, Callable[[Any], None]]:
    """Turn what a caller passed to exec() into a per-exit continuation table.

    A single callable is error-first ``cb(err, result)`` and becomes
    success/error continuations. A mapping must only name declared exits.
    """
    if callbacks is None:
        return {}

    if callable(callbacks):
        callback = callbacks
        return {
            "success": lambda output: callback(None, output),
            "error": lambda err: callback(err, None),
        }

    if not isinstance(callbacks, Mapping):
        raise UsageFault(
            f"Exit callbacks for `{identity}` must be a function or a mapping, "
            f"got {type(callbacks).__name__}."
        )

    known = set(exit_names)
    unknown = [name for name in callbacks if name not in known]
    if unknown:
        raise UsageFault(
            f"Unrecognized exit(s) for `{identity}`: {', '.join(sorted(unknown))}."
        )

    table: Dict[str, Callable[[Any], None]] = {}
    for name, callback in callbacks.items():
        if callback is None:
            continue
        if not callable(callback):
            raise UsageFault(f"Callback for exit `{name}` of `{identity}` is not callable.")
        table[name] = callback
    return table
