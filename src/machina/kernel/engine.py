"""
Machine: the built, callable form of a machine definition.

Building checks the whole definition up front (identities, exemplars,
like/item_of references, defaults, lambda contracts) so that a machine
which builds is a machine that can run. Each call then hands out a fresh
LiveMachine to configure and execute.

Example:
    add = build({
        "friendly_name": "Add",
        "sync": True,
        "inputs": {"a": {"example": 1, "required": True},
                   "b": {"example": 1, "required": True}},
        "exits": {"success": {"example": 2}},
        "fn": lambda inputs, exits: exits.success(inputs["a"] + inputs["b"]),
    })
    add(a=2, b=3).exec_sync()   # -> 5
"""

from __future__ import annotations

import copy
import inspect
import keyword
import re
from collections.abc import Mapping
from enum import Enum
from typing import Any, Callable, Dict, Optional, Type, Union

from .coercion import coerce_with_problems, format_problems
from .errors import ImplementationError, UsageFault
from .exemplar import PASSTHROUGH, callable_of, declared_exemplar
from .exits import build_exit_enum
from .lambdas import borrowed_exemplar, build_lambda_definition, resolve_contract
from .schema import Exemplar, ExemplarKind, ExitDef, InputDef, MachineDefinition
from .settings import MachineSettings, get_settings
from .vm import LiveMachine

DefinitionLike = Union[MachineDefinition, Mapping, Callable[..., Any]]

_INPUT_DETERMINERS = ("example", "typeclass", "exemplar", "get_example")
_EXIT_DETERMINERS = ("example", "exemplar", "like", "item_of", "get_example")


class ArginStyle(str, Enum):
    """How a built machine takes its argins when called."""

    NAMED = "named"
    SERIAL = "serial"


class ExecStyle(str, Enum):
    """What calling a built machine returns."""

    DEFERRED = "deferred"
    IMMEDIATE = "immediate"
    NATURAL = "natural"


def kebab_case(name: str) -> str:
    spaced = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "-", name.strip())
    return re.sub(r"[^0-9a-zA-Z]+", "-", spaced).strip("-").lower()


def _check_code_name(name: str, what: str, identity: str) -> None:
    if not name.isidentifier() or keyword.iskeyword(name) or name.startswith("_"):
        raise ImplementationError(
            f"`{name}` is not a usable {what} name for `{identity}` "
            f"(use a Python identifier that does not start with an underscore)."
        )


def _usage_option(enum: Type[Enum], value: Any, option: str, identity: str) -> Any:
    try:
        return enum(value)
    except ValueError:
        choices = ", ".join(repr(member.value) for member in enum)
        raise ImplementationError(
            f"Cannot build `{identity}`: `{option}` must be one of {choices}, got {value!r}."
        ) from None

def to_definition(definition: DefinitionLike) -> MachineDefinition:
    if isinstance(definition, MachineDefinition):
        return definition
    if isinstance(definition, Mapping):
        return MachineDefinition.model_validate(dict(definition))
    if callable(definition):
        return MachineDefinition(fn=definition)
    raise ImplementationError(
        f"Cannot build a machine from {type(definition).__name__}."
    )


def normalize_definition(definition: MachineDefinition) -> MachineDefinition:
    """Fill in the identity and the implicit success/error exits."""
    identity = definition.identity
    if not identity and definition.friendly_name:
        identity = kebab_case(definition.friendly_name)
    if not identity:
        fn_name = getattr(definition.fn, "__name__", "")
        if fn_name and fn_name != "<lambda>":
            identity = kebab_case(fn_name)
    if not identity:
        raise ImplementationError(
            "Could not infer an identity for this machine: "
            "provide `identity` or `friendly_name`."
        )

    if definition.sync and inspect.iscoroutinefunction(definition.fn):
        raise ImplementationError(
            f"`{identity}` declares sync=True but its fn is a coroutine function."
        )

    exits: Dict[str, ExitDef] = {
        "success": definition.exits.get("success") or ExitDef(),
        "error": definition.exits.get("error") or ExitDef(),
    }
    for name, exit_def in definition.exits.items():
        exits.setdefault(name, exit_def)

    return definition.model_copy(update={"identity": identity, "exits": exits})


class Machine:
    """A built machine. Call it with argins to get a LiveMachine."""

    def __init__(
        self,
        definition: DefinitionLike,
        settings: Optional[MachineSettings] = None,
        resolver: Any = None,
        depth: int = 0,
        argin_style: Union[ArginStyle, str] = ArginStyle.NAMED,
        exec_style: Union[ExecStyle, str] = ExecStyle.DEFERRED,
    ) -> None:
        self.definition = normalize_definition(to_definition(definition))
        self.settings = settings or get_settings()
        self.resolver = resolver
        self.depth = depth
        self.argin_style = _usage_option(ArginStyle, argin_style, "argin_style", self.identity)
        self.exec_style = _usage_option(ExecStyle, exec_style, "exec_style", self.identity)
        # Static exemplars; None where only known at run time.
        self.input_exemplars: Dict[str, Optional[Exemplar]] = {}
        self.exit_exemplars: Dict[str, Optional[Exemplar]] = {}
        self.lambda_prototypes: Dict[str, Machine] = {}
        self._compile()
        self.exit_enum: Type[Enum] = build_exit_enum(self.identity, self.definition.exits)

    # -------------------------------------------------------------------------
    # Build-time checks
    # -------------------------------------------------------------------------

    def _compile(self) -> None:
        identity = self.identity
        scope: Dict[str, Optional[Exemplar]] = {}

        for name, input_def in self.definition.inputs.items():
            _check_code_name(name, "input", identity)
            if input_def.like is not None or input_def.item_of is not None:
                raise ImplementationError(
                    f"Input `{name}` of `{identity}` uses `like`/`item_of`, which is only "
                    f"supported inside a function contract's `provides`."
                )
            determiners = [field for field in _INPUT_DETERMINERS if getattr(input_def, field) is not None]
            if len(determiners) > 1:
                raise ImplementationError(
                    f"Input `{name}` of `{identity}` is ambiguous: it declares "
                    f"{' and '.join(determiners)}."
                )
            if not determiners and input_def.validate_fn is None:
                raise ImplementationError(
                    f"Input `{name}` of `{identity}` must declare an `example`, a `typeclass`, "
                    f"a `get_example` or a `validate` function."
                )

            exemplar = self._declared(input_def, f"Input `{name}`")
            if input_def.contract is not None and (
                exemplar is None or exemplar.kind is not ExemplarKind.CALLABLE
            ):
                raise ImplementationError(
                    f"Input `{name}` of `{identity}` declares a contract, but its example is not `\"->\"`."
                )
            scope[name] = exemplar
            if exemplar is None and input_def.get_example is None:
                exemplar = PASSTHROUGH
            self.input_exemplars[name] = exemplar

        for name, exemplar in list(self.input_exemplars.items()):
            if exemplar is not None and exemplar.kind is ExemplarKind.CALLABLE:
                contract = resolve_contract(exemplar.contract, scope, identity, name)
                self.input_exemplars[name] = callable_of(contract)
                self.lambda_prototypes[name] = type(self)(
                    build_lambda_definition(contract, name, identity),
                    settings=self.settings,
                    resolver=self.resolver,
                )
            self._check_default(name, self.definition.inputs[name])

        for name, exit_def in self.definition.exits.items():
            _check_code_name(name, "exit", identity)
            determiners = [field for field in _EXIT_DETERMINERS if getattr(exit_def, field) is not None]
            if len(determiners) > 1:
                raise ImplementationError(
                    f"Exit `{name}` of `{identity}` is ambiguous: it declares "
                    f"{' and '.join(determiners)}."
                )
            borrowed = borrowed_exemplar(exit_def, f"Exit `{name}`", scope, identity)
            self.exit_exemplars[name] = borrowed or self._declared(exit_def, f"Exit `{name}`")

    def _declared(self, definition: Union[InputDef, ExitDef], owner: str) -> Optional[Exemplar]:
        try:
            return declared_exemplar(definition)
        except ImplementationError as exc:
            raise type(exc)(f"{owner} of `{self.identity}`: {exc}") from exc

    def _check_default(self, name: str, input_def: InputDef) -> None:
        default = input_def.defaults_to
        exemplar = self.input_exemplars[name]
        if default is None or input_def.required or exemplar is None:
            return
        if exemplar.kind is ExemplarKind.CALLABLE:
            if not callable(default):
                raise ImplementationError(
                    f"Default for input `{name}` of `{self.identity}` must be a function."
                )
            return
        _, problems = coerce_with_problems(default, exemplar, input_name=name)
        if problems:
            raise ImplementationError(
                format_problems(
                    problems,
                    headline=f"Default for input `{name}` of `{self.identity}` does not match its example",
                )
            )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def identity(self) -> str:
        return self.definition.identity or ""

    @property
    def sync(self) -> bool:
        return self.definition.sync

    @property
    def inputs(self) -> Dict[str, InputDef]:
        return self.definition.inputs

    @property
    def exits(self) -> Dict[str, ExitDef]:
        return self.definition.exits

    @property
    def max_recursion(self) -> int:
        if self.definition.max_recursion is not None:
            return self.definition.max_recursion
        return self.settings.max_recursion

    # -------------------------------------------------------------------------
    # Derived machines
    # -------------------------------------------------------------------------

    def at_depth(self, depth: int) -> "Machine":
        """Same machine, instances of which run at the given nesting depth."""
        clone = copy.copy(self)
        clone.depth = depth
        return clone

    def with_fn(self, fn: Callable[..., Any], depth: Optional[int] = None) -> "Machine":
        clone = copy.copy(self)
        clone.definition = self.definition.model_copy(update={"fn": fn})
        if depth is not None:
            clone.depth = depth
        return clone

    def customize(
        self,
        argin_style: Union[ArginStyle, str, None] = None,
        exec_style: Union[ExecStyle, str, None] = None,
    ) -> "Machine":
        """Same machine with a different calling convention."""
        clone = copy.copy(self)
        if argin_style is not None:
            clone.argin_style = _usage_option(ArginStyle, argin_style, "argin_style", self.identity)
        if exec_style is not None:
            clone.exec_style = _usage_option(ExecStyle, exec_style, "exec_style", self.identity)
        return clone

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    def configure(
        self,
        argins: Optional[Mapping] = None,
        exits: Any = None,
        env: Optional[Mapping] = None,
    ) -> LiveMachine:
        return LiveMachine(self, depth=self.depth).configure(argins, exits, env)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        """Configure a fresh LiveMachine.

        With the default exec_style the instance itself comes back. With
        ``immediate`` a sync machine is run with exec_sync() and anything
        else returns the awaitable from run(); ``natural`` runs only sync
        machines right away.
        """
        if self.argin_style is ArginStyle.SERIAL:
            argins = self._serial_argins(args, kwargs)
        else:
            argins = self._named_argins(args, kwargs)
        instance = self.configure(argins)

        if self.exec_style is ExecStyle.DEFERRED:
            return instance
        if self.sync:
            return instance.exec_sync()
        if self.exec_style is ExecStyle.IMMEDIATE:
            return instance.run()
        return instance

    def _named_argins(self, args: tuple, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        if len(args) > 1:
            raise UsageFault(
                f"`{self.identity}` takes its argins as one mapping or as keywords, "
                f"not {len(args)} positional arguments."
            )
        merged: Dict[str, Any] = {}
        if args and args[0] is not None:
            if not isinstance(args[0], Mapping):
                raise UsageFault(
                    f"Argins for `{self.identity}` must be a mapping, got {type(args[0]).__name__}."
                )
            merged.update(args[0])
        merged.update(kwargs)
        return merged

    def _serial_argins(self, args: tuple, kwargs: Dict[str, Any]) -> Dict[str, Any]:
        # Positional argins follow the order inputs were declared in.
        names = list(self.inputs)
        if len(args) > len(names):
            raise UsageFault(
                f"`{self.identity}` takes at most {len(names)} serial argument(s) "
                f"({', '.join(names) or 'none'}), got {len(args)}."
            )
        argins = dict(zip(names, args))
        overlap = sorted(set(argins) & set(kwargs))
        if overlap:
            raise UsageFault(f"`{self.identity}` got {', '.join(overlap)} both by position and by keyword.")
        argins.update(kwargs)
        return argins

    def exec(self, callbacks: Any = None) -> None:
        self.configure().exec(callbacks)

    def exec_sync(self) -> Any:
        return self.configure().exec_sync()

    def __repr__(self) -> str:
        return f"<Machine {self.identity} inputs={list(self.inputs)} exits={list(self.exits)}>"


def build(
    definition: DefinitionLike,
    *,
    settings: Optional[MachineSettings] = None,
    resolver: Any = None,
    argin_style: Union[ArginStyle, str] = ArginStyle.NAMED,
    exec_style: Union[ExecStyle, str] = ExecStyle.DEFERRED,
) -> Machine:
    """Build a Machine from a definition, a mapping, or a bare function."""
    return Machine(
        definition,
        settings=settings,
        resolver=resolver,
        argin_style=argin_style,
        exec_style=exec_style,
    )


def build_with_custom_usage(
    definition: DefinitionLike,
    argin_style: Union[ArginStyle, str] = ArginStyle.NAMED,
    exec_style: Union[ExecStyle, str] = ExecStyle.DEFERRED,
    **options: Any,
) -> Machine:
    """build() for function-like usage, e.g. ``add(2, 3)`` returning 5::

        add = build_with_custom_usage(definition, argin_style="serial", exec_style="natural")
    """
    return build(definition, argin_style=argin_style, exec_style=exec_style, **options)


def define(**fields: Any) -> Callable[[Callable[..., Any]], Machine]:
    """Decorator form of build()::

        @define(sync=True, inputs={"name": {"example": "Ada"}})
        def greet(inputs, exits):
            exits.success(f"Hello, {inputs['name']}")
    """

    build_options = ("settings", "resolver", "argin_style", "exec_style")
    options = {key: fields.pop(key) for key in build_options if key in fields}

    def decorate(fn: Callable[..., Any]) -> Machine:
        return build(MachineDefinition.model_validate({**fields, "fn": fn}), **options)

    return decorate
