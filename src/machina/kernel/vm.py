"""
LiveMachine: one configured execution of a Machine.

Lifecycle::

    CONFIGURED --exec()--> RUNNING --exit fires--> EXITED --delivered--> DELIVERED

A LiveMachine runs at most once. On exec() it checks the recursion
ceiling, validates and coerces argins, binds lambda inputs, consults the
exit cache and finally calls the machine's fn with an Exits object. The
first exit that fires wins; its payload is coerced against that exit's
effective exemplar and handed to the caller's continuation. An exit that
fires before fn has returned waits on the instance's own scheduler tick,
which runs once fn is done, so continuations never run inside fn.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Type

from .cache import DEFAULT_TTL, CacheSettings, hash_argins
from .coercion import MISSING, coerce_with_problems, format_problems, preview
from .errors import (
    ExitFault,
    ImplementationError,
    InconsistentMachineFault,
    IncompatibleExemplarsError,
    MachineError,
    MaxRecursionFault,
    NoErrorCallbackFault,
    RuntimeValidationFault,
    UnexpectedErrorFault,
    UsageFault,
)
from .exemplar import display_type, infer, infer_from_value, intersect
from .exits import Exits, normalize_callbacks
from .lambdas import build_lambda_machine
from .provenance import Omen, customize_omen_or_build
from .scheduler import get_scheduler
from .schema import Environment, Exemplar, ExemplarKind, InstanceStatus, ValidationProblem
from .settings import ExtraArginsTactic

if TYPE_CHECKING:
    from .engine import Machine

logger = logging.getLogger(__name__)


@dataclass
class Outcome:
    """The single terminal result of a LiveMachine."""

    exit: Enum
    output: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"exit": self.exit.value, "output": self.output}


@dataclass
class Negotiation:
    """An error-side rule added with tolerate() or intercept().

    ``rule`` is an error code (which, for a forwarded misc exit, is the
    exit's name), an exception class, or a predicate over the error.
    """

    kind: str
    rule: Any
    handler: Optional[Callable[[BaseException], Any]] = None

    def matches(self, err: BaseException) -> bool:
        if isinstance(self.rule, str):
            return getattr(err, "code", None) == self.rule
        if isinstance(self.rule, type):
            return isinstance(err, self.rule)
        return bool(self.rule(err))


def _ignore(output: Any) -> None:
    pass


def _positional_arity(fn: Callable[..., Any]) -> int:
    """How many of (inputs, exits, env) fn can take."""
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return 3
    count = 0
    for param in signature.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return 3
        if param.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            count += 1
    return min(count, 3)


class LiveMachine:
    def __init__(self, machine: "Machine", depth: int = 0) -> None:
        self.machine = machine
        self.definition = machine.definition
        self.depth = depth
        self.status = InstanceStatus.CONFIGURED
        self.outcome: Optional[Outcome] = None
        self.ms_elapsed: Optional[float] = None

        self._argins: Dict[str, Any] = {}
        self._callbacks: Dict[str, Callable[[Any], None]] = {}
        self._ambient: Dict[str, Any] = {}
        self._output_sink: Optional[Callable[[str], None]] = None
        self._on_invoke: Optional[Callable[["LiveMachine"], None]] = None
        self._cache: Optional[CacheSettings] = None
        self._negotiations: List[Negotiation] = []

        # Set when exec starts
        self._inputs: Dict[str, Any] = {}
        self._env: Optional[Environment] = None
        self._scheduler: Any = None
        self._omen: Optional[Omen] = None
        self._running_sync = False
        self._fn_returned = False
        self._exited: Optional[str] = None
        self._abandoned = False
        self._started_at: Optional[float] = None
        self._cache_key: Optional[str] = None
        self._from_cache = False

    @property
    def identity(self) -> str:
        return self.machine.identity

    @property
    def exit_enum(self) -> Type[Enum]:
        return self.machine.exit_enum

    def __repr__(self) -> str:
        return f"<LiveMachine {self.identity} depth={self.depth} status={self.status.value}>"

    # =========================================================================
    # Configuration
    # =========================================================================

    def _ensure_configurable(self, action: str, omen: Optional[Omen] = None) -> None:
        if self.status is not InstanceStatus.CONFIGURED:
            raise customize_omen_or_build(
                UsageFault,
                f"Cannot {action} `{self.identity}`: this instance has already been executed. "
                f"Call the machine again to get a fresh instance.",
                omen,
            )

    def configure(
        self,
        argins: Optional[Mapping] = None,
        exits: Any = None,
        env: Optional[Mapping] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> "LiveMachine":
        self._ensure_configurable("configure")
        if argins is not None:
            self.set_argins(argins)
        if exits is not None:
            self.set_callbacks(exits)
        if env is not None:
            self.set_env(env)
        if output_sink is not None:
            self._output_sink = output_sink
        return self

    def set_argins(self, argins: Mapping) -> "LiveMachine":
        self._ensure_configurable("configure argins for")
        if not isinstance(argins, Mapping):
            raise UsageFault(
                f"Argins for `{self.identity}` must be a mapping, got {type(argins).__name__}."
            )
        declared = self.definition.inputs
        extras = sorted(name for name in argins if name not in declared)
        if extras:
            tactic = self.machine.settings.extra_argins
            message = (
                f"Unrecognized argin(s) for `{self.identity}`: {', '.join(extras)} "
                f"(expected some of: {', '.join(declared) or 'nothing'})."
            )
            if tactic is ExtraArginsTactic.ERROR:
                raise UsageFault(message)
            if tactic is ExtraArginsTactic.WARN:
                logger.warning(message)
        # Shallow merge: values are held by reference until validation.
        for name, value in argins.items():
            if value is None:
                self._argins.pop(name, None)
            else:
                self._argins[name] = value
        return self

    def set_callbacks(self, callbacks: Any) -> "LiveMachine":
        self._ensure_configurable("configure exits for")
        self._callbacks.update(normalize_callbacks(callbacks, self.definition.exits, self.identity))
        return self

    def set_env(self, env: Mapping) -> "LiveMachine":
        self._ensure_configurable("configure env for")
        self._ambient.update(env)
        return self

    def cache(
        self,
        store: Any,
        ttl: timedelta = DEFAULT_TTL,
        exit: str = "success",
        max_old_entries: int = 0,
    ) -> "LiveMachine":
        self._ensure_configurable("configure the cache for")
        if exit not in self.definition.exits:
            raise UsageFault(f"Cannot cache `{self.identity}` on unknown exit `{exit}`.")
        self._cache = CacheSettings(store=store, ttl=ttl, exit=exit, max_old_entries=max_old_entries)
        return self

    def tolerate(
        self,
        rule: Any,
        handler: Optional[Callable[[BaseException], Any]] = None,
    ) -> "LiveMachine":
        """Send matching errors to the success side instead.

        The handler's return value (None without a handler) becomes the
        success output. Only the first matching rule applies.
        """
        self._add_negotiation("tolerate", rule, handler)
        return self

    def intercept(self, rule: Any, handler: Callable[[BaseException], Any]) -> "LiveMachine":
        """Replace matching errors with what the handler returns or raises."""
        if not callable(handler):
            raise UsageFault(f"intercept() on `{self.identity}` needs a handler function.")
        self._add_negotiation("intercept", rule, handler)
        return self

    def _add_negotiation(
        self, kind: str, rule: Any, handler: Optional[Callable[[BaseException], Any]]
    ) -> None:
        self._ensure_configurable(f"{kind} errors of")
        if not (isinstance(rule, str) or callable(rule)):
            raise UsageFault(
                f"Invalid {kind}() rule for `{self.identity}`: expected an error code, "
                f"an exception class or a predicate, got {preview(rule)}."
            )
        if handler is not None and not callable(handler):
            raise UsageFault(f"The {kind}() handler for `{self.identity}` must be callable.")
        self._negotiations.append(Negotiation(kind=kind, rule=rule, handler=handler))

    def on_invoke(self, hook: Callable[["LiveMachine"], None]) -> "LiveMachine":
        self._on_invoke = hook
        return self

    # =========================================================================
    # Execution entry points
    # =========================================================================

    def exec(self, callbacks: Any = None) -> None:
        omen = Omen.capture()
        self._ensure_configurable("exec", omen)
        if callbacks is not None:
            self.set_callbacks(callbacks)
        if "error" not in self._callbacks:
            raise customize_omen_or_build(
                NoErrorCallbackFault,
                f"Cannot exec `{self.identity}` without an `error` callback. "
                f"Pass an error-first callback or a mapping that includes `error`.",
                omen,
            )
        with get_scheduler().session() as tick:
            self._start(tick, omen)

    def exec_sync(self) -> Any:
        """Run inline and return the success output, or raise what the error side got."""
        omen = Omen.capture()
        if not self.definition.sync:
            raise customize_omen_or_build(
                UsageFault,
                f"Cannot use exec_sync() with `{self.identity}` because it is not declared "
                f"sync=True. Use exec() or await run() instead.",
                omen,
            )
        self._ensure_configurable("exec", omen)

        record: Dict[str, Any] = {}
        self._callbacks = {
            "success": lambda output: record.update(exit="success", output=output),
            "error": lambda err: record.update(exit="error", output=err),
        }
        self._running_sync = True
        # Whatever an abandoned instance deferred is discarded with the session.
        with get_scheduler().session() as tick:
            self._start(tick, omen)
            if not record:
                self._abandoned = True
                raise InconsistentMachineFault(
                    f"`{self.identity}` is declared sync=True, but its fn returned without "
                    f"triggering any exit. Exits of a sync machine must be called before fn returns."
                )

        if record["exit"] == "success":
            return record["output"]
        err = record["output"]
        if isinstance(err, BaseException):
            raise err
        raise UnexpectedErrorFault(f"`{self.identity}` failed with:\n{preview(err)}", output=err)

    def demux_sync(self, exit_name: str = "success") -> bool:
        """Run inline and report whether `exit_name` was the exit taken."""
        if exit_name not in self.definition.exits:
            raise UsageFault(f"`{self.identity}` has no exit named `{exit_name}`.")
        try:
            self.exec_sync()
        except (UsageFault, InconsistentMachineFault):
            raise
        except Exception:
            # Any other exit surfaces as an exception here; the answer is in _exited.
            pass
        return self._exited == exit_name

    async def run(self) -> Any:
        """Await the success output; the error side is raised."""
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Any]" = loop.create_future()

        def on_success(output: Any) -> None:
            if not future.done():
                future.set_result(output)

        def on_error(err: Any) -> None:
            if not future.done():
                future.set_exception(err)

        self.exec({"success": on_success, "error": on_error})
        return await future

    # =========================================================================
    # Run
    # =========================================================================

    def _fault(self, fault_cls: Type[MachineError], message: str, **attrs: Any) -> MachineError:
        """Build a fault pinned to the caller's exec() line, the first time around."""
        omen = self._omen if self._omen is not None and not self._omen.consumed else None
        return customize_omen_or_build(fault_cls, message, omen, **attrs)

    def _stack_exhausted(self, exc: RecursionError) -> MaxRecursionFault:
        """The interpreter ran out of stack before the recursion ceiling was reached."""
        # Built without the omen: there is little stack left to spend here.
        limit = self.machine.max_recursion
        fault = MaxRecursionFault(
            f"`{self.identity}` ran out of interpreter stack at depth {self.depth}, "
            f"before reaching its recursion limit of {limit}.",
            depth=self.depth,
            limit=limit,
        )
        fault.__cause__ = exc
        return fault

    def _start(self, scheduler: Any, omen: Omen) -> None:
        self.status = InstanceStatus.RUNNING
        self._scheduler = scheduler
        self._omen = omen
        if self.machine.settings.track_duration:
            self._started_at = time.perf_counter()
        logger.debug("machine:%s exec depth=%d", self.identity, self.depth)

        self._triggers = {name: partial(self._trigger, name) for name in self.definition.exits}
        self._env = Environment(
            depth=self.depth,
            ambient=dict(self._ambient),
            machine=self.machine.at_depth(self.depth),
            resolver=self.machine.resolver,
            scheduler=scheduler,
            output_sink=self._output_sink,
        )

        limit = self.machine.max_recursion
        if self.depth > limit:
            self._trigger(
                "error",
                self._fault(
                    MaxRecursionFault,
                    f"`{self.identity}` exceeded the maximum recursion depth of {limit}.",
                    depth=self.depth,
                    limit=limit,
                ),
            )
            return

        inputs, problems = self._prepare_inputs()
        if problems:
            count = len(problems)
            self._trigger(
                "error",
                self._fault(
                    RuntimeValidationFault,
                    format_problems(
                        problems,
                        headline=(
                            f"Could not run `{self.identity}` due to {count} "
                            f"validation error{'' if count == 1 else 's'}"
                        ),
                    ),
                    errors=problems,
                    machine_instance=self,
                ),
            )
            return
        self._inputs = inputs

        if self._cache is not None and self._serve_from_cache():
            return

        self._run_fn()

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    def _prepare_inputs(self) -> "tuple[Dict[str, Any], List[ValidationProblem]]":
        unsafe = self.machine.settings.unsafe
        inputs: Dict[str, Any] = {}
        problems: List[ValidationProblem] = []

        for name, input_def in self.definition.inputs.items():
            value = self._argins.get(name, MISSING)
            static = self.machine.input_exemplars.get(name)

            if value is MISSING:
                if input_def.required:
                    if not unsafe:
                        problems.append(
                            ValidationProblem(
                                input=name,
                                expected=display_type(static) if static else "value",
                                message=f"Missing required input `{name}`.",
                            )
                        )
                    continue
                if input_def.defaults_to is None:
                    continue
                default = input_def.defaults_to
                value = default if callable(default) else copy.deepcopy(default)

            if static is not None and static.kind is ExemplarKind.CALLABLE:
                try:
                    inputs[name] = build_lambda_machine(
                        value, self.machine.lambda_prototypes[name], self.depth + 1
                    )
                except ImplementationError as exc:
                    problems.append(
                        ValidationProblem(
                            input=name, expected="function", actual=value, message=f"@ `{name}`: {exc}"
                        )
                    )
                continue

            if unsafe:
                inputs[name] = value
                continue

            exemplar = static
            if input_def.get_example is not None:
                exemplar = self._runtime_input_exemplar(name, input_def.get_example, problems)
                if exemplar is None:
                    continue

            coerced, found = coerce_with_problems(value, exemplar, input_name=name)
            if found:
                problems.extend(found)
                continue

            if input_def.validate_fn is not None and not self._passes_custom_validation(
                name, input_def.validate_fn, coerced, problems
            ):
                continue

            if coerced is not MISSING:
                inputs[name] = coerced

        return inputs, problems

    def _runtime_input_exemplar(
        self, name: str, get_example: Callable[..., Any], problems: List[ValidationProblem]
    ) -> Optional[Exemplar]:
        try:
            example = get_example(copy.deepcopy(self._argins), self._env)
            return infer(example)
        except Exception as exc:
            problems.append(
                ValidationProblem(
                    input=name,
                    expected="value",
                    message=f"@ `{name}`: Could not determine an example at run time ({exc}).",
                )
            )
            return None

    def _passes_custom_validation(
        self, name: str, validate: Callable[[Any], Any], value: Any, problems: List[ValidationProblem]
    ) -> bool:
        try:
            ok = validate(value)
            reason = "failed custom validation"
        except Exception as exc:
            ok = False
            reason = f"failed custom validation ({exc})"
        if not ok:
            problems.append(
                ValidationProblem(
                    input=name, expected="valid value", actual=value, message=f"@ `{name}`: Value {reason}."
                )
            )
        return bool(ok)

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def _serve_from_cache(self) -> bool:
        settings = self._cache
        try:
            self._cache_key = hash_argins(self.identity, self._inputs)
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping cache for `%s`: argins cannot be hashed (%s).", self.identity, exc)
            return False

        store = settings.store
        expiration = store.now() - settings.ttl
        try:
            store.purge(self._cache_key, older_than=expiration, keep=settings.max_old_entries)
            entry = store.find(self._cache_key, newer_than=expiration)
        except Exception:
            logger.warning("Cache lookup failed for `%s`; running it instead.", self.identity, exc_info=True)
            return False
        if entry is None:
            return False

        logger.debug("machine:%s cache hit %s", self.identity, self._cache_key[:12])
        self._from_cache = True
        self._trigger(settings.exit, copy.deepcopy(entry.data))
        return True

    def _store_in_cache(self, output: Any) -> None:
        try:
            self._cache.store.create(self._cache_key, output)
        except Exception:
            logger.warning("Could not cache output of `%s`.", self.identity, exc_info=True)

    # -------------------------------------------------------------------------
    # fn
    # -------------------------------------------------------------------------

    def _run_fn(self) -> None:
        fn = self.definition.fn
        args = (self._inputs, Exits(self._triggers), self._env)[: _positional_arity(fn)]

        if inspect.iscoroutinefunction(fn):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._fn_returned = True
                self._trigger(
                    "error",
                    self._fault(
                        UsageFault,
                        f"`{self.identity}` has an async fn and needs a running event loop: "
                        f"use `await instance.run()`.",
                    ),
                )
                return
            task = loop.create_task(fn(*args))
            task.add_done_callback(self._on_task_done)
            self._fn_returned = True
            return

        try:
            fn(*args)
        except RecursionError as exc:
            self._trigger("error", self._stack_exhausted(exc))
        except Exception as exc:
            self._trigger("error", exc)
        finally:
            self._fn_returned = True

    def _on_task_done(self, task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            self._trigger("error", asyncio.CancelledError(f"`{self.identity}` was cancelled."))
            return
        exc = task.exception()
        if exc is not None:
            self._trigger("error", exc)

    # =========================================================================
    # Exits
    # =========================================================================

    def _trigger(self, exit_name: str, output: Any = None) -> None:
        if self._exited is not None or self._abandoned:
            logger.warning(
                "`%s` attempted to trigger its `%s` exit, but %s. Ignoring.",
                self.identity,
                exit_name,
                f"it already exited via `{self._exited}`" if self._exited else "it was abandoned",
            )
            return

        exit_def = self.definition.exits[exit_name]
        exemplar = None
        if not exit_def.void:
            exemplar = self._effective_exemplar(exit_name)
            if exemplar is not None and not self.machine.settings.unsafe:
                if not (exit_name == "error" and isinstance(output, BaseException)):
                    output, _ = coerce_with_problems(output, exemplar, allow_base_fallback=True)

        # Only a payload that made it through coercion counts as the exit taken.
        self._exited = exit_name
        self.status = InstanceStatus.EXITED

        if (
            self._cache is not None
            and self._cache_key is not None
            and not self._from_cache
            and exit_name == self._cache.exit
        ):
            self._store_in_cache(output)

        if not self._running_sync and not self._fn_returned:
            self._scheduler.defer(self._deliver, exit_name, output, exemplar)
        else:
            self._deliver(exit_name, output, exemplar)

    def _effective_exemplar(self, exit_name: str) -> Optional[Exemplar]:
        exit_def = self.definition.exits[exit_name]
        static = self.machine.exit_exemplars.get(exit_name)

        if exit_def.like is not None or exit_def.item_of is not None:
            reference = exit_def.like or exit_def.item_of
            actual = self._inputs.get(reference, MISSING)
            if exit_def.item_of is not None:
                if not isinstance(actual, (list, tuple)) or not actual:
                    return static
                actual = actual[0]
            elif actual is MISSING:
                return static
            try:
                return intersect(static, infer_from_value(actual))
            except IncompatibleExemplarsError as exc:
                logger.warning(
                    "Could not narrow the `%s` exit of `%s` from its argin (%s); using the declared example.",
                    exit_name,
                    self.identity,
                    exc,
                )
                return static

        if exit_def.get_example is not None:
            try:
                example = exit_def.get_example(copy.deepcopy(self._inputs), self._env)
                if isinstance(example, (list, tuple)):
                    example = list(example[:1])
                return None if example is None else infer(example)
            except Exception:
                logger.warning(
                    "get_example() for the `%s` exit of `%s` failed; output will not be coerced.",
                    exit_name,
                    self.identity,
                    exc_info=True,
                )
                return None

        return static

    def _deliver(self, exit_name: str, output: Any, exemplar: Optional[Exemplar]) -> None:
        exit_def = self.definition.exits[exit_name]
        if exit_name == "error":
            output = self._as_exception(output)
        elif exit_def.void:
            output = None

        self.status = InstanceStatus.DELIVERED
        self.outcome = Outcome(exit=self.exit_enum[exit_name], output=output)
        if self._started_at is not None:
            self.ms_elapsed = (time.perf_counter() - self._started_at) * 1000.0
        logger.debug("machine:%s -> %s", self.identity, exit_name)

        if self._on_invoke is not None:
            try:
                self._on_invoke(self)
            except Exception:
                logger.warning("on_invoke hook for `%s` raised.", self.identity, exc_info=True)

        self._continuation_for(self.outcome.exit, exemplar)(output)

    def _continuation_for(self, member: Enum, exemplar: Optional[Exemplar]) -> Callable[[Any], None]:
        name = member.value
        if name == "error":
            if "error" not in self._callbacks:
                raise InconsistentMachineFault(f"`{self.identity}` has no `error` continuation to deliver to.")
            return self._to_error_side
        callback = self._callbacks.get(name)
        if callback is not None:
            return callback
        if name == "success":
            return _ignore
        return partial(self._forward_to_error, name, exemplar)

    def _as_exception(self, value: Any) -> BaseException:
        if isinstance(value, BaseException):
            return value
        if value is None:
            return self._fault(
                UnexpectedErrorFault, f"Unexpected error occurred while running `{self.identity}`."
            )
        return self._fault(
            UnexpectedErrorFault,
            f"`{self.identity}` called its `error` exit with:\n{preview(value)}",
            output=value,
        )

    def _forward_to_error(self, exit_name: str, exemplar: Optional[Exemplar], output: Any) -> None:
        """Misc exit with no continuation of its own: report it through `error`."""
        if isinstance(output, ExitFault) and output.exit == exit_name:
            self._to_error_side(output)
            return
        description = self.definition.exits[exit_name].description
        message = f"`{self.identity}` triggered its `{exit_name}` exit"
        if output is None:
            message += f": {description}" if description else "."
        elif isinstance(output, BaseException):
            message += f": {output}"
        else:
            message += f" with:\n{preview(output)}"
        self._to_error_side(
            self._fault(ExitFault, message, exit=exit_name, output=output, description=description)
        )

    def _to_error_side(self, err: BaseException) -> None:
        """Apply the first matching tolerate()/intercept() rule, then deliver."""
        for negotiation in self._negotiations:
            if not negotiation.matches(err):
                continue
            try:
                result = negotiation.handler(err) if negotiation.handler is not None else None
            except Exception as exc:
                err = exc
                break
            if negotiation.kind == "tolerate":
                self._callbacks.get("success", _ignore)(result)
                return
            err = self._as_exception(result)
            break
        self._callbacks["error"](err)
