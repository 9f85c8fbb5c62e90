"""
Fault taxonomy for the machine runner.

Every fault carries a stable ``code`` so callers can branch on it without
matching message text.

Hierarchy::

    MachineError
      ├── UsageFault                  (E_USAGE)
      │     └── NoErrorCallbackFault  (E_NO_ERROR_CALLBACK_CONFIGURED)
      ├── ImplementationError         (E_INVALID_DEFINITION)
      │     ├── UnrecognizedInputError     (UNRECOGNIZED_INPUT)
      │     ├── InputNotArrayError         (INPUT_NOT_ARRAY)
      │     ├── InvalidExemplarError       (E_INVALID_EXEMPLAR)
      │     └── IncompatibleExemplarsError (E_INCOMPATIBLE_EXEMPLARS)
      ├── ValidationFault             (E_VALIDATION)
      │     └── RuntimeValidationFault     (E_MACHINE_RUNTIME_VALIDATION)
      ├── RuntimeFault
      │     ├── ExitFault                  (code = exit name)
      │     ├── MaxRecursionFault          (E_MAX_RECURSION)
      │     └── UnexpectedErrorFault       (E_UNEXPECTED_ERROR)
      └── ConsistencyFault            (E_CONSISTENCY)
            └── InconsistentMachineFault   (E_MACHINE_INCONSISTENT)

Usage, implementation and consistency faults are raised at the call site.
Validation and runtime faults travel through a machine's ``error`` exit.
"""

from __future__ import annotations

from traceback import FrameSummary
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from .schema import ValidationProblem


class MachineError(Exception):
    """Base class for all machina faults."""

    code: str = "E_MACHINE"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.provenance: Optional[List[FrameSummary]] = None

    @property
    def stack(self) -> str:
        """Formatted stack with frames from inside machina removed."""
        from .provenance import format_provenance

        return format_provenance(self)


# =============================================================================
# Usage
# =============================================================================


class UsageFault(MachineError):
    """The caller misused the API (bad call order, bad arguments)."""

    code = "E_USAGE"


class NoErrorCallbackFault(UsageFault):
    """exec() was called without any way to report failure."""

    code = "E_NO_ERROR_CALLBACK_CONFIGURED"


# =============================================================================
# Implementation (build time)
# =============================================================================


class ImplementationError(MachineError):
    """A machine definition was rejected while being built."""

    code = "E_INVALID_DEFINITION"


class UnrecognizedInputError(ImplementationError):
    code = "UNRECOGNIZED_INPUT"

    def __init__(self, message: str, *, reference: Optional[str] = None) -> None:
        super().__init__(message)
        self.reference = reference


class InputNotArrayError(ImplementationError):
    code = "INPUT_NOT_ARRAY"

    def __init__(self, message: str, *, reference: Optional[str] = None) -> None:
        super().__init__(message)
        self.reference = reference


class InvalidExemplarError(ImplementationError):
    code = "E_INVALID_EXEMPLAR"


class IncompatibleExemplarsError(ImplementationError):
    code = "E_INCOMPATIBLE_EXEMPLARS"

    def __init__(self, message: str, *, hops: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.hops = list(hops)


# =============================================================================
# Validation
# =============================================================================


class ValidationFault(MachineError):
    """A value does not match its exemplar."""

    code = "E_VALIDATION"

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[List["ValidationProblem"]] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=code)
        self.errors: List["ValidationProblem"] = list(errors or [])


class RuntimeValidationFault(ValidationFault):
    """Argins supplied to a live machine failed validation."""

    code = "E_MACHINE_RUNTIME_VALIDATION"

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[List["ValidationProblem"]] = None,
        machine_instance: Any = None,
    ) -> None:
        super().__init__(message, errors=errors)
        self.machine_instance = machine_instance


# =============================================================================
# Runtime (delivered through exits)
# =============================================================================


class RuntimeFault(MachineError):
    code = "E_RUNTIME"


class ExitFault(RuntimeFault):
    """A miscellaneous exit was forwarded to ``error``.

    ``code`` and ``exit`` both hold the name of the exit that fired.
    """

    def __init__(
        self,
        message: str,
        *,
        exit: str,
        output: Any = None,
        description: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=exit)
        self.exit = exit
        self.output = output
        self.description = description


class MaxRecursionFault(RuntimeFault):
    code = "E_MAX_RECURSION"

    def __init__(self, message: str, *, depth: int = 0, limit: int = 0) -> None:
        super().__init__(message)
        self.depth = depth
        self.limit = limit


class UnexpectedErrorFault(RuntimeFault):
    """The error exit fired with nothing, or with something that is not an exception."""

    code = "E_UNEXPECTED_ERROR"

    def __init__(self, message: str, *, output: Any = None) -> None:
        super().__init__(message)
        self.output = output


# =============================================================================
# Consistency
# =============================================================================


class ConsistencyFault(MachineError):
    """An engine invariant was violated. Always raised, never delivered."""

    code = "E_CONSISTENCY"


class InconsistentMachineFault(ConsistencyFault):
    """A sync machine returned without triggering any exit."""

    code = "E_MACHINE_INCONSISTENT"
