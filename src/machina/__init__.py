"""
machina: machines whose inputs and exits are typed by example.

Public API re-exports from kernel/.
"""
from .kernel.schema import (
    ContractDef,
    Environment,
    Exemplar,
    ExemplarKind,
    ExitDef,
    InputDef,
    MachineDefinition,
    ValidationProblem,
)
from .kernel.exemplar import infer, intersect
from .kernel.coercion import MISSING, coerce
from .kernel.cache import MemoryCache
from .kernel.settings import MachineSettings, load_settings
from .kernel.vm import LiveMachine, Negotiation, Outcome
from .kernel.engine import ArginStyle, ExecStyle, Machine, build, build_with_custom_usage, define
from .kernel.registry import MachineRegistry
from .kernel.errors import (
    ImplementationError,
    MachineError,
    RuntimeFault,
    UsageFault,
    ValidationFault,
)

__all__ = [
    # Schema
    "ContractDef",
    "Environment",
    "Exemplar",
    "ExemplarKind",
    "ExitDef",
    "InputDef",
    "MachineDefinition",
    "ValidationProblem",
    # Exemplars and coercion
    "infer",
    "intersect",
    "MISSING",
    "coerce",
    # Cache and settings
    "MemoryCache",
    "MachineSettings",
    "load_settings",
    # VM
    "LiveMachine",
    "Negotiation",
    "Outcome",
    # Engine
    "ArginStyle",
    "ExecStyle",
    "Machine",
    "build",
    "build_with_custom_usage",
    "define",
    # Registry
    "MachineRegistry",
    # Errors
    "ImplementationError",
    "MachineError",
    "RuntimeFault",
    "UsageFault",
    "ValidationFault",
]
