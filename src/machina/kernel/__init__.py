"""
Kernel: the machinery of machina.

This module contains the execution infrastructure:
- schema: definition, exemplar and environment models
- exemplar: inference, intersection and display of exemplars
- coercion: validation/coercion of values against exemplars
- exits: the exit multiplexer handed to a machine's fn
- lambdas: machines synthesized for function-typed inputs
- vm: LiveMachine, one supervised execution
- engine: Machine and build()
- registry: in-memory definition resolver
- scheduler, cache, settings, provenance, errors: supporting pieces
"""
from .schema import (
    ContractDef,
    Environment,
    Exemplar,
    ExemplarKind,
    ExitDef,
    InputDef,
    InstanceStatus,
    MachineDefinition,
    ValidationProblem,
)
from .exemplar import base_value, display_type, infer, infer_from_value, intersect
from .coercion import MISSING, coerce, coerce_with_problems
from .exits import Exits
from .provenance import Omen, customize_omen_or_build, format_provenance
from .scheduler import TickQueue, get_scheduler
from .cache import CacheStore, MemoryCache
from .settings import ExtraArginsTactic, MachineSettings, get_settings, load_settings
from .vm import LiveMachine, Outcome
from .engine import Machine, build, define
from .registry import DefinitionResolver, MachineRegistry
from .errors import (
    ConsistencyFault,
    ExitFault,
    ImplementationError,
    IncompatibleExemplarsError,
    InconsistentMachineFault,
    InputNotArrayError,
    InvalidExemplarError,
    MachineError,
    MaxRecursionFault,
    NoErrorCallbackFault,
    RuntimeFault,
    RuntimeValidationFault,
    UnexpectedErrorFault,
    UnrecognizedInputError,
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
    "InstanceStatus",
    "MachineDefinition",
    "ValidationProblem",
    # Exemplars and coercion
    "base_value",
    "display_type",
    "infer",
    "infer_from_value",
    "intersect",
    "MISSING",
    "coerce",
    "coerce_with_problems",
    # Exits
    "Exits",
    # Provenance
    "Omen",
    "customize_omen_or_build",
    "format_provenance",
    # Scheduling, cache, settings
    "TickQueue",
    "get_scheduler",
    "CacheStore",
    "MemoryCache",
    "ExtraArginsTactic",
    "MachineSettings",
    "get_settings",
    "load_settings",
    # VM
    "LiveMachine",
    "Outcome",
    # Engine
    "Machine",
    "build",
    "define",
    # Registry
    "DefinitionResolver",
    "MachineRegistry",
    # Errors
    "ConsistencyFault",
    "ExitFault",
    "ImplementationError",
    "IncompatibleExemplarsError",
    "InconsistentMachineFault",
    "InputNotArrayError",
    "InvalidExemplarError",
    "MachineError",
    "MaxRecursionFault",
    "NoErrorCallbackFault",
    "RuntimeFault",
    "RuntimeValidationFault",
    "UnexpectedErrorFault",
    "UnrecognizedInputError",
    "UsageFault",
    "ValidationFault",
]
