"""
Convenience shim: re-export from kernel/schema.py.

The actual implementation lives in kernel/schema.py.
This shim allows imports like `from machina.schema import X` to keep working.
"""
from .kernel.schema import *  # noqa: F401, F403
from .kernel.schema import Environment, Exemplar, ExemplarKind, ExitDef, InputDef, MachineDefinition

__all__ = ["Environment", "Exemplar", "ExemplarKind", "ExitDef", "InputDef", "MachineDefinition"]
