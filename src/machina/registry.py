"""
Convenience shim: re-export from kernel/registry.py.

The actual implementation lives in kernel/registry.py.
This shim allows imports like `from machina.registry import X` to keep working.
"""
from .kernel.registry import *  # noqa: F401, F403
from .kernel.registry import DefinitionResolver, MachineRegistry

__all__ = ["DefinitionResolver", "MachineRegistry"]
