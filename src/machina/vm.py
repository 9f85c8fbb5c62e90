"""
Convenience shim: re-export from kernel/vm.py.

The actual implementation lives in kernel/vm.py.
This shim allows imports like `from machina.vm import X` to keep working.
"""
from .kernel.vm import *  # noqa: F401, F403
from .kernel.vm import LiveMachine, Negotiation, Outcome

__all__ = ["LiveMachine", "Negotiation", "Outcome"]
