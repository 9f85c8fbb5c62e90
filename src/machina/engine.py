"""
Convenience shim: re-export from kernel/engine.py.

The actual implementation lives in kernel/engine.py.
This shim allows imports like `from machina.engine import X` to keep working.
"""
from .kernel.engine import *  # noqa: F401, F403
from .kernel.engine import ArginStyle, ExecStyle, Machine, build, build_with_custom_usage, define

__all__ = ["ArginStyle", "ExecStyle", "Machine", "build", "build_with_custom_usage", "define"]
