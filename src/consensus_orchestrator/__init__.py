"""
consensus-orchestrator package root.

Purpose
- Work orchestration over a dependency graph of builder, validator, and analyzer tasks,
  followed by consensus scoring of the analyzer findings.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Submodules are imported lazily by callers; only metadata lives here.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
