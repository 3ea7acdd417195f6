"""
aca-runtime — package root

File: src/aca_runtime/__init__.py
Last updated: 2026-10-18

Purpose
- Package root for the automatic coding agent runtime: the LLM dispatch core
  (rate-limited CLI agent providers) and the staged setup executor.

Import boundary rules
- Must not have side effects at import time (no config loading, no logging init).
- Heavy submodules are imported by callers directly, not re-exported here.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
