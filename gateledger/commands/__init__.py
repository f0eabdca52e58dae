"""CLI mode implementations.

Each mode prints machine-readable ``KEY=VALUE`` tokens to stdout, human
diagnostics to stderr, and returns the process exit code.
"""

from __future__ import annotations
