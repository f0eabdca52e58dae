"""gateledger: release-gate check runner and hash-chained exit ledger.

The runner executes the configured gate commands and writes a run report;
the ledger records governance decisions derived from those reports.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def __getattr__(name: str):
    if name == "__version__":
        try:
            return version("gateledger")
        except PackageNotFoundError:
            return "0.0.0"
    raise AttributeError(name)
