# llkb/cli/commands: Command modules for the LLKB CLI.
#
# Each module in this package provides one or more CLI commands.

from .export import export, report, run
from .learning import deferred, learn, query
from .maintenance import health, prune, stats

__all__ = [
    # export.py
    "export",
    "report",
    "run",
    # learning.py
    "learn",
    "query",
    "deferred",
    # maintenance.py
    "health",
    "stats",
    "prune",
]
