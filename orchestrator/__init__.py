"""
Orchestrator Package - Supervisor Runtime.

============================================================
PACKAGE OVERVIEW
============================================================
Runs the supervisor as one long-lived process.

    +-----------------------------------------------------+
    |                      Supervisor                     |
    |-----------------------------------------------------|
    |  PeriodicJob          |  one independently-timed job |
    |  SupervisorScheduler  |  jobs + shared state wiring  |
    |  Status API           |  optional aiohttp surface    |
    |  CLI                  |  argparse entry point        |
    +-----------------------------------------------------+

============================================================
"""

from .scheduler import (
    PeriodicJob,
    SupervisorScheduler,
    recovery_action_for,
)
from .core import (
    JsonFormatter,
    Supervisor,
    setup_logging,
)


__all__ = [
    "PeriodicJob",
    "SupervisorScheduler",
    "recovery_action_for",
    "JsonFormatter",
    "Supervisor",
    "setup_logging",
]
