"""
Finder task scheduling.

Exports:
- FinderTask: Periodic finder of one category on its own thread
- TaskState: Lifecycle states of a finder task
- RepositorySupervisor: Starts the tasks of a repository in dependency order
- RunResultRepositorySupervisor: Supervisor of a nested run result repository
"""

from clusteval.scheduling.finder_task import FinderTask, TaskState
from clusteval.scheduling.supervisor import (
    RepositorySupervisor,
    RunResultRepositorySupervisor,
)

__all__ = [
    "FinderTask",
    "TaskState",
    "RepositorySupervisor",
    "RunResultRepositorySupervisor",
]
