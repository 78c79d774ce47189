"""
registry.py

Per-process bookkeeping while walking a trace: which pids run a compiler
front end, what each pid's working directory is, and which pids are
vfork children still borrowing their parent's identity.
"""
import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from buildsandbox.config import TRACKED_COMPILERS


@dataclass
class ProcessContext:
    pid: int
    tracked: bool = False
    executable: Optional[str] = None
    generation: int = 0


class ProcessRegistry:
    """
    pid -> ProcessContext, plus working directories and vfork aliases.

    Pids are never removed: a pid reused by an unrelated process inside one
    trace keeps the old context (generation tells how many execs it saw).
    """

    def __init__(self, initial_cwd: Optional[str] = None, compilers=TRACKED_COMPILERS):
        self.initial_cwd = initial_cwd or os.getcwd()
        self.compilers = tuple(compilers)
        self._procs: Dict[int, ProcessContext] = {}
        self._cwds: Dict[int, str] = {}
        self._seen: Set[int] = set()
        # parents with an outstanding "vfork( <unfinished ...>", oldest first
        self._pending: List[int] = []
        # child pid -> parent pid
        self._aliases: Dict[int, int] = {}

    def __contains__(self, pid: int) -> bool:
        return pid in self._procs

    def get(self, pid: int) -> Optional[ProcessContext]:
        return self._procs.get(pid)

    def register(self, pid: int, command_name: str) -> ProcessContext:
        ctx = self._procs.get(pid)
        if ctx is None:
            ctx = self._procs[pid] = ProcessContext(pid)
        ctx.executable = command_name
        ctx.generation += 1
        if command_name in self.compilers:
            ctx.tracked = True
        return ctx

    def is_tracked(self, pid: int) -> bool:
        ctx = self._procs.get(pid)
        return bool(ctx and ctx.tracked)

    def generation(self, pid: int) -> int:
        ctx = self._procs.get(pid)
        return ctx.generation if ctx else 0

    # ---- vfork aliasing -------------------------------------------------

    def begin_vfork(self, pid: int) -> None:
        self._seen.add(pid)
        self._pending.append(pid)

    def end_vfork(self, pid: int, child_pid: Optional[int] = None) -> None:
        if pid in self._pending:
            self._pending.remove(pid)
        # the window is over for every pid bound to this parent
        for child, parent in list(self._aliases.items()):
            if parent == pid:
                del self._aliases[child]
        if child_pid is not None:
            self._seen.add(child_pid)
            self.inherit(pid, child_pid)

    def resolve(self, pid: int) -> int:
        """
        Logical pid for a line reported by `pid`.

        The first unseen pid after a pending vfork is the child: it is bound
        to the most recent parent still waiting and resolves to that parent
        until the matching "vfork resumed" line.
        """
        if pid in self._aliases:
            return self._aliases[pid]
        if pid not in self._seen:
            self._seen.add(pid)
            bound = set(self._aliases.values())
            for parent in reversed(self._pending):
                if parent not in bound and parent != pid:
                    self._aliases[pid] = parent
                    self.inherit(parent, pid)
                    return parent
        return pid

    def is_alias(self, pid: int) -> bool:
        return pid in self._aliases

    # ---- working directories --------------------------------------------

    def cwd(self, pid: int) -> str:
        return self._cwds.get(pid, self.initial_cwd)

    def chdir(self, pid: int, path: str) -> str:
        new = os.path.normpath(os.path.join(self.cwd(pid), path))
        self._cwds[pid] = new
        return new

    def inherit(self, parent: int, child: int) -> None:
        """A new child starts in its parent's working directory."""
        self._seen.update((parent, child))
        if parent in self._cwds and child not in self._cwds:
            self._cwds[child] = self._cwds[parent]
