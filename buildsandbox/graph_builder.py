"""
graph_builder.py

Turns the event stream of a traced build into Target records: one per
compiler invocation, each with the ordered set of files it read.

A target stays "current" until the next compiler invocation (or the end of
the trace) finalizes it; finalized targets are handed to the callers of
apply()/finish() and collected in a DependencyGraph.
"""
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx

from buildsandbox.config import (
    DENYLIST_FRAGMENTS,
    DENYLIST_PREFIXES,
    DESIRED_COMMANDS,
    HEADER_SUFFIXES,
    TRACKED_COMPILERS,
)
from buildsandbox.registry import ProcessRegistry
from buildsandbox.trace_parser import (
    ChangeDir,
    Exec,
    ForkBegin,
    ForkResume,
    OpenAttempt,
    OpenPending,
    OpenResumed,
    Spawn,
    extract_source,
)


class Target:
    """One build artifact, the command producing it and what it read."""

    def __init__(self, name: str, command: str, directory: Optional[str] = None):
        self.name = name
        self.command = command
        self.directory = directory
        # dict as insertion-ordered set
        self._deps: Dict[str, None] = {}
        self.finalized = False

    @property
    def dependencies(self) -> Tuple[str, ...]:
        return tuple(self._deps)

    def add_dependency(self, path: str) -> bool:
        """Add `path` unless already present (exact match) or it is the output itself."""
        if self.finalized:
            raise RuntimeError(f"target {self.name} is finalized")
        if not path or path == self.name or path in self._deps:
            return False
        self._deps[path] = None
        return True

    def finalize(self) -> "Target":
        self.finalized = True
        return self

    def __repr__(self):
        return f"Target({self.name!r}, deps={len(self._deps)})"


def parse_output_name(command: str) -> Optional[str]:
    """
    Output artifact of a compiler command: the token following "-o".
      gcc -o output source.c        -> output
      g++ -c x.cc -o obj/x.o -O2    -> obj/x.o
    """
    tokens = command.split()
    for i, tok in enumerate(tokens[:-1]):
        if tok == "-o":
            return tokens[i + 1]
    return None


def is_denylisted(path: str) -> bool:
    if any(frag in path for frag in DENYLIST_FRAGMENTS):
        return True
    return path.startswith(DENYLIST_PREFIXES)


def is_header(path: str) -> bool:
    return path.endswith(HEADER_SUFFIXES)


class DependencyGraph:
    """Finalized targets in finalization order, plus the command and source logs."""

    def __init__(self):
        self.targets: List[Target] = []
        self.commands: List[str] = []
        self.sources: List[str] = []

    def __iter__(self):
        return iter(self.targets)

    def __len__(self):
        return len(self.targets)

    def target_names(self) -> List[str]:
        return [t.name for t in self.targets]

    def to_networkx(self) -> nx.DiGraph:
        G = nx.DiGraph()
        for t in self.targets:
            G.add_node(t.name, kind="target", command=t.command)
            for order, dep in enumerate(t.dependencies):
                if not G.has_node(dep):
                    G.add_node(dep, kind="file")
                G.add_edge(t.name, dep, order=order)
        return G

    def save(self, graphml_path) -> Tuple[str, str]:
        """Write the graph as GraphML and a JSON summary next to it."""
        G = self.to_networkx()
        graphml_path = Path(graphml_path)
        graphml_path.parent.mkdir(parents=True, exist_ok=True)
        nx.write_graphml(G, str(graphml_path))

        json_path = graphml_path.with_suffix(".json")
        summary: Dict[str, Any] = {
            "n_targets": len(self.targets),
            "n_nodes": G.number_of_nodes(),
            "n_edges": G.number_of_edges(),
            "targets": {
                t.name: {"command": t.command, "dependencies": list(t.dependencies)}
                for t in self.targets
            },
        }
        with open(json_path, "w") as f:
            json.dump(summary, f, indent=2)
        return str(graphml_path), str(json_path)


class DependencyGraphBuilder:
    """
    State machine over trace events.

    apply() returns the Target finalized by the event (if any); finish()
    returns the last one. Both also append it to self.graph.
    """

    def __init__(self, registry: Optional[ProcessRegistry] = None, verbose: bool = False):
        self.registry = registry or ProcessRegistry()
        self.graph = DependencyGraph()
        self.current: Optional[Target] = None
        self.verbose = verbose
        # reported pid -> path of an openat still waiting for its result
        self._open_pending: Dict[int, str] = {}

    def apply(self, event) -> Optional[Target]:
        """
        Feed one trace event to the state machine.

        Args:
            event: a trace_parser event (Exec, ChangeDir, OpenAttempt, ...).

        Returns:
            Optional[Target]: the target this event finalized, if any.
        """
        reg = self.registry
        if isinstance(event, ForkBegin):
            reg.begin_vfork(event.pid)
            return None
        if isinstance(event, ForkResume):
            reg.end_vfork(event.pid, event.child_pid)
            return None
        if isinstance(event, Spawn):
            reg.inherit(event.pid, event.child_pid)
            return None

        pid = reg.resolve(event.pid)
        if isinstance(event, Exec):
            return self._on_exec(event, pid)
        if isinstance(event, ChangeDir):
            # cwd belongs to the process that really called chdir
            reg.chdir(event.pid, event.path)
        elif isinstance(event, OpenAttempt):
            self._on_open(event, pid)
        elif isinstance(event, OpenPending):
            self._open_pending[event.pid] = event.path
        elif isinstance(event, OpenResumed):
            path = self._open_pending.pop(event.pid, None)
            if path is not None:
                self._on_open(OpenAttempt(event.pid, path, event.failed), pid)
        return None

    def finish(self) -> Optional[Target]:
        return self._finalize_current()

    def _finalize_current(self) -> Optional[Target]:
        if self.current is None:
            return None
        target = self.current.finalize()
        self.current = None
        self.graph.targets.append(target)
        if self.verbose:
            print(f"[+] target {target.name}: {len(target.dependencies)} dependencies")
        return target

    def _on_exec(self, event: Exec, pid: int) -> Optional[Target]:
        name = event.name
        if name not in DESIRED_COMMANDS:
            return None

        command = event.command
        self.graph.commands.append(command)
        source = extract_source(event.raw_args)
        cwd = self.registry.cwd(event.pid)
        if source is not None:
            self.graph.sources.append(os.path.join(cwd, source))

        if name not in TRACKED_COMPILERS:
            # as/ld: logged only, no target boundary
            return None

        finalized = self._finalize_current()
        self.registry.register(pid, name)
        if pid != event.pid:
            self.registry.register(event.pid, name)

        output = parse_output_name(command)
        if output is None:
            print(f"[WARN] no -o in compiler command, target dropped: {command}", file=sys.stderr)
            return finalized

        self.current = Target(output, command, directory=cwd)
        if source is not None and self.registry.is_tracked(pid):
            self.current.add_dependency(source)
        return finalized

    def _on_open(self, event: OpenAttempt, pid: int) -> None:
        if event.failed or self.current is None:
            return
        path = event.path
        if is_denylisted(path):
            return
        if self.registry.is_tracked(pid) or is_header(path):
            self.current.add_dependency(path)


def build_graph(events, registry: Optional[ProcessRegistry] = None) -> DependencyGraph:
    """Run a whole event stream through a fresh builder."""
    builder = DependencyGraphBuilder(registry)
    for event in events:
        builder.apply(event)
    builder.finish()
    return builder.graph
