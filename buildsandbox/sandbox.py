"""
sandbox.py

Copies every dependency of a finalized target into an isolated directory
tree and generates a Makefile able to rebuild each target from there.
"""
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from buildsandbox.config import BUILD_DESCRIPTION_NAME


@dataclass(frozen=True)
class CopyFailure:
    dependency: str
    source: str
    reason: str


def sandbox_relpath(dependency: str) -> str:
    """
    Path of a dependency inside the sandbox root.
      util.h              -> util.h
      /usr/include/x.h    -> usr/include/x.h
      ../lib/y.h          -> lib/y.h
    """
    parts = [p for p in os.path.normpath(dependency).split(os.sep) if p not in ("", ".")]
    while parts and parts[0] == "..":
        parts.pop(0)
    return os.path.join(*parts) if parts else ""


def make_ancestor_dirs(root, relative_dir) -> Path:
    """
    Create root/relative_dir one component at a time, root first.
    Existing directories are left alone.
    """
    current = Path(root)
    current.mkdir(parents=True, exist_ok=True)
    for part in Path(relative_dir).parts:
        current = current / part
        if not current.is_dir():
            current.mkdir(exist_ok=True)
    return current


def rewrite_command(command: str, include_dir) -> str:
    """Insert -I<include_dir> right after the compiler token, keep the rest verbatim."""
    head, sep, rest = command.partition(" ")
    if not sep:
        return f"{head} -I{include_dir}"
    return f"{head} -I{include_dir} {rest}"


def make_escape(text: str) -> str:
    """Double every $ so make passes it through instead of expanding it."""
    return text.replace("$", "$$")


class SandboxMaterializer:
    """
    materialize() copies one target's dependencies and remembers the target
    for the build description; write_build_description() emits the Makefile
    once every target has been seen.
    """

    def __init__(self, sandbox_root, source_root=None, verbose: bool = False):
        self.root = Path(sandbox_root).resolve()
        self.source_root = Path(source_root or os.getcwd())
        self.verbose = verbose
        self.targets = []
        self.root.mkdir(parents=True, exist_ok=True)

    def _source_path(self, target, dependency: str) -> Path:
        if os.path.isabs(dependency):
            return Path(dependency)
        base = target.directory or self.source_root
        return Path(base) / dependency

    def copy_dependency(self, target, dependency: str) -> Optional[CopyFailure]:
        src = self._source_path(target, dependency)
        rel = sandbox_relpath(dependency)
        if not rel:
            return CopyFailure(dependency, str(src), "empty sandbox path")
        dest = self.root / rel
        try:
            src_f = open(src, "rb")
        except OSError as e:
            print(f"[WARN] dependency {dependency} could not be opened to copy: {e}", file=sys.stderr)
            return CopyFailure(dependency, str(src), str(e))
        with src_f:
            try:
                make_ancestor_dirs(self.root, os.path.dirname(rel))
                with open(dest, "wb") as dst_f:
                    shutil.copyfileobj(src_f, dst_f)
            except OSError as e:
                print(f"[WARN] sandbox copy {dest} of dependency {dependency} could not be written: {e}",
                      file=sys.stderr)
                return CopyFailure(dependency, str(src), str(e))
        if self.verbose:
            print(f"[+] copied {src} -> {dest}")
        return None

    def materialize(self, target) -> List[CopyFailure]:
        """
        Copy every dependency of `target` into the sandbox.

        Args:
            target (Target): a finalized target.

        Returns:
            List[CopyFailure]: dependencies that could not be copied; the
            others are copied regardless.
        """
        failures = []
        for dep in target.dependencies:
            failure = self.copy_dependency(target, dep)
            if failure is not None:
                failures.append(failure)
        self.targets.append(target)
        return failures

    def rule_for(self, target) -> str:
        first = target.dependencies[0] if target.dependencies else ""
        head = f"{make_escape(target.name)}: {make_escape(first)}".rstrip()
        recipe = make_escape(rewrite_command(target.command, self.root))
        return f"{head}\n\t{recipe}\n"

    def build_description(self) -> str:
        rules = [self.rule_for(t) for t in self.targets]
        names = " ".join(make_escape(t.name) for t in self.targets)
        rules.append(f"all: {names}".rstrip() + "\n")
        return "\n".join(rules)

    def write_build_description(self, name: str = BUILD_DESCRIPTION_NAME) -> Optional[Path]:
        """Write the Makefile; an unwritable file is reported, not fatal."""
        path = self.root / name
        try:
            with open(path, "w") as f:
                f.write(self.build_description())
        except OSError as e:
            print(f"[WARN] sandbox build file {path} could not be opened: {e}", file=sys.stderr)
            return None
        return path
