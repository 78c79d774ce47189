"""
manifest.py

Text reports of a traced build: the dependency manifest, the command log,
the source-file list and a CSV index of targets.
"""
from typing import Iterable

import pandas as pd

from buildsandbox.config import MANIFEST_INDENT, MANIFEST_WIDTH


class ManifestWriter:
    """
    Writes one block per finalized target:

        TARGET:  prog
        COMMAND:  gcc -o prog main.c
        DEPENDENCY:  main.c  util.h
    """

    def __init__(self, stream, width: int = MANIFEST_WIDTH, indent: int = MANIFEST_INDENT):
        self.stream = stream
        self.width = width
        self.indent = indent

    def format(self, target) -> str:
        out = [f"TARGET:  {target.name}\n", f"COMMAND:  {target.command}\n", "DEPENDENCY:"]
        line_len = self.indent
        for dep in target.dependencies:
            if line_len + len(dep) > self.width:
                out.append("\n" + " " * self.indent)
                line_len = self.indent
            out.append(f"  {dep}")
            line_len += len(dep) + 2
        out.append("\n")
        return "".join(out)

    def write(self, target) -> None:
        self.stream.write(self.format(target))


def write_command_log(stream, commands: Iterable[str]) -> None:
    for cmd in commands:
        stream.write(cmd + "\n")


def write_source_list(stream, sources: Iterable[str]) -> None:
    for src in sources:
        stream.write(src + "\n")


def write_target_index(targets, path) -> pd.DataFrame:
    records = [
        {
            "target": t.name,
            "command": t.command,
            "n_dependencies": len(t.dependencies),
            "first_dependency": t.dependencies[0] if t.dependencies else "",
        }
        for t in targets
    ]
    df = pd.DataFrame(records, columns=["target", "command", "n_dependencies", "first_dependency"])
    df.to_csv(path, index=False)
    return df
